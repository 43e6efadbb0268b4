"""Schemas for inbound traffic and liveness events."""
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from panel.models.target import TargetStatus


class TrafficReport(BaseModel):
    bytes: int = Field(ge=0)


class StatusChange(BaseModel):
    status: TargetStatus


class TargetRead(BaseModel):
    id: int
    name: str
    traffic_quota: int
    quota_used: int
    quota_exceeded: bool
    status: str
    last_seen: datetime | None

    model_config = ConfigDict(from_attributes=True)
