"""Monitored target ORM models (nodes and clients)."""
from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import BigInteger, Boolean, CheckConstraint, DateTime, Integer, String
from sqlalchemy.orm import Mapped, declared_attr, mapped_column

from .base import Base


class TargetKind(str, Enum):
    """Kinds of entities whose usage and liveness are monitored."""

    NODE = "node"
    CLIENT = "client"


class TargetStatus(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"


class QuotaTargetMixin:
    """Columns shared by every monitored target.

    ``traffic_quota`` of zero means unlimited. ``quota_used`` and ``last_seen``
    are written by traffic and heartbeat collaborators; the monitors only
    derive ``quota_exceeded`` and ``status`` from them.
    """

    name: Mapped[str] = mapped_column(String(120), nullable=False)
    traffic_quota: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    quota_used: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    quota_exceeded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    quota_reset_day: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    quota_reset_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=TargetStatus.OFFLINE.value, index=True
    )
    last_seen: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @declared_attr.directive
    def __table_args__(cls):
        return (
            CheckConstraint("traffic_quota >= 0", name=f"ck_{cls.__tablename__}_quota_non_negative"),
            CheckConstraint("quota_used >= 0", name=f"ck_{cls.__tablename__}_used_non_negative"),
            CheckConstraint(
                "quota_reset_day BETWEEN 1 AND 31", name=f"ck_{cls.__tablename__}_reset_day_range"
            ),
        )


class Node(QuotaTargetMixin, Base):
    """A proxy engine host reporting heartbeats and traffic."""

    __tablename__ = "nodes"

    kind = TargetKind.NODE


class Client(QuotaTargetMixin, Base):
    """A tunnel client attached to a node."""

    __tablename__ = "clients"

    kind = TargetKind.CLIENT
