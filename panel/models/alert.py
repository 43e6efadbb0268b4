"""Alert rule, notification channel and alert log models."""
from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class AlertType(str, Enum):
    QUOTA_EXCEEDED = "quota_exceeded"
    QUOTA_WARNING = "quota_warning"
    NODE_OFFLINE = "node_offline"
    TRAFFIC_SPIKE = "traffic_spike"
    AGENT_UPDATE = "agent_update"


class ChannelType(str, Enum):
    TELEGRAM = "telegram"
    WEBHOOK = "webhook"
    SMTP = "smtp"


class AlertLogStatus(str, Enum):
    SENT = "sent"
    FAILED = "failed"


class AlertRule(Base):
    """Persisted alerting policy, edited by operators."""

    __tablename__ = "alert_rules"
    __table_args__ = (Index("ix_alert_rules_type_enabled", "type", "enabled"),)

    name: Mapped[str] = mapped_column(String(120), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    # JSON payload: {"threshold": <int>, "duration": <int>}
    condition: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    cooldown_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    # Comma-separated NotifyChannel ids, in delivery order.
    channel_ids: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    last_alert_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class NotifyChannel(Base):
    """A notification sink; ``config`` is an opaque per-type JSON payload."""

    __tablename__ = "notify_channels"

    name: Mapped[str] = mapped_column(String(120), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    config: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class AlertLog(Base):
    """Append-only delivery record, one row per rule/channel attempt."""

    __tablename__ = "alert_logs"
    __table_args__ = (
        Index("ix_alert_logs_created_at", "created_at"),
        Index("ix_alert_logs_dedup_key_created_at", "dedup_key", "created_at"),
    )

    rule_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    rule_name: Mapped[str] = mapped_column(String(120), nullable=False, default="")
    type: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    target_type: Mapped[str] = mapped_column(String(16), nullable=False)
    target_id: Mapped[int] = mapped_column(Integer, nullable=False)
    target_name: Mapped[str] = mapped_column(String(120), nullable=False, default="")
    channel_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    dedup_key: Mapped[str | None] = mapped_column(String(160), nullable=True)
