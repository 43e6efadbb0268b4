"""Rule, channel and alert-log data access used by the alerting engine."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta

from pydantic import ValidationError
from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from panel.models.alert import AlertLog, AlertRule, AlertType, NotifyChannel
from panel.schemas.alert import RuleCondition
from panel.utils.errors import ConditionParseError
from panel.utils.time import utcnow

logger = logging.getLogger(__name__)

DEFAULT_WARNING_THRESHOLD = 80

DEFAULT_RULES: tuple[dict[str, object], ...] = (
    {"name": "Node offline", "type": AlertType.NODE_OFFLINE.value, "condition": "{}", "cooldown_minutes": 30},
    {"name": "Quota exceeded", "type": AlertType.QUOTA_EXCEEDED.value, "condition": "{}", "cooldown_minutes": 60},
    {
        "name": "Quota warning (80%)",
        "type": AlertType.QUOTA_WARNING.value,
        "condition": '{"threshold": 80}',
        "cooldown_minutes": 60,
    },
    {
        "name": "Quota warning (90%)",
        "type": AlertType.QUOTA_WARNING.value,
        "condition": '{"threshold": 90}',
        "cooldown_minutes": 30,
    },
)


def find_enabled_rules(db: Session, alert_type: str) -> list[AlertRule]:
    stmt = (
        select(AlertRule)
        .where(AlertRule.type == alert_type, AlertRule.enabled.is_(True))
        .order_by(AlertRule.id)
    )
    return list(db.scalars(stmt).all())


def parse_condition(raw: str | None) -> RuleCondition:
    """Parse a rule condition payload; empty or ``{}`` yields zero defaults."""

    if raw is None or raw.strip() in {"", "{}"}:
        return RuleCondition()
    try:
        return RuleCondition.model_validate_json(raw)
    except ValidationError as exc:
        raise ConditionParseError(f"invalid rule condition: {raw!r}") from exc


def warning_threshold(condition: RuleCondition) -> int:
    if condition.threshold <= 0:
        return DEFAULT_WARNING_THRESHOLD
    return condition.threshold


def parse_channel_ids(raw: str | None) -> list[int]:
    """Split a comma-separated channel list, skipping blank and non-numeric entries."""

    ids: list[int] = []
    for part in (raw or "").split(","):
        part = part.strip()
        if part.isdigit():
            ids.append(int(part))
    return ids


def get_channel(db: Session, channel_id: int) -> NotifyChannel | None:
    return db.get(NotifyChannel, channel_id)


def list_rules(db: Session) -> list[AlertRule]:
    return list(db.scalars(select(AlertRule).order_by(AlertRule.id)).all())


def list_channels(db: Session) -> list[NotifyChannel]:
    return list(db.scalars(select(NotifyChannel).order_by(NotifyChannel.id)).all())


def list_alert_logs(
    db: Session,
    *,
    limit: int = 50,
    offset: int = 0,
    alert_type: str | None = None,
) -> tuple[list[AlertLog], int]:
    """Return one page of alert history, newest first, with the total row count."""

    count_stmt = select(func.count(AlertLog.id))
    page_stmt = select(AlertLog).order_by(AlertLog.created_at.desc(), AlertLog.id.desc())
    if alert_type:
        count_stmt = count_stmt.where(AlertLog.type == alert_type)
        page_stmt = page_stmt.where(AlertLog.type == alert_type)
    total = db.scalar(count_stmt) or 0
    items = list(db.scalars(page_stmt.limit(limit).offset(offset)).all())
    return items, total


def seed_default_rules(db: Session) -> int:
    """Create the default rule set when no rules exist yet."""

    existing = db.scalar(select(func.count(AlertRule.id))) or 0
    if existing:
        return 0
    for fields in DEFAULT_RULES:
        db.add(AlertRule(enabled=True, channel_ids="", **fields))
    db.commit()
    logger.info("Default alert rules seeded", extra={"count": len(DEFAULT_RULES)})
    return len(DEFAULT_RULES)


def cleanup_alert_logs(db: Session, retention_days: int, *, now: datetime | None = None) -> int:
    """Delete alert logs older than ``retention_days``; returns rows removed."""

    cutoff = (now or utcnow()) - timedelta(days=retention_days)
    result = db.execute(
        delete(AlertLog).where(AlertLog.created_at < cutoff).execution_options(synchronize_session=False)
    )
    db.commit()
    removed = result.rowcount or 0
    logger.info("Alert log retention sweep", extra={"removed": removed, "retention_days": retention_days})
    return removed


__all__ = [
    "DEFAULT_RULES",
    "DEFAULT_WARNING_THRESHOLD",
    "cleanup_alert_logs",
    "find_enabled_rules",
    "get_channel",
    "list_alert_logs",
    "list_channels",
    "list_rules",
    "parse_channel_ids",
    "parse_condition",
    "seed_default_rules",
    "warning_threshold",
]
