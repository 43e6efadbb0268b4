"""Traffic quota evaluation: warnings, exceeded transitions and periodic reset."""
from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy import or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import set_committed_value

from panel.models.alert import AlertType
from panel.models.target import Client, Node
from panel.services.alert_dispatch import AlertDispatcher, with_dedup_marker
from panel.services.alert_guard import cooldown_elapsed, has_recent_alert
from panel.services.alert_rules import find_enabled_rules, parse_condition, warning_threshold
from panel.utils.errors import ConditionParseError
from panel.utils.formatting import format_bytes
from panel.utils.time import utcnow

logger = logging.getLogger(__name__)

QuotaTarget = Node | Client

TARGET_MODELS: tuple[type[Node] | type[Client], ...] = (Node, Client)
KIND_LABELS = {"node": "Node", "client": "Client"}
MIN_RESET_AGE = timedelta(days=28)


@dataclass
class QuotaCheckOutcome:
    warnings: list[int] = field(default_factory=list)
    exceeded: bool = False


def usage_percent(used: int, quota: int) -> float:
    """Usage as a percentage of ``quota``; callers guarantee ``quota > 0``."""

    return used / quota * 100


def quota_warning_key(target_type: str, target_id: int, threshold: int) -> str:
    return f"{AlertType.QUOTA_WARNING.value}_{target_type}_{target_id}_{threshold}"


def render_exceeded_message(target: QuotaTarget) -> str:
    label = KIND_LABELS.get(target.kind.value, target.kind.value)
    return (
        f"{label} {target.name} traffic quota exceeded\n"
        f"Used: {format_bytes(target.quota_used)} / Quota: {format_bytes(target.traffic_quota)}"
    )


def render_warning_message(target: QuotaTarget, percent: float) -> str:
    label = KIND_LABELS.get(target.kind.value, target.kind.value)
    return (
        f"{label} {target.name} traffic usage reached {percent:.1f}%\n"
        f"Used: {format_bytes(target.quota_used)} / Quota: {format_bytes(target.traffic_quota)}\n"
        "Please keep an eye on traffic usage"
    )


def mark_quota_exceeded(db: Session, target: QuotaTarget) -> bool:
    """Flip ``quota_exceeded`` to true only if it is still false.

    Returns True for the single caller whose conditional update won.
    """

    model = type(target)
    try:
        result = db.execute(
            update(model)
            .where(model.id == target.id, model.quota_exceeded.is_(False))
            .values(quota_exceeded=True)
            .execution_options(synchronize_session=False)
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception(
            "Persisting quota_exceeded failed",
            extra={"target_type": target.kind.value, "target_id": target.id},
        )
        return False
    set_committed_value(target, "quota_exceeded", True)
    return result.rowcount == 1


def check_quota_warnings(
    db: Session,
    target: QuotaTarget,
    percent: float,
    dispatcher: AlertDispatcher,
    *,
    now: datetime | None = None,
) -> list[int]:
    """Fire each enabled quota_warning rule whose threshold ``percent`` reached.

    Returns the thresholds that produced an alert.
    """

    now = now or utcnow()
    kind = target.kind.value
    fired: list[int] = []
    try:
        rules = find_enabled_rules(db, AlertType.QUOTA_WARNING.value)
    except SQLAlchemyError as exc:
        dispatcher.persistence_failed(db, "load_rules", exc, alert_type=AlertType.QUOTA_WARNING.value)
        return fired

    for rule in rules:
        try:
            threshold = warning_threshold(parse_condition(rule.condition))
        except ConditionParseError:
            logger.warning("Skipping rule with malformed condition", extra={"rule_id": rule.id})
            continue
        if percent < threshold:
            continue
        if not cooldown_elapsed(rule, now):
            continue

        key = quota_warning_key(kind, target.id, threshold)
        with dispatcher.target_locks.hold((AlertType.QUOTA_WARNING.value, kind, target.id)):
            try:
                duplicate = has_recent_alert(db, key, window=dispatcher.dedup_window, now=now)
            except SQLAlchemyError as exc:
                dispatcher.persistence_failed(
                    db, "dedup_lookup", exc, rule_id=rule.id, target_type=kind, target_id=target.id
                )
                continue
            if duplicate:
                dispatcher.metrics.suppressed(AlertType.QUOTA_WARNING.value, "duplicate")
                continue
            message = with_dedup_marker(render_warning_message(target, percent), key)
            if dispatcher.fire_rule(
                db,
                rule,
                AlertType.QUOTA_WARNING.value,
                kind,
                target.id,
                target.name,
                message,
                dedup_key=key,
                now=now,
            ):
                fired.append(threshold)
    return fired


def check_quota(
    db: Session,
    target: QuotaTarget,
    dispatcher: AlertDispatcher,
    *,
    now: datetime | None = None,
) -> QuotaCheckOutcome:
    """Evaluate warning thresholds and the exceeded transition for one target."""

    outcome = QuotaCheckOutcome()
    if target.traffic_quota <= 0:
        return outcome

    percent = usage_percent(target.quota_used, target.traffic_quota)
    outcome.warnings = check_quota_warnings(db, target, percent, dispatcher, now=now)

    if target.quota_used >= target.traffic_quota and not target.quota_exceeded:
        if mark_quota_exceeded(db, target):
            outcome.exceeded = True
            logger.warning(
                "Traffic quota exceeded",
                extra={"target_type": target.kind.value, "target_id": target.id},
            )
            dispatcher.trigger_alert(
                db,
                AlertType.QUOTA_EXCEEDED.value,
                target.kind.value,
                target.id,
                target.name,
                render_exceeded_message(target),
                now=now,
            )
    return outcome


def scan_quotas(db: Session, dispatcher: AlertDispatcher, *, now: datetime | None = None) -> int:
    """Evaluate every node and client carrying a finite quota."""

    checked = 0
    for model in TARGET_MODELS:
        targets = db.scalars(select(model).where(model.traffic_quota > 0).order_by(model.id)).all()
        for target in targets:
            try:
                check_quota(db, target, dispatcher, now=now)
            except Exception:  # noqa: BLE001
                db.rollback()
                logger.exception(
                    "Quota evaluation failed",
                    extra={"target_type": target.kind.value, "target_id": target.id},
                )
            checked += 1
    return checked


def _reset_days(today: datetime) -> list[int]:
    """Reset days that fall due today; short months absorb the missing days."""

    last_day = calendar.monthrange(today.year, today.month)[1]
    if today.day == last_day:
        return list(range(today.day, 32))
    return [today.day]


def reset_quotas(db: Session, *, now: datetime | None = None) -> dict[str, int]:
    """Zero usage for targets whose reset day is today and not reset in 28 days."""

    now = now or utcnow()
    cutoff = now - MIN_RESET_AGE
    days = _reset_days(now)
    counts: dict[str, int] = {}
    for model in TARGET_MODELS:
        try:
            result = db.execute(
                update(model)
                .where(
                    model.quota_reset_day.in_(days),
                    or_(model.quota_reset_at.is_(None), model.quota_reset_at < cutoff),
                )
                .values(quota_used=0, quota_exceeded=False, quota_reset_at=now)
                .execution_options(synchronize_session=False)
            )
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Quota reset failed", extra={"target_type": model.kind.value})
            continue
        counts[model.kind.value] = result.rowcount or 0
    logger.info("Quota reset pass", extra={"reset": counts})
    return counts


__all__ = [
    "QuotaCheckOutcome",
    "check_quota",
    "check_quota_warnings",
    "mark_quota_exceeded",
    "quota_warning_key",
    "render_exceeded_message",
    "render_warning_message",
    "reset_quotas",
    "scan_quotas",
    "usage_percent",
]
