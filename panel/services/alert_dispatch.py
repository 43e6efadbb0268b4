"""Alert dispatch engine.

``AlertDispatcher.trigger_alert`` looks up the enabled rules for an alert
type, applies each rule's cooldown, resolves the rule's channels into
notifiers and records one :class:`AlertLog` per channel attempt. Channel
failures are absorbed into log rows; nothing raised by a notifier or by the
bookkeeping writes escapes to the caller.
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from functools import partial

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from panel.config import Settings
from panel.models.alert import AlertLog, AlertLogStatus, AlertRule, AlertType, NotifyChannel
from panel.services.alert_guard import DEFAULT_DEDUP_WINDOW, KeyedLocks, check_guard
from panel.services.alert_rules import find_enabled_rules, get_channel, parse_channel_ids
from panel.services.metrics import MetricsSink, NoopMetricsSink
from panel.services.notifier_factory import create_notifier
from panel.services.notifiers import DEFAULT_TIMEOUT_SECONDS, Notifier
from panel.utils.errors import ConfigParseError, PersistenceError, TransportError, UnknownChannelType
from panel.utils.time import utcnow

logger = logging.getLogger(__name__)

NotifierFactory = Callable[[NotifyChannel], Notifier]

ALERT_TITLES = {
    AlertType.NODE_OFFLINE.value: "Node Offline",
    AlertType.QUOTA_EXCEEDED.value: "Quota Exceeded",
    AlertType.QUOTA_WARNING.value: "Quota Warning",
    AlertType.TRAFFIC_SPIKE.value: "Traffic Spike",
    AlertType.AGENT_UPDATE.value: "Agent Update",
}


def alert_title(alert_type: str) -> str:
    return ALERT_TITLES.get(alert_type, "Alert")


def with_dedup_marker(message: str, dedup_key: str) -> str:
    """Append the hidden ``<!-- key -->`` trailer kept in the logged message."""

    return f"{message}\n<!-- {dedup_key} -->"


class AlertDispatcher:
    """Fans alerts out to the channels configured on matching rules."""

    def __init__(
        self,
        *,
        notifier_factory: NotifierFactory | None = None,
        metrics: MetricsSink | None = None,
        dedup_window: timedelta = DEFAULT_DEDUP_WINDOW,
        notify_timeout: float = DEFAULT_TIMEOUT_SECONDS,
        subject_prefix: str = "",
    ) -> None:
        self.notifier_factory: NotifierFactory = notifier_factory or partial(
            create_notifier, timeout=notify_timeout, subject_prefix=subject_prefix
        )
        self.metrics: MetricsSink = metrics or NoopMetricsSink()
        self.dedup_window = dedup_window
        # Serialises cooldown check, sends and last_alert_at update per rule.
        self.rule_locks = KeyedLocks()
        # Serialises dedup check and log append per monitored target.
        self.target_locks = KeyedLocks()

    @classmethod
    def from_settings(cls, settings: Settings, *, metrics: MetricsSink | None = None) -> "AlertDispatcher":
        return cls(
            metrics=metrics,
            dedup_window=timedelta(hours=settings.ALERT_DEDUP_WINDOW_HOURS),
            notify_timeout=settings.NOTIFY_TIMEOUT_SECONDS,
            subject_prefix=settings.NOTIFY_SUBJECT_PREFIX,
        )

    def persistence_failed(
        self, db: Session, operation: str, exc: SQLAlchemyError, **context: object
    ) -> PersistenceError:
        """Roll back, log and count a failed store operation; the caller carries on."""

        db.rollback()
        error = PersistenceError(operation, str(getattr(exc, "orig", None) or exc))
        error.__cause__ = exc
        logger.error(
            "Alert bookkeeping failed",
            exc_info=error,
            extra={"operation": operation, **context},
        )
        self.metrics.persistence_error(operation)
        return error

    def trigger_alert(
        self,
        db: Session,
        alert_type: str,
        target_type: str,
        target_id: int,
        target_name: str,
        message: str,
        *,
        now: datetime | None = None,
    ) -> int:
        """Fire every enabled rule of ``alert_type``; returns how many rules fired."""

        try:
            rules = find_enabled_rules(db, alert_type)
        except SQLAlchemyError as exc:
            self.persistence_failed(db, "load_rules", exc, alert_type=alert_type)
            return 0

        if not rules:
            logger.debug("No enabled rule for alert", extra={"alert_type": alert_type})
            return 0

        fired = 0
        for rule in rules:
            if self.fire_rule(
                db, rule, alert_type, target_type, target_id, target_name, message, now=now
            ):
                fired += 1
        return fired

    def fire_rule(
        self,
        db: Session,
        rule: AlertRule,
        alert_type: str,
        target_type: str,
        target_id: int,
        target_name: str,
        message: str,
        *,
        dedup_key: str | None = None,
        now: datetime | None = None,
    ) -> bool:
        """Run one evaluation pass of ``rule``; returns False when suppressed.

        Deduplication is the caller's concern; ``dedup_key`` is only stamped
        on the written log rows.
        """

        with self.rule_locks.hold(rule.id):
            try:
                # Another thread may have fired this rule while we waited.
                current = db.get(AlertRule, rule.id, populate_existing=True)
            except SQLAlchemyError as exc:
                self.persistence_failed(db, "load_rule", exc, rule_id=rule.id)
                return False
            if current is None:
                return False

            decision = check_guard(db, current, now=now)
            if not decision.allowed:
                self.metrics.suppressed(alert_type, decision.reason or "guard")
                logger.debug(
                    "Alert suppressed",
                    extra={"rule_id": current.id, "alert_type": alert_type, "reason": decision.reason},
                )
                return False

            title = f"[{alert_title(alert_type)}] {target_name}"
            for channel_id in parse_channel_ids(current.channel_ids):
                self._deliver(
                    db,
                    current,
                    channel_id,
                    alert_type=alert_type,
                    title=title,
                    message=message,
                    target_type=target_type,
                    target_id=target_id,
                    target_name=target_name,
                    dedup_key=dedup_key,
                )

            self._touch_rule(db, current, now or utcnow())
        return True

    def _deliver(
        self,
        db: Session,
        rule: AlertRule,
        channel_id: int,
        *,
        alert_type: str,
        title: str,
        message: str,
        target_type: str,
        target_id: int,
        target_name: str,
        dedup_key: str | None,
    ) -> None:
        try:
            channel = get_channel(db, channel_id)
        except SQLAlchemyError as exc:
            self.persistence_failed(db, "load_channel", exc, channel_id=channel_id)
            return
        if channel is None or not channel.enabled:
            return

        try:
            notifier = self.notifier_factory(channel)
        except (ConfigParseError, UnknownChannelType) as exc:
            logger.warning(
                "Notifier unavailable, channel skipped",
                extra={"channel_id": channel.id, "channel_type": channel.type, "error": str(exc)},
            )
            self.metrics.suppressed(alert_type, "channel_config")
            return

        status = AlertLogStatus.SENT
        error: str | None = None
        try:
            notifier.send(title, message)
        except TransportError as exc:
            status = AlertLogStatus.FAILED
            error = str(exc)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Notifier raised unexpectedly", extra={"channel_id": channel.id})
            status = AlertLogStatus.FAILED
            error = f"{type(exc).__name__}: {exc}"

        log_extra = {
            "rule_id": rule.id,
            "channel_id": channel.id,
            "channel_type": channel.type,
            "alert_type": alert_type,
            "target_type": target_type,
            "target_id": target_id,
        }
        if status is AlertLogStatus.SENT:
            logger.info("Alert notification sent", extra=log_extra)
        else:
            logger.warning("Alert notification failed", extra={**log_extra, "error": error})
        self.metrics.delivery(alert_type, channel.type, status.value)

        self._append_log(
            db,
            AlertLog(
                rule_id=rule.id,
                rule_name=rule.name,
                type=alert_type,
                message=message,
                target_type=target_type,
                target_id=target_id,
                target_name=target_name,
                channel_id=channel.id,
                status=status.value,
                error=error,
                dedup_key=dedup_key,
            ),
        )

    def _append_log(self, db: Session, entry: AlertLog) -> None:
        try:
            db.add(entry)
            db.commit()
        except SQLAlchemyError as exc:
            self.persistence_failed(db, "append_log", exc, rule_id=entry.rule_id, channel_id=entry.channel_id)

    def _touch_rule(self, db: Session, rule: AlertRule, at: datetime) -> None:
        try:
            db.execute(update(AlertRule).where(AlertRule.id == rule.id).values(last_alert_at=at))
            db.commit()
        except SQLAlchemyError as exc:
            self.persistence_failed(db, "update_rule", exc, rule_id=rule.id)


__all__ = ["ALERT_TITLES", "AlertDispatcher", "NotifierFactory", "alert_title", "with_dedup_marker"]
