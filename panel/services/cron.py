"""Periodic alerting jobs run by the scheduler."""
from __future__ import annotations

import logging
from collections.abc import Callable

from sqlalchemy.orm import Session

from panel.config import get_settings
from panel.core.runtime_state import mark_job_run
from panel.db import get_sessionmaker
from panel.services.alert_dispatch import AlertDispatcher
from panel.services.alert_rules import cleanup_alert_logs
from panel.services.offline_monitor import check_offline_nodes
from panel.services.quota_monitor import reset_quotas, scan_quotas
from panel.utils.time import utcnow

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]


def _open(session_factory: SessionFactory | None) -> Session:
    factory = session_factory or get_sessionmaker()
    return factory()


def run_quota_scan_once(dispatcher: AlertDispatcher, *, session_factory: SessionFactory | None = None) -> int:
    db = _open(session_factory)
    try:
        checked = scan_quotas(db, dispatcher)
    finally:
        db.close()
    mark_job_run("quota_scan", utcnow())
    return checked


def run_offline_sweep_once(
    dispatcher: AlertDispatcher,
    *,
    timeout_minutes: int | None = None,
    session_factory: SessionFactory | None = None,
) -> list[int]:
    if timeout_minutes is None:
        timeout_minutes = get_settings().HEARTBEAT_TIMEOUT_MINUTES
    db = _open(session_factory)
    try:
        flipped = check_offline_nodes(db, dispatcher, timeout_minutes)
    finally:
        db.close()
    mark_job_run("offline_sweep", utcnow())
    return flipped


def run_quota_reset_once(*, session_factory: SessionFactory | None = None) -> dict[str, int]:
    db = _open(session_factory)
    try:
        counts = reset_quotas(db)
    finally:
        db.close()
    mark_job_run("quota_reset", utcnow())
    return counts


def run_alert_log_retention_once(
    *,
    retention_days: int | None = None,
    session_factory: SessionFactory | None = None,
) -> int:
    if retention_days is None:
        retention_days = get_settings().ALERT_LOG_RETENTION_DAYS
    db = _open(session_factory)
    try:
        removed = cleanup_alert_logs(db, retention_days)
    finally:
        db.close()
    mark_job_run("alert_log_retention", utcnow())
    return removed


__all__ = [
    "run_alert_log_retention_once",
    "run_offline_sweep_once",
    "run_quota_reset_once",
    "run_quota_scan_once",
]
