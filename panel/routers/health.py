"""Health check endpoint."""
from __future__ import annotations

import logging

from fastapi import APIRouter
from sqlalchemy import text

from panel.config import get_settings
from panel.core.runtime_state import is_scheduler_active, last_job_runs
from panel.db import get_engine
from panel.services.scheduler_lock import describe_scheduler_lock

router = APIRouter(prefix="/health", tags=["health"])
logger = logging.getLogger(__name__)


def _db_status() -> str:
    """Return 'ok' if the DB is reachable, 'error' otherwise."""

    try:
        engine = get_engine()
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return "ok"
    except Exception:  # noqa: BLE001
        logger.exception("DB health check failed")
        return "error"


def _scheduler_lock_status() -> dict[str, object]:
    try:
        return describe_scheduler_lock()
    except Exception:  # noqa: BLE001
        logger.exception("Scheduler lock lookup failed")
        return {"status": "unknown", "owner": None}


@router.get("", summary="Health check")
def healthcheck() -> dict[str, object]:
    """Return database reachability and scheduler state."""

    settings = get_settings()
    db_status = _db_status()
    return {
        "status": "ok" if db_status == "ok" else "degraded",
        "db_status": db_status,
        "db_ok": db_status == "ok",
        "scheduler_config_enabled": bool(settings.SCHEDULER_ENABLED),
        "scheduler_running": is_scheduler_active(),
        "scheduler_lock": _scheduler_lock_status() if db_status == "ok" else {"status": "unknown"},
        "last_job_runs": last_job_runs(),
        "alerting": {
            "dedup_window_hours": settings.ALERT_DEDUP_WINDOW_HOURS,
            "notify_timeout_seconds": settings.NOTIFY_TIMEOUT_SECONDS,
            "heartbeat_timeout_minutes": settings.HEARTBEAT_TIMEOUT_MINUTES,
        },
    }
