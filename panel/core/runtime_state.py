"""Process-wide runtime flags shared across modules."""
from __future__ import annotations

from datetime import datetime

_scheduler_active = False
_last_job_runs: dict[str, datetime] = {}


def set_scheduler_active(active: bool) -> None:
    global _scheduler_active
    _scheduler_active = active


def is_scheduler_active() -> bool:
    return _scheduler_active


def mark_job_run(job: str, at: datetime) -> None:
    _last_job_runs[job] = at


def last_job_runs() -> dict[str, str]:
    return {job: at.isoformat() for job, at in sorted(_last_job_runs.items())}
