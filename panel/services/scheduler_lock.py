"""DB-backed lease electing the one runner that executes periodic alert jobs."""
from __future__ import annotations

import os
import socket
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from panel import db
from panel.models.scheduler_lock import SchedulerLock
from panel.utils.time import as_utc, utcnow

LEASE_NAME = "alert-scheduler"
LEASE_TTL_SECONDS = 300


def _owner_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}"


@contextmanager
def _session_scope(db_session: Session | None) -> Iterator[Session]:
    if db_session is not None:
        yield db_session
        return
    session = db.get_sessionmaker()()
    try:
        yield session
    finally:
        session.close()


def _locked_row(session: Session, name: str) -> SchedulerLock | None:
    stmt = select(SchedulerLock).where(SchedulerLock.name == name).with_for_update()
    return session.execute(stmt).scalar_one_or_none()


def _is_expired(lease: SchedulerLock, now: datetime) -> bool:
    expires_at = as_utc(lease.expires_at)
    return expires_at is None or expires_at <= now


def try_acquire_scheduler_lock(
    name: str = LEASE_NAME,
    *,
    ttl_seconds: int = LEASE_TTL_SECONDS,
    db_session: Session | None = None,
) -> bool:
    """Take the lease if it is free, expired, or already ours."""

    owner = _owner_id()
    now = utcnow()
    expires = now + timedelta(seconds=ttl_seconds)

    with _session_scope(db_session) as session:
        try:
            with session.begin_nested() if session.in_transaction() else session.begin():
                lease = _locked_row(session, name)
                if lease is None:
                    session.add(SchedulerLock(name=name, owner=owner, acquired_at=now, expires_at=expires))
                    session.flush()
                    return True
                if lease.owner != owner and not _is_expired(lease, now):
                    return False
                if lease.owner != owner:
                    lease.owner = owner
                    lease.acquired_at = now
                lease.expires_at = expires
                return True
        except IntegrityError:
            # Another runner inserted the row first.
            return False


def refresh_scheduler_lock(
    name: str = LEASE_NAME,
    *,
    ttl_seconds: int = LEASE_TTL_SECONDS,
    db_session: Session | None = None,
) -> None:
    """Extend the lease while this runner still owns it."""

    owner = _owner_id()
    with _session_scope(db_session) as session:
        with session.begin_nested() if session.in_transaction() else session.begin():
            lease = _locked_row(session, name)
            if lease is not None and lease.owner == owner:
                lease.expires_at = utcnow() + timedelta(seconds=ttl_seconds)


def release_scheduler_lock(name: str = LEASE_NAME, *, db_session: Session | None = None) -> None:
    owner = _owner_id()
    with _session_scope(db_session) as session:
        with session.begin_nested() if session.in_transaction() else session.begin():
            lease = _locked_row(session, name)
            if lease is not None and lease.owner == owner:
                session.delete(lease)


def describe_scheduler_lock(name: str = LEASE_NAME, *, db_session: Session | None = None) -> dict[str, object]:
    """Summarise lease ownership for the health endpoint."""

    with _session_scope(db_session) as session:
        lease = session.execute(select(SchedulerLock).where(SchedulerLock.name == name)).scalar_one_or_none()
        if lease is None:
            return {"status": "none", "owner": None, "present": False}

        now = utcnow()
        acquired_at = as_utc(lease.acquired_at)
        expires_at = as_utc(lease.expires_at)
        return {
            "status": "owned_by_self" if lease.owner == _owner_id() else "owned_by_other",
            "owner": lease.owner,
            "present": True,
            "age_seconds": (now - acquired_at).total_seconds() if acquired_at else None,
            "expires_in_seconds": (expires_at - now).total_seconds() if expires_at else None,
            "expired": _is_expired(lease, now),
        }


__all__ = [
    "LEASE_NAME",
    "describe_scheduler_lock",
    "refresh_scheduler_lock",
    "release_scheduler_lock",
    "try_acquire_scheduler_lock",
]
