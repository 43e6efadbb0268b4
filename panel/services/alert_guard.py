"""Cooldown and deduplication checks guarding alert dispatch."""
from __future__ import annotations

import threading
from collections.abc import Hashable, Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import NamedTuple

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from panel.models.alert import AlertLog, AlertRule
from panel.utils.time import as_utc, utcnow

DEFAULT_DEDUP_WINDOW = timedelta(hours=24)


class GuardDecision(NamedTuple):
    allowed: bool
    reason: str | None = None


ALLOW = GuardDecision(True)


class KeyedLocks:
    """One lock per key, created on demand and dropped once nobody holds it."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: dict[Hashable, list] = {}

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = [threading.RLock(), 0]
                self._entries[key] = entry
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    self._entries.pop(key, None)

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)


def cooldown_elapsed(rule: AlertRule, now: datetime | None = None) -> bool:
    """True when ``rule`` has never fired or its cooldown has fully elapsed."""

    last = as_utc(rule.last_alert_at)
    if last is None:
        return True
    now = now or utcnow()
    return now - last >= timedelta(minutes=max(rule.cooldown_minutes or 0, 0))


def has_recent_alert(
    db: Session,
    dedup_key: str,
    *,
    window: timedelta = DEFAULT_DEDUP_WINDOW,
    now: datetime | None = None,
) -> bool:
    """True if an alert log carrying ``dedup_key`` was written inside ``window``."""

    since = (now or utcnow()) - window
    stmt = (
        select(func.count(AlertLog.id))
        .where(AlertLog.dedup_key == dedup_key)
        .where(AlertLog.created_at > since)
    )
    return (db.scalar(stmt) or 0) > 0


def check_guard(
    db: Session,
    rule: AlertRule,
    dedup_key: str | None = None,
    *,
    window: timedelta = DEFAULT_DEDUP_WINDOW,
    now: datetime | None = None,
) -> GuardDecision:
    """Decide whether ``rule`` may fire now.

    The rule must be enabled and out of cooldown, and when ``dedup_key`` is
    given no log carrying it may exist inside ``window``.
    """

    now = now or utcnow()
    if not rule.enabled:
        return GuardDecision(False, "disabled")
    if not cooldown_elapsed(rule, now):
        return GuardDecision(False, "cooldown")
    if dedup_key is not None and has_recent_alert(db, dedup_key, window=window, now=now):
        return GuardDecision(False, "duplicate")
    return ALLOW


__all__ = [
    "ALLOW",
    "DEFAULT_DEDUP_WINDOW",
    "GuardDecision",
    "KeyedLocks",
    "check_guard",
    "cooldown_elapsed",
    "has_recent_alert",
]
