"""ORM models package."""
from .alert import AlertLog, AlertLogStatus, AlertRule, AlertType, ChannelType, NotifyChannel
from .base import Base
from .scheduler_lock import SchedulerLock
from .target import Client, Node, TargetKind, TargetStatus

__all__ = [
    "AlertLog",
    "AlertLogStatus",
    "AlertRule",
    "AlertType",
    "Base",
    "ChannelType",
    "Client",
    "Node",
    "NotifyChannel",
    "SchedulerLock",
    "TargetKind",
    "TargetStatus",
]
