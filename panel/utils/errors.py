"""Alerting error taxonomy and standardized error responses."""
from typing import Any


class AlertingError(Exception):
    """Base class for errors raised by the alerting engine."""


class ConfigParseError(AlertingError):
    """A notify channel carries a malformed configuration payload."""


class UnknownChannelType(AlertingError):
    """A notify channel declares a type with no notifier."""


class ConditionParseError(AlertingError):
    """An alert rule carries a malformed condition payload."""


class TransportError(AlertingError):
    """Delivery through a notifier failed."""

    def __init__(self, channel_type: str, stage: str, reason: str) -> None:
        super().__init__(f"{channel_type} {stage} failed: {reason}")
        self.channel_type = channel_type
        self.stage = stage
        self.reason = reason


class PersistenceError(AlertingError):
    """Writing alert bookkeeping to the store failed."""

    def __init__(self, operation: str, reason: str) -> None:
        super().__init__(f"{operation} failed: {reason}")
        self.operation = operation


def error_response(code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    """Return a standardized error payload."""

    payload: dict[str, Any] = {"error": {"code": code, "message": message}}
    if details:
        payload["error"]["details"] = details
    return payload


__all__ = [
    "AlertingError",
    "ConditionParseError",
    "ConfigParseError",
    "PersistenceError",
    "TransportError",
    "UnknownChannelType",
    "error_response",
]
