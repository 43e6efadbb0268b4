"""Metrics sinks injected into the alert dispatcher."""
from __future__ import annotations

from typing import Protocol

from prometheus_client import REGISTRY, CollectorRegistry, Counter


class MetricsSink(Protocol):
    def delivery(self, alert_type: str, channel_type: str, status: str) -> None: ...

    def suppressed(self, alert_type: str, reason: str) -> None: ...

    def persistence_error(self, operation: str) -> None: ...


class NoopMetricsSink:
    """Discards every observation."""

    def delivery(self, alert_type: str, channel_type: str, status: str) -> None:
        return None

    def suppressed(self, alert_type: str, reason: str) -> None:
        return None

    def persistence_error(self, operation: str) -> None:
        return None


class PrometheusMetricsSink:
    """Counts alert outcomes with ``prometheus_client`` counters."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        registry = registry if registry is not None else REGISTRY
        self._deliveries = Counter(
            "panel_alert_deliveries_total",
            "Alert notifications attempted, by outcome",
            ["alert_type", "channel_type", "status"],
            registry=registry,
        )
        self._suppressed = Counter(
            "panel_alert_suppressed_total",
            "Alert attempts suppressed before dispatch",
            ["alert_type", "reason"],
            registry=registry,
        )
        self._persistence_errors = Counter(
            "panel_alert_persistence_errors_total",
            "Alert bookkeeping writes that failed",
            ["operation"],
            registry=registry,
        )

    def delivery(self, alert_type: str, channel_type: str, status: str) -> None:
        self._deliveries.labels(alert_type=alert_type, channel_type=channel_type, status=status).inc()

    def suppressed(self, alert_type: str, reason: str) -> None:
        self._suppressed.labels(alert_type=alert_type, reason=reason).inc()

    def persistence_error(self, operation: str) -> None:
        self._persistence_errors.labels(operation=operation).inc()


__all__ = ["MetricsSink", "NoopMetricsSink", "PrometheusMetricsSink"]
