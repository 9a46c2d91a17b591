"""
State shared between the reconciler and the HTTP surface: Prometheus metrics
and the diagnostics snapshot.
"""

import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Iterator

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, Histogram, generate_latest

RECONCILE_DURATION_BUCKETS = (0.01, 0.1, 0.25, 0.5, 1.0, 5.0, 15.0, 60.0)


class Metrics:
    """Reconciliation metrics, registered on the operator's own registry."""

    def __init__(self, registry: CollectorRegistry):
        self.reconciliations = Counter(
            "project_operator_reconciliations_total",
            "Total number of reconciliations",
            registry=registry,
        )
        self.failures = Counter(
            "project_operator_reconcile_failures_total",
            "Total number of failed reconciliations",
            ["kind"],
            registry=registry,
        )
        self.reconcile_duration = Histogram(
            "project_operator_reconcile_duration_seconds",
            "Time spent in one reconciliation",
            buckets=RECONCILE_DURATION_BUCKETS,
            registry=registry,
        )

    @contextmanager
    def count_and_measure(self) -> Iterator[None]:
        self.reconciliations.inc()
        start = time.perf_counter()
        try:
            yield
        finally:
            self.reconcile_duration.observe(time.perf_counter() - start)

    def reconcile_failure(self, kind: str) -> None:
        self.failures.labels(kind=kind).inc()


@dataclass
class Diagnostics:
    reporter: str
    last_event: datetime = field(default_factory=lambda: datetime.now(UTC))

    def touch(self) -> None:
        self.last_event = datetime.now(UTC)

    def to_dict(self) -> dict[str, Any]:
        return {"last_event": self.last_event.isoformat(), "reporter": self.reporter}


class OperatorState:
    """Process-wide metrics registry and diagnostics, created once at startup."""

    def __init__(self, reporter: str):
        self.registry = CollectorRegistry()
        self.metrics = Metrics(self.registry)
        self.diagnostics = Diagnostics(reporter=reporter)

    def render_metrics(self) -> tuple[bytes, str]:
        """
        Returns:
            Tuple of (Prometheus text exposition, content type)
        """
        return generate_latest(self.registry), CONTENT_TYPE_LATEST
