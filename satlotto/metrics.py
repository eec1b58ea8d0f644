"""
Prometheus instruments for the draw engine and the status API.

    from satlotto.metrics import METRICS

    METRICS.record_draw()
    METRICS.record_announcement("dead_lettered")
    with METRICS.response_timer():
        ...

Build your own ``Metrics`` with a private registry in tests.
"""

from __future__ import annotations

from contextlib import contextmanager
from time import perf_counter
from typing import Iterable

from prometheus_client import REGISTRY, Counter, Gauge, Histogram

_ANNOUNCE_OUTCOMES = ("delivered", "dead_lettered")

_RESPONSE_BUCKETS = (0.1, 0.5, 1.0, 2.0, 5.0)


class Metrics:
    def __init__(
        self,
        *,
        namespace: str = "satlotto",
        registry=REGISTRY,
        response_buckets: Iterable[float] = _RESPONSE_BUCKETS,
    ) -> None:
        self.registry = registry
        self.draws_total = Counter(
            "draws_total",
            "Number of draws resolved.",
            namespace=namespace,
            registry=registry,
        )
        self.tickets_total = Gauge(
            "tickets_total",
            "Participant count of the most recently inspected round.",
            namespace=namespace,
            registry=registry,
        )
        self.announcements_total = Counter(
            "announcements_total",
            "Relay announcements, labeled by outcome.",
            labelnames=("outcome",),
            namespace=namespace,
            registry=registry,
        )
        self.response_time_seconds = Histogram(
            "response_time_seconds",
            "Status API response time in seconds.",
            buckets=tuple(response_buckets),
            namespace=namespace,
            registry=registry,
        )

    def record_draw(self) -> None:
        self.draws_total.inc()

    def set_ticket_count(self, count: int) -> None:
        self.tickets_total.set(count)

    def record_announcement(self, outcome: str) -> None:
        if outcome not in _ANNOUNCE_OUTCOMES:
            raise ValueError(f"unknown announcement outcome: {outcome}")
        self.announcements_total.labels(outcome=outcome).inc()

    @contextmanager
    def response_timer(self):
        start = perf_counter()
        try:
            yield
        finally:
            self.response_time_seconds.observe(perf_counter() - start)


METRICS = Metrics()

__all__ = ["Metrics", "METRICS"]
