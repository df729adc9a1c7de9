from __future__ import annotations

from dataclasses import dataclass

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest
from prometheus_client.exposition import CONTENT_TYPE_LATEST

from app.custody.core.config import settings


HTTP_LATENCY_BUCKETS_MS = (5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000)


@dataclass
class MetricsSnapshot:
    content: bytes
    content_type: str


class _Collectors:
    """Every collector bound to one registry, rebuilt together on reset."""

    def __init__(self) -> None:
        self.registry = CollectorRegistry()
        self.ledger_operations = Counter(
            "ledger_operations_total",
            "Ledger-mutating operations by outcome.",
            ["operation", "result"],
            registry=self.registry,
        )
        self.invariant_violations = Counter(
            "invariant_violations_total",
            "Integrity check findings by check.",
            ["check_id"],
            registry=self.registry,
        )
        self.notifications_flushed = Counter(
            "notifications_flushed_total",
            "Coalesced change notification batches delivered.",
            registry=self.registry,
        )
        self.idempotency_replays = Counter(
            "idempotency_replay_total",
            "Mutations answered from a stored idempotent response.",
            registry=self.registry,
        )
        self.lock_wait_timeouts = Counter(
            "lock_wait_timeout_total",
            "Ledger row lock wait timeouts.",
            registry=self.registry,
        )
        self.http_requests = Counter(
            "http_requests_total",
            "HTTP requests by route/method/status.",
            ["route", "method", "status"],
            registry=self.registry,
        )
        self.http_latency_ms = Histogram(
            "http_request_duration_ms",
            "HTTP request latency in milliseconds.",
            ["route", "method", "status"],
            buckets=HTTP_LATENCY_BUCKETS_MS,
            registry=self.registry,
        )


class Metrics:
    def __init__(self, enabled: bool | None = None) -> None:
        self.enabled = bool(settings.METRICS_ENABLED if enabled is None else enabled)
        self._collectors = _Collectors() if self.enabled else None

    def reset(self) -> None:
        if self.enabled:
            self._collectors = _Collectors()

    def record_ledger_operation(self, operation: str, result: str) -> None:
        if self.enabled:
            self._collectors.ledger_operations.labels(operation=operation, result=result).inc()

    def increment_invariant_violation(self, check_id: str, count: int = 1) -> None:
        if self.enabled:
            self._collectors.invariant_violations.labels(check_id=check_id).inc(count)

    def increment_notifications_flushed(self) -> None:
        if self.enabled:
            self._collectors.notifications_flushed.inc()

    def increment_idempotency_replay(self) -> None:
        if self.enabled:
            self._collectors.idempotency_replays.inc()

    def increment_lock_wait_timeout(self) -> None:
        if self.enabled:
            self._collectors.lock_wait_timeouts.inc()

    def record_http_request(self, *, route: str, method: str, status_code: int, latency_ms: float) -> None:
        if not self.enabled:
            return
        labels = {"route": route, "method": method, "status": str(status_code)}
        self._collectors.http_requests.labels(**labels).inc()
        self._collectors.http_latency_ms.labels(**labels).observe(latency_ms)

    def render(self) -> MetricsSnapshot:
        if not self.enabled:
            return MetricsSnapshot(content=b"metrics_disabled\n", content_type="text/plain")
        return MetricsSnapshot(content=generate_latest(self._collectors.registry), content_type=CONTENT_TYPE_LATEST)


metrics = Metrics()
