from __future__ import annotations

from dataclasses import dataclass

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest
from prometheus_client.exposition import CONTENT_TYPE_LATEST

from app.ricedash.core.config import settings


@dataclass
class MetricsSnapshot:
    content: bytes
    content_type: str


class Metrics:
    def __init__(self) -> None:
        self.enabled = bool(settings.METRICS_ENABLED)
        self._registry = None
        self._http_requests_total = None
        self._http_request_duration_ms = None
        self._lock_wait_timeout_total = None
        self._rbac_denied_total = None
        self._webhook_events_total = None
        self._gateway_mutations_total = None
        self._stock_refresh_runs_total = None
        self._consistency_errors_total = None
        if self.enabled:
            self._initialize_registry()

    def _initialize_registry(self) -> None:
        self._registry = CollectorRegistry()
        self._http_requests_total = Counter(
            "http_requests_total",
            "HTTP requests by route/method/status.",
            ["route", "method", "status"],
            registry=self._registry,
        )
        self._http_request_duration_ms = Histogram(
            "http_request_duration_ms",
            "HTTP request latency in milliseconds.",
            ["route", "method", "status"],
            buckets=(5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000),
            registry=self._registry,
        )
        self._lock_wait_timeout_total = Counter(
            "lock_wait_timeout_total",
            "Lock wait timeout occurrences.",
            registry=self._registry,
        )
        self._rbac_denied_total = Counter(
            "rbac_denied_total",
            "Row policy denials by entity and operation.",
            ["entity", "operation"],
            registry=self._registry,
        )
        self._webhook_events_total = Counter(
            "identity_webhook_events_total",
            "Identity webhook events by type and outcome.",
            ["event_type", "outcome"],
            registry=self._registry,
        )
        self._gateway_mutations_total = Counter(
            "gateway_mutations_total",
            "Privileged gateway mutations by action and outcome.",
            ["action", "outcome"],
            registry=self._registry,
        )
        self._stock_refresh_runs_total = Counter(
            "stock_refresh_runs_total",
            "Stock refresh runs by outcome.",
            ["outcome"],
            registry=self._registry,
        )
        self._consistency_errors_total = Counter(
            "consistency_errors_total",
            "Two-store writes left diverged.",
            ["operation"],
            registry=self._registry,
        )

    def reset(self) -> None:
        if not self.enabled:
            return
        self._initialize_registry()

    def record_http_request(self, *, route: str, method: str, status_code: int, latency_ms: float) -> None:
        if not self.enabled:
            return
        labels = {"route": route, "method": method, "status": str(status_code)}
        self._http_requests_total.labels(**labels).inc()
        self._http_request_duration_ms.labels(**labels).observe(latency_ms)

    def increment_lock_wait_timeout(self) -> None:
        if not self.enabled:
            return
        self._lock_wait_timeout_total.inc()

    def increment_rbac_denied(self, entity: str = "unknown", operation: str = "unknown") -> None:
        if not self.enabled:
            return
        self._rbac_denied_total.labels(entity=entity, operation=operation).inc()

    def record_webhook_event(self, event_type: str, outcome: str) -> None:
        if not self.enabled:
            return
        self._webhook_events_total.labels(event_type=event_type, outcome=outcome).inc()

    def record_gateway_mutation(self, action: str, outcome: str) -> None:
        if not self.enabled:
            return
        self._gateway_mutations_total.labels(action=action, outcome=outcome).inc()

    def record_stock_refresh(self, outcome: str) -> None:
        if not self.enabled:
            return
        self._stock_refresh_runs_total.labels(outcome=outcome).inc()

    def increment_consistency_error(self, operation: str) -> None:
        if not self.enabled:
            return
        self._consistency_errors_total.labels(operation=operation).inc()

    def render(self) -> MetricsSnapshot:
        if not self.enabled:
            return MetricsSnapshot(content=b"metrics_disabled\n", content_type="text/plain")
        return MetricsSnapshot(content=generate_latest(self._registry), content_type=CONTENT_TYPE_LATEST)


metrics = Metrics()
