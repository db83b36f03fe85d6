"""Prometheus metrics for sync queue delivery."""

from prometheus_client import Counter, Gauge, Histogram

sync_delivery_latency_ms = Histogram(
    "sync_delivery_latency_ms",
    "Sync queue delivery latency in milliseconds",
    ["action", "outcome"],
    buckets=[10, 50, 100, 200, 500, 1000, 2000, 4000, 8000],
)

sync_delivery_errors_total = Counter(
    "sync_delivery_errors_total",
    "Total failed sync queue deliveries",
    ["action", "reason"],
)

sync_queue_depth = Gauge(
    "sync_queue_depth",
    "Entries waiting in the sync queue",
)


class PrometheusSyncMetrics:
    """Prometheus-based sync metrics implementation."""

    def record_latency(self, action: str, outcome: str, latency_ms: float) -> None:
        """Record delivery latency."""
        sync_delivery_latency_ms.labels(action=action, outcome=outcome).observe(latency_ms)

    def inc_error(self, action: str, reason: str) -> None:
        """Increment error counter."""
        sync_delivery_errors_total.labels(action=action, reason=reason).inc()

    def set_depth(self, depth: int) -> None:
        """Publish current queue depth."""
        sync_queue_depth.set(depth)
