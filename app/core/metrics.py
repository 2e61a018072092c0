"""
Simple in-memory metrics for Prometheus exposition.
Thread-safe counters.
"""
import threading
from typing import Dict

METRIC_PREFIX = "deploy"

# name -> help text; exported in this order
COUNTERS = {
    "requests_total": "Total HTTP requests",
    "requests_2xx": "HTTP requests answered with 2xx",
    "requests_4xx": "HTTP requests answered with 4xx",
    "requests_5xx": "HTTP requests answered with 5xx",
    "projects_queued_total": "Deploy jobs launched on a backend",
    "submit_rejected_total": "Submissions rejected before launch",
    "launch_error_total": "Launch calls that failed",
    "gateway_connections_total": "Viewer connections accepted",
    "gateway_subscriptions_total": "Topic subscriptions acknowledged",
    "gateway_messages_received_total": "Broker messages received by the gateway",
    "gateway_messages_delivered_total": "Payloads queued to viewer connections",
    "gateway_messages_dropped_total": "Payloads dropped from full viewer queues",
    "proxy_requests_total": "Requests forwarded to the artifact store",
    "proxy_upstream_error_total": "Artifact store requests that failed",
}


class Metrics:
    """Thread-safe metrics collection."""

    def __init__(self):
        self._lock = threading.Lock()
        self._counters: Dict[str, int] = {name: 0 for name in COUNTERS}

    def inc(self, name: str, value: int = 1) -> None:
        """Increment a counter."""
        with self._lock:
            if name not in self._counters:
                self._counters[name] = 0
            self._counters[name] += value

    def get(self, name: str) -> int:
        """Get a counter value."""
        with self._lock:
            return self._counters.get(name, 0)

    def get_all(self) -> Dict[str, int]:
        """Get all counter values."""
        with self._lock:
            return self._counters.copy()

    def to_prometheus(self) -> str:
        """Export metrics in Prometheus text format."""
        lines = []
        counters = self.get_all()

        for name, value in counters.items():
            metric = f"{METRIC_PREFIX}_{name}"
            lines.append(f"# HELP {metric} {COUNTERS.get(name, name)}")
            lines.append(f"# TYPE {metric} counter")
            lines.append(f"{metric} {value}")

        return "\n".join(lines) + "\n"


# Global metrics instance
metrics = Metrics()
