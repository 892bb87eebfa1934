# =============================================================================
# BACKPORT BOT - METRICS COLLECTION
# =============================================================================
"""
Metrics Collection Module

Collects and exports Prometheus metrics for the backport bot.

Every collector registers into its own ``CollectorRegistry`` so several
bots (or several tests) can live in one process without clashing on
metric names. The webhook server exposes the registry on ``/metrics``.

Metric Categories:
    - Webhook metrics: Deliveries per event and result, handling latency
    - Backport metrics: Backport issues created and closed per repository
    - GitHub metrics: API requests per method and status, rate limit
    - System metrics: Errors, uptime
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime
from typing import Any, Dict, Optional

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
    start_http_server,
)

logger = logging.getLogger(__name__)


# Seconds; GitHub gives up on a delivery after 10s
WEBHOOK_DURATION_BUCKETS = (0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0)


# =============================================================================
# METRICS COLLECTOR
# =============================================================================


class MetricsCollector:
    """
    Central metrics collector for the backport bot.

    Usage::

        metrics = MetricsCollector()
        metrics.record_webhook("push", "created")
        metrics.record_backport_created("spring-projects/spring-boot")
        metrics.record_github_request("GET", 200)
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """
        Initialize all metric collectors.

        Args:
            config: Optional metrics configuration dict.
        """
        self.config = config or {}
        self.registry = CollectorRegistry()
        self._start_time = time.monotonic()
        self._lock = threading.Lock()

        # Plain totals mirrored for snapshot(); prometheus counters are write-only
        self._totals: Dict[str, int] = {
            "webhooks": 0,
            "backports_created": 0,
            "backports_closed": 0,
            "github_requests": 0,
            "errors": 0,
        }

        self._init_prometheus()

    # -----------------------------------------------------------------
    # Prometheus initialization
    # -----------------------------------------------------------------

    def _init_prometheus(self) -> None:
        registry = self.registry

        # Webhook metrics
        self.webhooks_total = Counter(
            "backport_webhooks_total",
            "Total webhook deliveries handled",
            ["event", "result"],
            registry=registry,
        )
        self.webhook_duration = Histogram(
            "backport_webhook_duration_seconds",
            "Time spent handling a webhook delivery",
            ["event"],
            buckets=WEBHOOK_DURATION_BUCKETS,
            registry=registry,
        )

        # Backport metrics
        self.backports_created = Counter(
            "backport_issues_created_total",
            "Total backport issues created",
            ["repository"],
            registry=registry,
        )
        self.backports_closed = Counter(
            "backport_issues_closed_total",
            "Total backport issues closed by a fix commit",
            ["repository"],
            registry=registry,
        )

        # GitHub metrics
        self.github_requests = Counter(
            "backport_github_api_requests_total",
            "Total GitHub API requests",
            ["method", "status"],
            registry=registry,
        )
        self.github_rate_limit = Gauge(
            "backport_github_rate_limit_remaining",
            "Remaining GitHub API rate limit",
            registry=registry,
        )

        # System metrics
        self.errors_total = Counter(
            "backport_errors_total",
            "Total errors",
            ["component", "error_type"],
            registry=registry,
        )
        self.system_info = Info(
            "backport_bot",
            "Backport bot information",
            registry=registry,
        )

    def _bump(self, name: str) -> None:
        with self._lock:
            self._totals[name] += 1

    # =====================================================================
    # RECORDING METHODS
    # =====================================================================

    # -- Webhook metrics ---------------------------------------------------

    def record_webhook(self, event: str, result: str) -> None:
        """
        Record a handled webhook delivery.

        Args:
            event: X-GitHub-Event header value
            result: ``created``, ``ok``, ``ignored`` or an error kind
        """
        self.webhooks_total.labels(event=event, result=result).inc()
        self._bump("webhooks")

    def observe_webhook_duration(self, event: str, duration_seconds: float) -> None:
        """Record how long a webhook delivery took to handle."""
        self.webhook_duration.labels(event=event).observe(duration_seconds)

    # -- Backport metrics --------------------------------------------------

    def record_backport_created(self, repository: str) -> None:
        self.backports_created.labels(repository=repository).inc()
        self._bump("backports_created")

    def record_backport_closed(self, repository: str) -> None:
        self.backports_closed.labels(repository=repository).inc()
        self._bump("backports_closed")

    # -- GitHub metrics ----------------------------------------------------

    def record_github_request(self, method: str, status: int) -> None:
        """Record a GitHub API request."""
        self.github_requests.labels(method=method, status=str(status)).inc()
        self._bump("github_requests")

    def set_github_rate_limit(self, remaining: int) -> None:
        """Update the remaining GitHub API rate limit."""
        self.github_rate_limit.set(remaining)

    # -- System metrics ----------------------------------------------------

    def record_error(self, component: str, error_type: str) -> None:
        """Record an error occurrence."""
        self.errors_total.labels(component=component, error_type=error_type).inc()
        self._bump("errors")

    def set_system_info(self, **info: str) -> None:
        """Set system information labels."""
        self.system_info.info(info)

    def get_uptime(self) -> float:
        """Return seconds since this collector was created."""
        return time.monotonic() - self._start_time

    # =====================================================================
    # EXPORT / SNAPSHOT
    # =====================================================================

    def render(self) -> bytes:
        """Prometheus text exposition of this collector's registry."""
        return generate_latest(self.registry)

    @property
    def content_type(self) -> str:
        return CONTENT_TYPE_LATEST

    def start_http_server(self, port: int = 9090) -> None:
        """Serve this collector's registry on a dedicated port."""
        start_http_server(port, registry=self.registry)
        logger.info(f"Metrics HTTP server started on port {port}")

    def snapshot(self) -> Dict[str, Any]:
        """
        Return a plain dict snapshot of the main totals.

        Useful for logging and the ``/stats`` endpoint.
        """
        with self._lock:
            totals = dict(self._totals)
        return {
            "uptime_seconds": round(self.get_uptime(), 1),
            "timestamp": datetime.utcnow().isoformat() + "Z",
            **totals,
        }


# =============================================================================
# FACTORY
# =============================================================================


def create_metrics_collector(
    config: Optional[Dict[str, Any]] = None,
) -> MetricsCollector:
    """
    Create a MetricsCollector from configuration.

    Args:
        config: ``metrics`` section of the bot configuration.

    Returns:
        Configured MetricsCollector.
    """
    config = config or {}
    collector = MetricsCollector(config)

    # /metrics on the webhook server is always available; a dedicated
    # port is opt-in
    port = config.get("port")
    if config.get("enabled", True) and port:
        try:
            collector.start_http_server(int(port))
        except OSError as e:
            logger.warning(f"Could not start metrics server on port {port}: {e}")

    return collector


# =============================================================================
# EXPORTS
# =============================================================================

__all__ = [
    "MetricsCollector",
    "create_metrics_collector",
    "WEBHOOK_DURATION_BUCKETS",
]
