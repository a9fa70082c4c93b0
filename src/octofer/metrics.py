"""Prometheus metrics for webhook dispatch and installation auth.

Each Octofer application owns its own ``CollectorRegistry`` so several apps
(or several tests) can live in one process without duplicate-metric
errors. The registry is exposed at ``GET /metrics``.

Metrics Defined:
- octofer_webhook_deliveries_total: Counter of deliveries by event and outcome
- octofer_handler_duration_seconds: Histogram of per-handler run time
- octofer_installation_tokens_minted_total: Counter of token-creation calls
- octofer_installation_token_cache_hits_total: Counter of cache hits
"""

import logging
from typing import Optional

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)


# Handlers are expected to finish well inside GitHub's 10 second delivery
# timeout; the upper buckets catch the ones that don't.
DEFAULT_HANDLER_BUCKETS = (
    0.005,
    0.01,
    0.05,
    0.1,
    0.5,
    1.0,
    2.5,
    5.0,
    10.0,
    30.0,
)


class OctoferMetrics:
    """Container for Octofer's Prometheus metrics.

    Attributes:
        registry: The Prometheus registry for these metrics.
        deliveries_total: Counter labelled by ``event`` and ``outcome``.
        handler_duration_seconds: Histogram labelled by ``event``.
        tokens_minted_total: Unlabelled counter of minted tokens.
        token_cache_hits_total: Unlabelled counter of cache hits.

    Example:
        >>> metrics = OctoferMetrics()
        >>> metrics.record_delivery("issues", "ok")
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        """Initialize metrics.

        Args:
            registry: Optional Prometheus registry. A fresh registry is
                      created when omitted.
        """
        self.registry = registry if registry is not None else CollectorRegistry()

        self.deliveries_total = Counter(
            "octofer_webhook_deliveries_total",
            "Total number of webhook deliveries by event and outcome",
            labelnames=["event", "outcome"],
            registry=self.registry,
        )

        self.handler_duration_seconds = Histogram(
            "octofer_handler_duration_seconds",
            "Time spent in a single event handler in seconds",
            labelnames=["event"],
            buckets=DEFAULT_HANDLER_BUCKETS,
            registry=self.registry,
        )

        self.tokens_minted_total = Counter(
            "octofer_installation_tokens_minted_total",
            "Total number of installation access tokens minted",
            registry=self.registry,
        )

        self.token_cache_hits_total = Counter(
            "octofer_installation_token_cache_hits_total",
            "Total number of installation client cache hits",
            registry=self.registry,
        )

    def record_delivery(self, event: str, outcome: str) -> None:
        self.deliveries_total.labels(event=event, outcome=outcome).inc()

    def record_handler_duration(self, event: str, duration_seconds: float) -> None:
        self.handler_duration_seconds.labels(event=event).observe(duration_seconds)

    def record_token_minted(self) -> None:
        self.tokens_minted_total.inc()

    def record_cache_hit(self) -> None:
        self.token_cache_hits_total.inc()

    def generate_latest(self) -> bytes:
        """Render the registry in Prometheus text exposition format."""
        return generate_latest(self.registry)
