"""Conversation engine metrics for Prometheus.

Counts processed messages by flow and intent, and tracks the AI fallback
extractor's outcomes and latency.
"""

import time
from contextlib import contextmanager
from typing import Iterator

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Histogram

from sitetrack.logging_config import get_logger

logger = get_logger(__name__)


# =============================================================================
# Conversation Metrics
# =============================================================================


class ConversationMetrics:
    """Custom Prometheus metrics for the conversation engine."""

    def __init__(self, registry: CollectorRegistry = REGISTRY):
        """Initialize conversation metrics.

        Args:
            registry: Prometheus registry to use
        """
        self.registry = registry

        self.messages_total = Counter(
            "sitetrack_messages_processed_total",
            "Inbound messages processed by the dispatcher",
            labelnames=["flow", "intent"],
            registry=registry,
        )

        self.ai_requests_total = Counter(
            "sitetrack_ai_extraction_requests_total",
            "AI fallback extraction requests",
            labelnames=["outcome"],
            registry=registry,
        )

        self.ai_request_duration = Histogram(
            "sitetrack_ai_extraction_duration_seconds",
            "Time spent waiting for the AI fallback extractor",
            labelnames=["outcome"],
            buckets=[0.1, 0.25, 0.5, 1.0, 2.0, 3.0, 5.0],
            registry=registry,
        )

        self.mutation_failures_total = Counter(
            "sitetrack_mutation_failures_total",
            "Domain mutations that collaborators failed to apply",
            labelnames=["mutation"],
            registry=registry,
        )

    def record_message(self, flow: str, intent: str = "none") -> None:
        self.messages_total.labels(flow=flow, intent=intent).inc()

    def record_ai_request(self, outcome: str, duration: float) -> None:
        self.ai_requests_total.labels(outcome=outcome).inc()
        self.ai_request_duration.labels(outcome=outcome).observe(duration)

    def record_mutation_failure(self, mutation: str) -> None:
        self.mutation_failures_total.labels(mutation=mutation).inc()

    @contextmanager
    def time_ai_request(self) -> Iterator[dict]:
        """Time an AI extraction; the caller sets ``outcome`` on the yielded dict.

        Example:
            with conversation_metrics.time_ai_request() as outcome:
                ...
                outcome["outcome"] = "success"
        """
        result = {"outcome": "error"}
        start_time = time.perf_counter()
        try:
            yield result
        finally:
            self.record_ai_request(result["outcome"], time.perf_counter() - start_time)


# Global metrics instance
conversation_metrics = ConversationMetrics()
