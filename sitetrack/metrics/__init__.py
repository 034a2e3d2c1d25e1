"""Metrics module for observability."""

from sitetrack.metrics.conversation_metrics import ConversationMetrics, conversation_metrics

__all__ = [
    "ConversationMetrics",
    "conversation_metrics",
]
