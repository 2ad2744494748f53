"""
Observability module - Logging, Metrics, and Tracing.
"""

from economy.observability.logging import get_logger, log_context, setup_logging
from economy.observability.metrics import metrics
from economy.observability.tracing import setup_tracing

__all__ = [
    "get_logger",
    "log_context",
    "setup_logging",
    "metrics",
    "setup_tracing",
]
