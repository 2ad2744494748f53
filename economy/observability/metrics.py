"""
Metrics Collection with Prometheus.

Exposes economy and HTTP metrics for monitoring.
"""

from decimal import Decimal
from enum import Enum

from prometheus_client import Counter, Gauge, Histogram, Info

from economy.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    OUTCOME = "outcome"
    DIRECTION = "direction"
    REASON = "reason"
    ERROR_TYPE = "error_type"


class EconomyMetrics:
    """
    Centralized metrics for the economy API.

    Covers:
    - HTTP requests (rate, duration, in-flight)
    - Economy operations (rate, outcome)
    - Coin and balance movements by reason
    - Account provisioning
    - Errors by type
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        self.service_info = Info(
            "economy_service",
            "Service information",
        )
        self.service_info.info(
            {
                "version": settings.api_version,
                "service_name": settings.service_name,
            }
        )

        # ====================================================================
        # HTTP Metrics
        # ====================================================================
        self.http_requests_total = Counter(
            "economy_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "economy_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.http_requests_in_progress = Gauge(
            "economy_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Economy Metrics
        # ====================================================================
        self.operations_total = Counter(
            "economy_operations_total",
            "Economy operations by outcome",
            [MetricLabels.OPERATION, MetricLabels.OUTCOME],
        )

        self.coins_moved_total = Counter(
            "economy_coins_moved_total",
            "Coins credited or debited",
            [MetricLabels.DIRECTION, MetricLabels.REASON],
        )

        self.balance_moved_total = Counter(
            "economy_balance_moved_total",
            "Balance credited or debited",
            [MetricLabels.DIRECTION, MetricLabels.REASON],
        )

        self.accounts_created_total = Counter(
            "economy_accounts_created_total",
            "Total accounts provisioned",
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "economy_errors_total",
            "Total errors by type",
            [MetricLabels.ERROR_TYPE, MetricLabels.OPERATION],
        )

    def record_http_request(
        self, endpoint: str, method: str, status_code: int, duration: float
    ) -> None:
        """Record HTTP request metrics."""
        self.http_requests_total.labels(
            endpoint=endpoint, method=method, status_code=status_code
        ).inc()
        self.http_request_duration_seconds.labels(endpoint=endpoint, method=method).observe(
            duration
        )

    def record_operation(self, operation: str, outcome: str) -> None:
        """Record an economy operation and how it ended."""
        self.operations_total.labels(operation=operation, outcome=outcome).inc()

    def record_coins(self, amount: int, reason: str) -> None:
        """Record a coin movement (negative amounts are debits)."""
        if amount == 0:
            return
        direction = "credit" if amount > 0 else "debit"
        self.coins_moved_total.labels(direction=direction, reason=reason).inc(abs(amount))

    def record_balance(self, amount: Decimal, reason: str) -> None:
        """Record a balance movement (negative amounts are debits)."""
        if amount == 0:
            return
        direction = "credit" if amount > 0 else "debit"
        self.balance_moved_total.labels(direction=direction, reason=reason).inc(
            float(abs(amount))
        )

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = EconomyMetrics()
