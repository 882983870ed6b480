"""
Metrics Collection with Prometheus.

Exposes ledger and HTTP metrics for monitoring.
"""

from enum import Enum

from prometheus_client import Counter, Gauge, Histogram, Info

from app.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    STATUS = "status"
    ERROR_TYPE = "error_type"


class LedgerMetrics:
    """
    Centralized metrics for the credit ledger.

    Covers:
    - HTTP requests (rate, duration, errors)
    - Precharges, settlements, refunds and admin adjustments
    - Usage recorder failures (best-effort writes)
    - Stale pending holds found by reconciliation
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        self.service_info = Info(
            "ledger_service",
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
            "ledger_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "ledger_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.http_requests_in_progress = Gauge(
            "ledger_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Ledger Metrics
        # ====================================================================
        self.precharges_total = Counter(
            "ledger_precharges_total",
            "Total precharge attempts",
            ["success", MetricLabels.ERROR_TYPE],
        )

        self.precharge_amount = Histogram(
            "ledger_precharge_amount_credits",
            "Precharged amounts in credits",
            buckets=(1, 5, 10, 25, 50, 100, 250, 500, 1000, 5000),
        )

        self.settlements_total = Counter(
            "ledger_settlements_total",
            "Total settlements by resulting status",
            [MetricLabels.STATUS, "applied"],
        )

        self.settlement_adjustment = Histogram(
            "ledger_settlement_adjustment_credits",
            "Precharged minus actual cost (positive = returned to user)",
            buckets=(-500, -100, -10, -1, 0, 1, 10, 100, 500),
        )

        self.refunds_total = Counter(
            "ledger_refunds_total",
            "Total refunds",
            ["applied"],
        )

        self.adjustments_total = Counter(
            "ledger_admin_adjustments_total",
            "Total admin adjustments",
            ["direction", "success"],
        )

        self.operation_duration_seconds = Histogram(
            "ledger_operation_duration_seconds",
            "Ledger mutation duration in seconds",
            [MetricLabels.OPERATION],
            buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0),
        )

        self.stale_pending_found = Gauge(
            "ledger_stale_pending_transactions",
            "Pending transactions older than the TTL at last reconciliation scan",
        )

        # ====================================================================
        # Usage Recorder Metrics
        # ====================================================================
        self.usage_record_failures_total = Counter(
            "ledger_usage_record_failures_total",
            "Usage record writes that failed and were discarded",
            [MetricLabels.OPERATION],
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "ledger_errors_total",
            "Total errors by type",
            [MetricLabels.ERROR_TYPE, MetricLabels.OPERATION],
        )

    # ========================================================================
    # Helper Methods
    # ========================================================================

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

    def record_precharge(
        self, success: bool, amount: int, duration: float, error_type: str | None = None
    ) -> None:
        """Record precharge metrics."""
        self.precharges_total.labels(success=str(success), error_type=error_type or "none").inc()
        if success:
            self.precharge_amount.observe(amount)
        self.operation_duration_seconds.labels(operation="precharge").observe(duration)

    def record_settlement(
        self, status: str, applied: bool, adjustment: int | None, duration: float
    ) -> None:
        """Record settlement metrics; applied=False for idempotent replays."""
        self.settlements_total.labels(status=status, applied=str(applied)).inc()
        if applied and adjustment is not None:
            self.settlement_adjustment.observe(adjustment)
        self.operation_duration_seconds.labels(operation="settle").observe(duration)

    def record_refund(self, applied: bool, duration: float) -> None:
        """Record refund metrics."""
        self.refunds_total.labels(applied=str(applied)).inc()
        self.operation_duration_seconds.labels(operation="refund").observe(duration)

    def record_adjustment(self, amount: int, success: bool) -> None:
        """Record admin adjustment metrics."""
        direction = "grant" if amount > 0 else "penalty"
        self.adjustments_total.labels(direction=direction, success=str(success)).inc()

    def record_usage_failure(self, operation: str) -> None:
        """Record a discarded usage record write."""
        self.usage_record_failures_total.labels(operation=operation).inc()

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = LedgerMetrics()
