"""
Metrics Collection with Prometheus.

Exposes gateway and entitlement metrics for monitoring.
"""

from enum import Enum

from prometheus_client import Counter, Gauge, Histogram, Info

from rhythm_gateway.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    REASON = "reason"
    EVENT_TYPE = "event_type"
    OUTCOME = "outcome"
    ERROR_TYPE = "error_type"
    OPERATION = "operation"


class GatewayMetrics:
    """
    Centralized metrics for the gateway service.

    Covers:
    - HTTP requests (rate, duration, in progress)
    - Gateway rejections by pipeline stage
    - Quota decisions by tier
    - Webhook events by type and outcome
    - Errors by type and operation
    """

    def __init__(self) -> None:
        self.service_info = Info("gateway_service", "Service information")
        self.service_info.info(
            {
                "version": settings.api_version,
                "service_name": settings.service_name,
                "quota_policy": settings.quota_policy,
            }
        )

        # HTTP
        self.http_requests_total = Counter(
            "gateway_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )
        self.http_request_duration_seconds = Histogram(
            "gateway_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )
        self.http_requests_in_progress = Gauge(
            "gateway_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.METHOD],
        )

        # Gateway pipeline
        self.gateway_rejections_total = Counter(
            "gateway_rejections_total",
            "Requests rejected by the gateway pipeline",
            [MetricLabels.REASON, MetricLabels.STATUS_CODE],
        )
        self.gateway_dispatches_total = Counter(
            "gateway_dispatches_total",
            "Requests dispatched to resource handlers",
            [MetricLabels.ENDPOINT, MetricLabels.STATUS_CODE],
        )
        self.quota_decisions_total = Counter(
            "gateway_quota_decisions_total",
            "Quota checks by tier and decision",
            ["tier", "allowed"],
        )

        # Webhooks
        self.webhook_events_total = Counter(
            "gateway_webhook_events_total",
            "Webhook events by type and outcome",
            [MetricLabels.EVENT_TYPE, MetricLabels.OUTCOME],
        )
        self.webhook_rejections_total = Counter(
            "gateway_webhook_rejections_total",
            "Webhook deliveries rejected before processing",
            [MetricLabels.REASON],
        )

        # Errors
        self.errors_total = Counter(
            "gateway_errors_total",
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

    def record_rejection(self, reason: str, status_code: int) -> None:
        """Record a request short-circuited by a pipeline stage."""
        self.gateway_rejections_total.labels(reason=reason, status_code=status_code).inc()

    def record_dispatch(self, endpoint: str, status_code: int) -> None:
        """Record a request that reached its resource handler."""
        self.gateway_dispatches_total.labels(endpoint=endpoint, status_code=status_code).inc()

    def record_quota_decision(self, premium: bool, allowed: bool) -> None:
        """Record a quota check result."""
        self.quota_decisions_total.labels(
            tier="premium" if premium else "free", allowed=str(allowed)
        ).inc()

    def record_webhook_event(self, event_type: str, outcome: str) -> None:
        """Record a processed webhook event."""
        self.webhook_events_total.labels(event_type=event_type, outcome=outcome).inc()

    def record_webhook_rejection(self, reason: str) -> None:
        """Record a webhook delivery rejected with 400."""
        self.webhook_rejections_total.labels(reason=reason).inc()

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = GatewayMetrics()
