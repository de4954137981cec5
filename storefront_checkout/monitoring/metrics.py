"""
Prometheus metrics for checkout and fulfillment monitoring.

Tracks:
- Checkout session outcomes and amounts
- Razorpay API calls and errors
- Webhook events by type and outcome
- Orders materialized and stock decrement failures
- Confirmation poller outcomes
- Compensation worker progress
"""
import time

from prometheus_client import Counter, Gauge, Histogram

# Checkout metrics
checkout_sessions_total = Counter(
    "checkout_sessions_total",
    "Total checkout session requests",
    ["outcome"],  # created, empty_cart, unavailable, insufficient_stock, ...
)

checkout_amount_minor_units = Histogram(
    "checkout_amount_minor_units",
    "Checkout session amounts in minor currency units",
    buckets=(100, 1000, 5000, 10000, 50000, 100000, 500000, 1000000, 5000000),
)

# Razorpay API metrics
razorpay_api_requests_total = Counter(
    "razorpay_api_requests_total",
    "Total Razorpay API requests",
    ["operation", "status"],
)

razorpay_api_errors_total = Counter(
    "razorpay_api_errors_total",
    "Total Razorpay API errors",
    ["error_type"],  # transient, permanent, rate_limit
)

razorpay_api_duration_seconds = Histogram(
    "razorpay_api_duration_seconds",
    "Razorpay API call duration in seconds",
    ["operation"],
    buckets=(0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0),
)

razorpay_circuit_breaker_state = Gauge(
    "razorpay_circuit_breaker_state",
    "Razorpay circuit breaker state (0=closed, 1=open, 2=half_open)",
)

# Webhook metrics
webhook_events_received_total = Counter(
    "webhook_events_received_total",
    "Total webhook events received",
    ["event_type"],
)

webhook_events_processed_total = Counter(
    "webhook_events_processed_total",
    "Total webhook events processed",
    ["event_type", "status"],  # processed, duplicate, ignored, failed
)

webhook_signature_rejections_total = Counter(
    "webhook_signature_rejections_total",
    "Webhook deliveries rejected before parsing",
    ["reason"],  # missing_signature, mismatch, misconfigured
)

webhook_processing_duration_seconds = Histogram(
    "webhook_processing_duration_seconds",
    "Webhook processing duration in seconds",
    ["event_type"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

# Order metrics
orders_materialized_total = Counter(
    "orders_materialized_total",
    "Orders created from captured payments",
)

stock_decrement_failures_total = Counter(
    "stock_decrement_failures_total",
    "Stock batches rejected or failed after the order was persisted",
    ["reason"],
)

idempotency_hits_total = Counter(
    "idempotency_hits_total",
    "Duplicate payment deliveries detected",
    ["source"],  # redis, database, constraint
)

# Poller metrics
confirmation_polls_total = Counter(
    "confirmation_polls_total",
    "Order confirmation poll outcomes",
    ["outcome"],  # confirmed, processing
)

confirmation_poll_attempts = Histogram(
    "confirmation_poll_attempts",
    "Lookups needed before the poller finished",
    buckets=(1, 2, 3, 4, 5, 10, 20),
)

# Compensation metrics
inventory_pending_orders = Gauge(
    "inventory_pending_orders",
    "Orders whose stock batch has not been applied",
)

compensation_runs_total = Counter(
    "compensation_runs_total",
    "Stock compensation attempts",
    ["outcome"],  # applied, failed, exhausted
)

compensation_last_run_timestamp = Gauge(
    "compensation_last_run_timestamp",
    "Timestamp of the last compensation batch",
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_checkout(outcome: str, amount_minor_units: int = 0) -> None:
        """Record a checkout session request."""
        checkout_sessions_total.labels(outcome=outcome).inc()
        if amount_minor_units > 0:
            checkout_amount_minor_units.observe(amount_minor_units)

    @staticmethod
    def record_razorpay_api_call(
        operation: str, status: str, duration_seconds: float
    ) -> None:
        """Record Razorpay API call."""
        razorpay_api_requests_total.labels(operation=operation, status=status).inc()
        razorpay_api_duration_seconds.labels(operation=operation).observe(duration_seconds)

    @staticmethod
    def record_razorpay_api_error(error_type: str) -> None:
        """Record Razorpay API error."""
        razorpay_api_errors_total.labels(error_type=error_type).inc()

    @staticmethod
    def set_circuit_breaker_state(state: str) -> None:
        """Set circuit breaker state."""
        state_map = {"closed": 0, "open": 1, "half_open": 2}
        razorpay_circuit_breaker_state.set(state_map.get(state, 0))

    @staticmethod
    def record_webhook_event(event_type: str, status: str, duration_seconds: float) -> None:
        """Record webhook event processing."""
        webhook_events_received_total.labels(event_type=event_type).inc()
        webhook_events_processed_total.labels(event_type=event_type, status=status).inc()
        webhook_processing_duration_seconds.labels(event_type=event_type).observe(
            duration_seconds
        )

    @staticmethod
    def record_signature_rejection(reason: str) -> None:
        """Record a webhook rejected at signature verification."""
        webhook_signature_rejections_total.labels(reason=reason).inc()

    @staticmethod
    def record_order_materialized() -> None:
        """Record an order created from a captured payment."""
        orders_materialized_total.inc()

    @staticmethod
    def record_stock_decrement_failure(reason: str) -> None:
        """Record a failed phase-two stock batch."""
        stock_decrement_failures_total.labels(reason=reason).inc()

    @staticmethod
    def record_idempotency_hit(source: str) -> None:
        """Record a duplicate payment delivery."""
        idempotency_hits_total.labels(source=source).inc()

    @staticmethod
    def record_confirmation_poll(outcome: str, attempts: int) -> None:
        """Record the outcome of an order confirmation poll."""
        confirmation_polls_total.labels(outcome=outcome).inc()
        confirmation_poll_attempts.observe(attempts)

    @staticmethod
    def set_inventory_pending(count: int) -> None:
        """Set the number of orders awaiting stock application."""
        inventory_pending_orders.set(count)

    @staticmethod
    def record_compensation(outcome: str) -> None:
        """Record a stock compensation attempt."""
        compensation_runs_total.labels(outcome=outcome).inc()
        compensation_last_run_timestamp.set(time.time())


# Export singleton instance
metrics = MetricsCollector()
