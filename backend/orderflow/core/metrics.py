"""
Prometheus metrics definitions for Orderflow

All metrics live on one custom registry so the API process and the outbox
worker expose the same families without duplicate-registration errors.
"""

from prometheus_client import Counter, Histogram, Gauge, CollectorRegistry

registry = CollectorRegistry()

# =============================================================================
# HTTP API METRICS
# =============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests by method, endpoint, and status code group",
    ["method", "endpoint", "status_code"],
    registry=registry,
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "endpoint"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
    registry=registry,
)

http_requests_in_progress = Gauge(
    "http_requests_in_progress",
    "Number of HTTP requests currently being processed",
    ["method", "endpoint"],
    registry=registry,
)

# =============================================================================
# DATABASE METRICS
# =============================================================================

db_pool_in_use = Gauge(
    "db_pool_in_use",
    "Number of database connections currently in use",
    registry=registry,
)

db_pool_available = Gauge(
    "db_pool_available",
    "Number of idle database connections available",
    registry=registry,
)

db_pool_wait_seconds = Histogram(
    "db_pool_wait_seconds",
    "Time spent waiting for a database connection",
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0),
    registry=registry,
)

db_query_duration_seconds = Histogram(
    "db_query_duration_seconds",
    "Database query execution time in seconds",
    ["operation", "table"],
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
    registry=registry,
)

db_query_errors_total = Counter(
    "db_query_errors_total",
    "Total number of database query errors by type",
    ["error_type"],
    registry=registry,
)

# =============================================================================
# REDIS METRICS
# =============================================================================

redis_commands_total = Counter(
    "redis_commands_total",
    "Total Redis commands executed by command type",
    ["command"],
    registry=registry,
)

redis_command_duration_seconds = Histogram(
    "redis_command_duration_seconds",
    "Redis command execution time in seconds",
    ["command"],
    buckets=(0.0001, 0.0005, 0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5),
    registry=registry,
)

redis_errors_total = Counter(
    "redis_errors_total",
    "Total Redis errors by type",
    ["error_type"],
    registry=registry,
)

cache_lookups_total = Counter(
    "cache_lookups_total",
    "Cache lookups by cache name and result",
    ["cache", "result"],  # hit, miss
    registry=registry,
)

# =============================================================================
# ORDER LEDGER METRICS
# =============================================================================

orders_created_total = Counter(
    "orders_created_total",
    "Orders committed by payment method",
    ["payment_method"],
    registry=registry,
)

orders_rejected_total = Counter(
    "orders_rejected_total",
    "Order creations rejected before commit",
    ["reason"],  # empty_cart, unknown_product, insufficient_stock
    registry=registry,
)

coupon_applications_total = Counter(
    "coupon_applications_total",
    "Coupon evaluations at order creation",
    ["result"],  # applied, ignored, exhausted
    registry=registry,
)

# =============================================================================
# PAYMENT METRICS
# =============================================================================

gateway_request_duration_seconds = Histogram(
    "gateway_request_duration_seconds",
    "Outbound payment gateway call latency",
    ["gateway", "operation"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 15.0),
    registry=registry,
)

gateway_errors_total = Counter(
    "gateway_errors_total",
    "Payment gateway calls that failed in transport or returned unexpected data",
    ["gateway", "operation"],
    registry=registry,
)

payment_outcomes_total = Counter(
    "payment_outcomes_total",
    "Payment outcomes applied to orders",
    ["gateway", "outcome", "source"],  # source: confirm, webhook, sweeper
    registry=registry,
)

payment_webhooks_total = Counter(
    "payment_webhooks_total",
    "Webhook deliveries by result",
    ["gateway", "result"],  # processed, duplicate, unknown_order, rejected
    registry=registry,
)

# =============================================================================
# FULFILLMENT METRICS
# =============================================================================

fulfillment_transitions_total = Counter(
    "fulfillment_transitions_total",
    "Fulfillment status transitions by trigger",
    ["trigger", "to_status"],  # trigger: admin, carrier
    registry=registry,
)

tracking_events_ignored_total = Counter(
    "tracking_events_ignored_total",
    "Carrier tracking events recorded without a status change",
    ["reason"],  # unrecognized_label, not_forward
    registry=registry,
)

# =============================================================================
# NOTIFICATION METRICS
# =============================================================================

notifications_dispatched_total = Counter(
    "notifications_dispatched_total",
    "Notification/document collaborator requests by kind and result",
    ["kind", "result"],
    registry=registry,
)

# =============================================================================
# KAFKA EVENT METRICS
# =============================================================================

kafka_events_published_total = Counter(
    "kafka_events_published_total",
    "Total events published to Kafka",
    ["topic", "event_type", "status"],
    registry=registry,
)

kafka_events_consumed_total = Counter(
    "kafka_events_consumed_total",
    "Total events consumed from Kafka",
    ["topic", "event_type", "status"],
    registry=registry,
)

kafka_publish_duration_seconds = Histogram(
    "kafka_publish_duration_seconds",
    "Time taken to publish events to Kafka",
    ["topic", "event_type"],
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
    registry=registry,
)

kafka_events_duplicate_total = Counter(
    "kafka_events_duplicate_total",
    "Total duplicate events detected (idempotency check)",
    ["topic", "event_type"],
    registry=registry,
)

# =============================================================================
# OUTBOX PATTERN METRICS
# =============================================================================

outbox_events_pending = Gauge(
    "outbox_events_pending",
    "Number of unpublished events in the outbox table",
    registry=registry,
)

outbox_events_processed_total = Counter(
    "outbox_events_processed_total",
    "Total outbox events processed",
    ["status"],
    registry=registry,
)

outbox_publish_duration_seconds = Histogram(
    "outbox_publish_duration_seconds",
    "Time taken to publish events from outbox to Kafka",
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
    registry=registry,
)

# =============================================================================
# BACKGROUND TASK METRICS
# =============================================================================

background_tasks_running = Gauge(
    "background_tasks_running",
    "Number of background tasks currently running",
    ["task_name"],
    registry=registry,
)

background_task_errors_total = Counter(
    "background_task_errors_total",
    "Total errors in background tasks",
    ["task_name", "error_type"],
    registry=registry,
)
