"""Prometheus metrics for gateway traffic, webhook reconciliation, notifications and scheduler health"""

from prometheus_client import Counter, Histogram, Gauge

# Gateway metrics
gateway_request_counter = Counter(
    "mfi_gateway_requests_total",
    "Outbound payment gateway requests",
    ["operation", "outcome"],  # success | http_error | timeout | network_error
)

gateway_latency_histogram = Histogram(
    "mfi_gateway_request_latency_seconds",
    "Payment gateway response time",
    ["operation"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

token_refresh_counter = Counter(
    "mfi_gateway_token_refresh_total",
    "Gateway credential exchanges",
    ["outcome"],  # success | failure
)

# Inbound webhook metrics
webhook_event_counter = Counter(
    "mfi_webhook_events_total",
    "Inbound gateway webhook events",
    ["outcome"],  # applied | duplicate | invalid_signature | malformed | unknown_transaction
)

side_effect_failure_counter = Counter(
    "mfi_webhook_side_effect_failures_total",
    "Webhook side-effect handlers that raised",
    ["event_type"],
)

# Collaborator webhook metrics
collaborator_latency_histogram = Histogram(
    "mfi_loan_events_latency_seconds",
    "Loan event webhook response time",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

collaborator_failure_counter = Counter(
    "mfi_loan_events_failures_total",
    "Failed loan event webhook deliveries",
)

# Notification metrics
notification_counter = Counter(
    "mfi_notifications_total",
    "Dispatched notifications by final status",
    ["kind", "channel", "status"],
)

# Scheduler metrics
task_run_counter = Counter(
    "mfi_scheduler_task_runs_total",
    "Scheduled task executions",
    ["task", "outcome"],  # success | failure | skipped
)

task_enabled_gauge = Gauge(
    "mfi_scheduler_task_enabled",
    "1 if the task is enabled, 0 if disabled",
    ["task"],
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_notification(kind: str, channel: str, status: str) -> None:
    """Record the final status of a dispatched notification"""
    notification_counter.labels(kind=kind, channel=channel, status=status).inc()


def record_task_run(task_id: str, outcome: str, enabled: bool) -> None:
    """Record task execution and current enabled state"""
    task_run_counter.labels(task=task_id, outcome=outcome).inc()
    task_enabled_gauge.labels(task=task_id).set(1 if enabled else 0)
