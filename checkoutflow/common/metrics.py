"""Prometheus metric definitions for the checkout service."""

from prometheus_client import Counter, Histogram, generate_latest
from starlette.responses import Response


invoice_requests_total = Counter(
    "invoice_requests_total",
    "Invoice creation attempts by product and outcome",
    ["product", "outcome"],
)
gateway_latency_seconds = Histogram(
    "gateway_latency_seconds",
    "Latency of outbound gateway create-invoice calls",
)
webhook_events_total = Counter(
    "webhook_events_total",
    "Inbound gateway notifications by outcome",
    ["outcome"],
)
order_transitions_total = Counter(
    "order_transitions_total",
    "Applied order status transitions",
    ["to_state", "source"],
)
duplicate_transitions_skipped_total = Counter(
    "duplicate_transitions_skipped_total",
    "Terminal notifications that found the order already terminal",
    ["to_state"],
)
return_resolutions_total = Counter(
    "return_resolutions_total",
    "Browser return redirects by outcome",
    ["outcome"],
)
db_write_failures_total = Counter(
    "db_write_failures_total",
    "Failed database writes by table",
    ["table"],
)
retries_total = Counter("retries_total", "Retry count", ["dependency"])
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["service", "route", "method", "status_code"],
)
http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration seconds",
    ["service", "route", "method"],
)


def metrics_response() -> Response:
    """Expose all registered Prometheus metrics in text format."""

    return Response(content=generate_latest(), media_type="text/plain")
