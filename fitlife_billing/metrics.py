from prometheus_client import Counter, Histogram

REQUEST_COUNT = Counter(
    "http_requests_total",
    "HTTP requests",
    ["method", "path", "status"],
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "path", "status"],
)
REQUEST_ERRORS = Counter(
    "http_request_errors_total",
    "HTTP requests that ended in a 5xx",
    ["method", "path", "status"],
)

WEBHOOK_EVENTS = Counter(
    "billing_webhook_events_total",
    "Stripe webhook deliveries by event type and result",
    ["event_type", "result"],
)
LEDGER_ENTRIES = Counter(
    "billing_ledger_entries_total",
    "Payment ledger inserts by outcome, duplicates included",
    ["outcome", "result"],
)
BILLING_ACTIONS = Counter(
    "billing_actions_total",
    "Caller-initiated billing actions",
    ["action", "result"],
)
