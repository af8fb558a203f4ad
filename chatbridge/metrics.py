# chatbridge/metrics.py

"""
Prometheus metrics shared by the router service and the chat models.

HTTP-level metrics are recorded by the service middleware; model-level metrics
are recorded by `BaseChatModel`, the tool-calling manager and the retry
template, so library users get them too when they scrape the default registry.
"""

from prometheus_client import Counter, Histogram

# ─── HTTP ──────────────────────────────────────────────────────────────────────
REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "http_status"]
)

REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint"]
)

# ─── Chat models ───────────────────────────────────────────────────────────────
CHAT_REQUESTS = Counter(
    "chatbridge_chat_requests_total",
    "Chat model invocations",
    ["provider", "mode", "outcome"]
)

CHAT_LATENCY = Histogram(
    "chatbridge_chat_latency_seconds",
    "Latency of a single provider round trip (one tool round)",
    ["provider", "mode"]
)

TOOL_CALLS = Counter(
    "chatbridge_tool_calls_total",
    "Tool callbacks executed on behalf of a model",
    ["tool", "outcome"]
)

RETRY_ATTEMPTS = Counter(
    "chatbridge_retry_attempts_total",
    "Provider calls retried after a transient failure",
    ["error"]
)

# ─── Router ────────────────────────────────────────────────────────────────────
ROUTED_REQUESTS = Counter(
    "chatbridge_routed_requests_total",
    "Router requests by the provider they were sent to",
    ["provider", "endpoint", "http_status"]
)
