# chatbridge/middlewares.py

"""
Request middlewares for the router service.

Both middlewares read what the chat/embedding dependencies leave on
`request.state` (`provider`, `model`), so every log line and metric says which
backend served the request, not just which URL was hit.

- `LoggingMiddleware`  one JSON line per request under "chatbridge.router";
                       4xx/5xx answers are logged as warnings
- `metrics_middleware` Prometheus HTTP counters, labelled by route template,
                       plus the per-provider routed request counter
"""

import time
import uuid
import logging
from typing import Any, Dict

from asgi_correlation_id import correlation_id
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from chatbridge.metrics import REQUEST_COUNT, REQUEST_LATENCY, ROUTED_REQUESTS

logger = logging.getLogger("chatbridge.router")


def route_path(request: Request) -> str:
    """Route template ("/v1/chat/completions"), falling back to the raw path."""
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


def routing_fields(request: Request) -> Dict[str, Any]:
    """Provider and model the request was routed to, if it got that far."""
    return {
        "provider": getattr(request.state, "provider", None),
        "model": getattr(request.state, "model", None),
    }


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs every request with its routing decision, status, duration and correlation ID.
    """

    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        request_id = correlation_id.get() or str(uuid.uuid4())

        def fields(status: int) -> Dict[str, Any]:
            return {
                "method": request.method,
                "path": route_path(request),
                "status": status,
                "duration_ms": round((time.perf_counter() - start) * 1000, 2),
                "request_id": request_id,
                **routing_fields(request),
            }

        try:
            response = await call_next(request)
        except Exception:
            logger.exception("unhandled exception", extra=fields(500))
            raise

        level = logging.WARNING if response.status_code >= 400 else logging.INFO
        logger.log(level, "request completed", extra=fields(response.status_code))
        return response


async def metrics_middleware(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    endpoint = route_path(request)
    status = str(response.status_code)

    REQUEST_LATENCY.labels(method=request.method, endpoint=endpoint).observe(time.perf_counter() - start)
    REQUEST_COUNT.labels(method=request.method, endpoint=endpoint, http_status=status).inc()

    provider = routing_fields(request)["provider"]
    if provider:
        ROUTED_REQUESTS.labels(provider=provider, endpoint=endpoint, http_status=status).inc()

    return response
