# chatbridge/main.py

"""
Main entry point for the ChatBridge router FastAPI service.

This file defines:
- Service startup / shutdown (logging setup, model cleanup)
- CORS, correlation ids, tracing and request logging middlewares
- JWT-based token issuing
- Routing of /v1/chat/completions and /v1/embeddings to the provider models
  (OpenAI, Ollama, DeepSeek, Gemini), including tool calling
- Prometheus metrics and Kubernetes-style health probes

🧠 Requests name their model as `provider:model`; the provider's chat model
runs the whole tool-calling loop before the answer is rendered OpenAI-style.
"""

import os
import json
import logging
from contextlib import aclosing
from typing import Dict, List, Tuple

import httpx
from fastapi import Body, Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from chatbridge import __version__
from chatbridge.adapters.adapter import Adapter, close_models
from chatbridge.config import settings
from chatbridge.dependencies import get_chat_adapter, get_embedding_adapter
from chatbridge.exceptions import AdapterError
from chatbridge.logging_config import configure_logging
from chatbridge.middlewares import LoggingMiddleware, metrics_middleware
from chatbridge.security import issue_token, verify_jwt

# ─── Tracing & Request Correlation ─────────────────────────────────────────────
from asgi_correlation_id import CorrelationIdMiddleware
from langsmith.middleware import TracingMiddleware

# ─── Rate Limiting ─────────────────────────────────────────────────────────────
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

# ─── Metrics / Prometheus ──────────────────────────────────────────────────────
from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest, multiprocess


logger = logging.getLogger("chatbridge.router")

# ───────────────────────────────────────────────────────────────────────────────
# Application Startup
# ───────────────────────────────────────────────────────────────────────────────
app = FastAPI(
    title="ChatBridge",
    version=__version__,
    description="Routes /v1/chat/completions and /v1/embeddings to OpenAI, Ollama, DeepSeek and Gemini."
)


@app.on_event("startup")
async def startup():
    configure_logging(settings.log_level)
    logger.info(
        "chatbridge started",
        extra={"default_chat_model": settings.default_chat_model, "default_embed_model": settings.default_embed_model},
    )


@app.on_event("shutdown")
async def shutdown():
    await close_models()

# ───────────────────────────────────────────────────────────────────────────────
# Global Exception Handling
# ───────────────────────────────────────────────────────────────────────────────
@app.exception_handler(AdapterError)
async def handle_adapter_error(request: Request, exc: AdapterError):
    """
    Gracefully return structured JSON errors for known adapter failures.
    """
    logger.warning(f"adapter error: {exc.detail}", extra={"status": exc.status_code, "path": request.url.path})
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail}
    )

# ───────────────────────────────────────────────────────────────────────────────
# Middleware Stack
# ───────────────────────────────────────────────────────────────────────────────
app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(LoggingMiddleware)
app.add_middleware(TracingMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[str(o).rstrip("/") for o in settings.cors_origins],
    allow_credentials=False,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
    max_age=3600,
)

# ───────────────────────────────────────────────────────────────────────────────
# Rate Limiting
# ───────────────────────────────────────────────────────────────────────────────
limiter = Limiter(key_func=get_remote_address)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)

# ───────────────────────────────────────────────────────────────────────────────
# Prometheus
# ───────────────────────────────────────────────────────────────────────────────
app.middleware("http")(metrics_middleware)


@app.get("/metrics", include_in_schema=False)
async def metrics():
    """
    Prometheus endpoint for scraping runtime stats.
    Supports both single- and multi-process environments.
    """
    mp_dir = os.getenv("PROMETHEUS_MULTIPROC_DIR")
    if mp_dir and os.path.isdir(mp_dir):
        registry = CollectorRegistry()
        multiprocess.MultiProcessCollector(registry)
        data = generate_latest(registry)
    else:
        data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)

# ───────────────────────────────────────────────────────────────────────────────
# Health Probes
# ───────────────────────────────────────────────────────────────────────────────
@app.get("/healthz", tags=["health"])
async def healthz():
    """
    Kubernetes-style liveness probe. No external dependencies.
    """
    return {"status": "ok"}


def _probe_targets() -> List[Tuple[str, str, Dict[str, str], Dict[str, str]]]:
    """(provider, url, headers, params) for every enabled, configured provider."""
    targets = []
    if settings.openai.chat.enabled and settings.openai.api_key:
        targets.append((
            "openai",
            f"{str(settings.openai.base_url).rstrip('/')}/models",
            {"Authorization": f"Bearer {settings.openai.api_key}"},
            {},
        ))
    if settings.deepseek.chat.enabled and settings.deepseek.api_key:
        targets.append((
            "deepseek",
            f"{str(settings.deepseek.base_url).rstrip('/')}/models",
            {"Authorization": f"Bearer {settings.deepseek.api_key}"},
            {},
        ))
    if settings.gemini.chat.enabled and settings.gemini.api_key:
        targets.append((
            "gemini",
            f"{str(settings.gemini.base_url).rstrip('/')}/models",
            {},
            {"key": settings.gemini.api_key},
        ))
    # Ollama is only required when it is the default route
    if settings.ollama.chat.enabled and settings.default_provider == "ollama":
        targets.append(("ollama", f"{str(settings.ollama.base_url).rstrip('/')}/api/tags", {}, {}))
    return targets


@app.get("/readyz", tags=["health"])
async def readyz():
    """
    Kubernetes-style readiness probe; verifies configured LLM backends are reachable.
    """
    errors = {}
    async with httpx.AsyncClient(timeout=2.0) as client:
        for provider, url, headers, params in _probe_targets():
            try:
                resp = await client.get(url, headers=headers, params=params)
            except httpx.HTTPError as e:
                errors[provider] = str(e)
                continue
            if resp.status_code >= 500:
                errors[provider] = f"HTTP {resp.status_code}"

    if errors:
        return Response(
            content=json.dumps({"ready": False, "errors": errors}),
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            media_type="application/json"
        )

    return {"ready": True}

# ───────────────────────────────────────────────────────────────────────────────
# JWT Token Issuer Endpoint
# ───────────────────────────────────────────────────────────────────────────────
@app.post("/v1/token")
@limiter.limit(settings.rate_limit_token)
async def get_token(request: Request, api_key: str = Body(..., embed=True)):
    """
    Exchange a valid API key for a short-lived JWT token.
    """
    if not settings.chatbridge_api_key or api_key != settings.chatbridge_api_key:
        raise HTTPException(403, detail="Invalid API key")

    return {"access_token": issue_token(), "token_type": "bearer"}

# ───────────────────────────────────────────────────────────────────────────────
# /v1/chat/completions
# ───────────────────────────────────────────────────────────────────────────────
def _sse_error(message: str, status_code: int) -> str:
    return f"data: {json.dumps({'error': {'message': message, 'status': status_code}})}\n\n"


@app.post("/v1/chat/completions")
@limiter.limit(settings.rate_limit_chat)
async def chat(
    request: Request,
    _: dict = Depends(verify_jwt),
    adapter: Adapter = Depends(get_chat_adapter)
):
    """
    Chat interface. Routes to OpenAI/Ollama/DeepSeek/Gemini by model prefix.
    Supports streaming and non-streaming responses.
    """
    if adapter.payload.get("stream"):
        async def event_gen():
            try:
                async with aclosing(adapter.chat_stream()) as chunks:
                    async for chunk in chunks:
                        yield f"data: {chunk}\n\n"
            # Headers are already sent; every failure is reported in-band
            except AdapterError as e:
                logger.error(f"chat stream failed: {e.detail}", extra={"provider": adapter.provider})
                yield _sse_error(e.detail, e.status_code)
            except Exception:
                logger.exception("chat stream crashed", extra={"provider": adapter.provider})
                yield _sse_error("Internal server error", status.HTTP_500_INTERNAL_SERVER_ERROR)
            yield "data: [DONE]\n\n"

        return StreamingResponse(event_gen(), media_type="text/event-stream")

    return await adapter.chat()

# ───────────────────────────────────────────────────────────────────────────────
# /v1/embeddings
# ───────────────────────────────────────────────────────────────────────────────
@app.post("/v1/embeddings")
@limiter.limit(settings.rate_limit_embed)
async def embeddings(
    request: Request,
    _: dict = Depends(verify_jwt),
    adapter: Adapter = Depends(get_embedding_adapter)
):
    """
    Embedding interface. Routes to the correct vector backend.
    """
    return await adapter.embed()
