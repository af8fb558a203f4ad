# chatbridge/dependencies.py

"""
Dependency injection utilities for FastAPI endpoints.

These helpers are used with FastAPI's `Depends()` to construct the `Adapter`
for the incoming request, which selects the provider and its cached model.
The routing decision is also stored on `request.state` for the request
logging and metrics middlewares.
"""

from fastapi import Request

from chatbridge.adapters.adapter import Adapter
from chatbridge.schemas import ChatRequest, EmbeddingRequest


def _remember_route(request: Request, adapter: Adapter) -> Adapter:
    request.state.provider = adapter.provider
    request.state.model = adapter.model_id
    return adapter


async def get_chat_adapter(
    req: ChatRequest,
    request: Request
) -> Adapter:
    """
    FastAPI dependency that returns a chat Adapter instance.

    Selects the adapter type based on whether streaming is enabled
    (e.g., "stream_chat" vs "chat").
    """
    kind = "stream_chat" if req.stream else "chat"
    return _remember_route(request, Adapter(kind, req.model_dump()))


async def get_embedding_adapter(
    req: EmbeddingRequest,
    request: Request
) -> Adapter:
    """
    FastAPI dependency that returns an embedding Adapter instance.
    """
    return _remember_route(request, Adapter("embed", req.model_dump()))
