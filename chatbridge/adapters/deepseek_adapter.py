# chatbridge/adapters/deepseek_adapter.py

"""
DeepSeek chat model.

DeepSeek exposes OpenAI-compatible endpoints, so requests and responses go
through the shared `openai_wire` helpers; the HTTP calls are plain httpx:

- Chat completions: POST /chat/completions
- Streaming:        same endpoint, `stream: true`, SSE `data:` lines ending in `[DONE]`

DeepSeek-specific bits:
- `reasoning_content` (deepseek-reasoner) is kept in the assistant message metadata
- usage reports prompt cache hits and misses

🔐 Requires the `DEEPSEEK_API_KEY` environment variable when built from settings.
"""

import json
import logging
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from chatbridge.adapters import openai_wire
from chatbridge.adapters.base import (
    BaseChatModel,
    default_model_kwargs,
    require_api_key,
    require_enabled,
)
from chatbridge.config import settings
from chatbridge.model.options import DeepSeekChatOptions
from chatbridge.model.prompt import Prompt
from chatbridge.model.response import ChatResponse, DefaultUsage
from chatbridge.retry import ResponseErrorHandler, default_error_handler

logger = logging.getLogger("chatbridge.adapters.deepseek_adapter")

DEFAULT_BASE_URL = "https://api.deepseek.com"
DEFAULT_CHAT_MODEL = "deepseek-chat"


class DeepSeekUsage(DefaultUsage):
    """DeepSeek usage with context-cache counters."""

    @classmethod
    def from_dict(cls, usage: Dict[str, Any]) -> "DeepSeekUsage":
        return cls(
            prompt_tokens=usage.get("prompt_tokens"),
            completion_tokens=usage.get("completion_tokens"),
            total_tokens=usage.get("total_tokens"),
            native_usage=usage,
        )

    @property
    def cache_hit_tokens(self) -> Optional[int]:
        return (self.native_usage or {}).get("prompt_cache_hit_tokens")

    @property
    def cache_miss_tokens(self) -> Optional[int]:
        return (self.native_usage or {}).get("prompt_cache_miss_tokens")


class DeepSeekApi:
    """
    Minimal DeepSeek chat completions client.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        client: Optional[httpx.AsyncClient] = None,
        error_handler: Optional[ResponseErrorHandler] = None,
        timeout: float = 60.0,
    ):
        if not api_key:
            raise ValueError("API key must not be empty")
        self.base_url = base_url.rstrip("/")
        self.error_handler = error_handler or default_error_handler()
        self._headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))

    async def chat_completion(self, body: Dict[str, Any]) -> Dict[str, Any]:
        resp = await self._client.post(f"{self.base_url}/chat/completions", json=body, headers=self._headers)
        logger.info(f"[DeepSeekApi] response status: {resp.status_code}")
        if resp.status_code >= 400:
            logger.error(f"DeepSeek chat error: {resp.text}")
        self.error_handler.check(resp)
        return resp.json()

    async def chat_completion_stream(self, body: Dict[str, Any]) -> AsyncIterator[Dict[str, Any]]:
        async with self._client.stream(
            "POST", f"{self.base_url}/chat/completions", json=body, headers=self._headers
        ) as resp:
            logger.info(f"[DeepSeekApi] stream response status: {resp.status_code}")
            await self.error_handler.acheck(resp)
            async for line in resp.aiter_lines():
                if not line.startswith("data:"):
                    # DeepSeek sends ": keep-alive" comments while the model is busy
                    continue
                data = line[len("data:"):].strip()
                if data == "[DONE]":
                    break
                if data:
                    yield json.loads(data)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class DeepSeekChatModel(BaseChatModel):
    """
    Chat model for DeepSeek models (deepseek-chat, deepseek-reasoner).
    """

    provider = "deepseek"

    def __init__(self, api: DeepSeekApi, options: Optional[DeepSeekChatOptions] = None, **kwargs: Any):
        super().__init__(options if options is not None else DeepSeekChatOptions(model=DEFAULT_CHAT_MODEL), **kwargs)
        self.api = api

    def _create_request(self, prompt: Prompt) -> Dict[str, Any]:
        return openai_wire.build_request_body(
            prompt.messages,
            prompt.options,
            self._tool_definitions(prompt),
            stream=False,
        )

    async def _do_call(self, request: Dict[str, Any]) -> ChatResponse:
        logger.info(f"[DeepSeekChatModel] chat payload: {request}")
        data = await self.api.chat_completion(request)
        return openai_wire.completion_to_response(data, usage_factory=DeepSeekUsage.from_dict)

    async def _do_stream(self, request: Dict[str, Any]) -> AsyncIterator[ChatResponse]:
        body = {**request, "stream": True, "stream_options": {"include_usage": True}}
        logger.info(f"[DeepSeekChatModel] chat_stream payload: {body}")
        aggregator = openai_wire.ChunkAggregator(usage_factory=DeepSeekUsage.from_dict)
        async for chunk in self.api.chat_completion_stream(body):
            response = aggregator.add(chunk)
            if response is not None:
                yield response
        tail = aggregator.flush()
        if tail is not None:
            yield tail

    async def aclose(self) -> None:
        await self.api.aclose()


def get_chat_model(model_id: Optional[str] = None) -> DeepSeekChatModel:
    """
    Adapter factory function for the dynamic loader.
    """
    props = settings.deepseek
    require_enabled(props.chat.enabled, "DeepSeek chat")

    options = DeepSeekChatOptions(**props.chat.options.model_dump(exclude_none=True))
    if model_id:
        options.model = model_id

    api = DeepSeekApi(
        require_api_key(props.api_key, "DEEPSEEK_API_KEY"),
        base_url=str(props.base_url),
        error_handler=ResponseErrorHandler.from_properties(settings.retry),
        timeout=props.timeout,
    )
    return DeepSeekChatModel(api, options, **default_model_kwargs())
