# chatbridge/adapters/openai_adapter.py

"""
OpenAI chat and embedding models.

Talks to OpenAI through the official `openai` Python SDK (`AsyncOpenAI`).
The SDK's own retries are switched off; the chat model's retry template owns
retrying, using the same transient / non-transient split as every other
provider:

- `APIStatusError`      classified by status code via `ResponseErrorHandler`
- `APIConnectionError`  transient (covers timeouts)

Supports:
- Streaming and non-streaming chat completions with tool calling
- Text embedding generation
"""

import logging
from typing import Any, AsyncIterator, Dict, List, Optional

from openai import APIConnectionError, APIStatusError, AsyncOpenAI

from chatbridge.adapters import openai_wire
from chatbridge.adapters.base import (
    BaseChatModel,
    EmbeddingModel,
    default_model_kwargs,
    require_api_key,
    require_enabled,
)
from chatbridge.config import settings
from chatbridge.exceptions import TransientAiError
from chatbridge.model.options import OpenAiChatOptions
from chatbridge.model.prompt import Prompt
from chatbridge.model.response import (
    ChatResponse,
    ChatResponseMetadata,
    DefaultUsage,
    Embedding,
    EmbeddingResponse,
    EmptyUsage,
)
from chatbridge.retry import ResponseErrorHandler, RetryTemplate, default_error_handler, default_retry_template


logger = logging.getLogger("chatbridge.adapters.openai_adapter")

DEFAULT_CHAT_MODEL = "gpt-4o-mini"
DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"


def _translate_errors(error_handler: ResponseErrorHandler, e: Exception) -> Exception:
    if isinstance(e, APIStatusError):
        return error_handler.classify(e.status_code, e.message)
    if isinstance(e, APIConnectionError):
        return TransientAiError(f"OpenAI connection error: {e}")
    return e


class OpenAiChatModel(BaseChatModel):
    """
    Chat model for OpenAI models (e.g., gpt-4o, gpt-4o-mini).

    Args:
        client (AsyncOpenAI): Configured SDK client (set `max_retries=0`).
        options (OpenAiChatOptions | None): Default options.
        error_handler (ResponseErrorHandler | None): Status classification.
    """

    provider = "openai"

    def __init__(
        self,
        client: AsyncOpenAI,
        options: Optional[OpenAiChatOptions] = None,
        error_handler: Optional[ResponseErrorHandler] = None,
        **kwargs: Any,
    ):
        super().__init__(options if options is not None else OpenAiChatOptions(model=DEFAULT_CHAT_MODEL), **kwargs)
        self.client = client
        self.error_handler = error_handler or default_error_handler()

    def _create_request(self, prompt: Prompt) -> Dict[str, Any]:
        return openai_wire.build_request_body(
            prompt.messages,
            prompt.options,
            self._tool_definitions(prompt),
            stream=False,
        )

    async def _do_call(self, request: Dict[str, Any]) -> ChatResponse:
        logger.info(f"[OpenAiChatModel] chat payload: model={request.get('model')}, messages={len(request['messages'])}")
        try:
            completion = await self.client.chat.completions.create(**request)
        except (APIStatusError, APIConnectionError) as e:
            logger.error(f"[OpenAiChatModel] chat error: {e}")
            raise _translate_errors(self.error_handler, e) from e
        return openai_wire.completion_to_response(completion.model_dump())

    async def _do_stream(self, request: Dict[str, Any]) -> AsyncIterator[ChatResponse]:
        body = {**request, "stream": True, "stream_options": {"include_usage": True}}
        logger.info(f"[OpenAiChatModel] chat_stream payload: model={body.get('model')}, messages={len(body['messages'])}")
        aggregator = openai_wire.ChunkAggregator()
        try:
            # Closed on early exit too
            async with await self.client.chat.completions.create(**body) as stream:
                async for chunk in stream:
                    response = aggregator.add(chunk.model_dump())
                    if response is not None:
                        yield response
        except (APIStatusError, APIConnectionError) as e:
            logger.error(f"[OpenAiChatModel] chat_stream error: {e}")
            raise _translate_errors(self.error_handler, e) from e

        tail = aggregator.flush()
        if tail is not None:
            yield tail

    async def aclose(self) -> None:
        await self.client.close()


class OpenAiEmbeddingModel(EmbeddingModel):
    """Embeddings through `client.embeddings.create`, under the retry template."""

    def __init__(
        self,
        client: AsyncOpenAI,
        model: str = DEFAULT_EMBEDDING_MODEL,
        retry_template: Optional[RetryTemplate] = None,
        error_handler: Optional[ResponseErrorHandler] = None,
    ):
        self.client = client
        self.model = model
        self.retry_template = retry_template or default_retry_template()
        self.error_handler = error_handler or default_error_handler()

    async def _create(self, model: str, texts: List[str]) -> Any:
        try:
            return await self.client.embeddings.create(model=model, input=texts)
        except (APIStatusError, APIConnectionError) as e:
            logger.error(f"[OpenAiEmbeddingModel] embed error: {e}")
            raise _translate_errors(self.error_handler, e) from e

    async def embed(self, texts: List[str], model: Optional[str] = None) -> EmbeddingResponse:
        model = model or self.model
        logger.info(f"[OpenAiEmbeddingModel] embedding payload: model={model}, input_len={len(texts)}")
        response = await self.retry_template.execute(lambda: self._create(model, texts))

        usage = getattr(response, "usage", None)
        return EmbeddingResponse(
            embeddings=[Embedding(index=item.index, output=list(item.embedding)) for item in response.data],
            metadata=ChatResponseMetadata(
                model=response.model,
                usage=DefaultUsage(
                    prompt_tokens=usage.prompt_tokens,
                    total_tokens=usage.total_tokens,
                    native_usage=usage.model_dump(),
                ) if usage else EmptyUsage(),
            ),
        )

    async def aclose(self) -> None:
        await self.client.close()


# ────── Factories ──────
def _client() -> AsyncOpenAI:
    props = settings.openai
    return AsyncOpenAI(
        api_key=require_api_key(props.api_key, "OPENAI_API_KEY"),
        base_url=str(props.base_url).rstrip("/"),
        timeout=props.timeout,
        max_retries=0,
    )


def get_chat_model(model_id: Optional[str] = None) -> OpenAiChatModel:
    """
    Build an OpenAI chat model from `settings.openai`.
    """
    props = settings.openai
    require_enabled(props.chat.enabled, "OpenAI chat")

    options = OpenAiChatOptions(**props.chat.options.model_dump(exclude_none=True))
    if model_id:
        options.model = model_id
    return OpenAiChatModel(
        _client(),
        options,
        error_handler=ResponseErrorHandler.from_properties(settings.retry),
        **default_model_kwargs(),
    )


def get_embedding_model(model_id: Optional[str] = None) -> OpenAiEmbeddingModel:
    props = settings.openai
    require_enabled(props.embedding.enabled, "OpenAI embedding")
    return OpenAiEmbeddingModel(
        _client(),
        model=model_id or props.embedding.options.model or DEFAULT_EMBEDDING_MODEL,
        retry_template=default_retry_template(),
        error_handler=ResponseErrorHandler.from_properties(settings.retry),
    )
