# chatbridge/adapters/ollama_adapter.py

"""
Ollama chat and embedding models.

Ollama runs local LLMs and exposes a simple HTTP API:
- POST /api/chat   for chat (NDJSON lines when streaming)
- POST /api/embed  for embeddings
- GET  /api/tags   for the locally available models

Differences from the OpenAI-style providers:
- generation settings travel in a nested `options` object (`num_predict`, `stop`, `num_ctx` ...)
- tool calls carry dict arguments and no ids, so ids are generated here
- tool results go back as `tool` messages naming the tool (`tool_name`)
- usage comes from `prompt_eval_count` / `eval_count`

🧠 Used for fast, self-hosted inference (e.g., LLaMA, Mistral, etc.)
"""

import json
import logging
import uuid
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from chatbridge.adapters.base import (
    BaseChatModel,
    EmbeddingModel,
    default_model_kwargs,
    require_enabled,
)
from chatbridge.config import settings
from chatbridge.model.messages import (
    AssistantMessage,
    Message,
    SystemMessage,
    ToolCall,
    ToolResponseMessage,
    UserMessage,
)
from chatbridge.model.options import ChatOptions, OllamaOptions
from chatbridge.model.prompt import Prompt
from chatbridge.model.response import (
    ChatGenerationMetadata,
    ChatResponse,
    ChatResponseMetadata,
    DefaultUsage,
    Embedding,
    EmbeddingResponse,
    EmptyUsage,
    Generation,
)
from chatbridge.retry import ResponseErrorHandler, RetryTemplate, default_error_handler, default_retry_template


logger = logging.getLogger("chatbridge.adapters.ollama_adapter")

DEFAULT_BASE_URL = "http://localhost:11434"
DEFAULT_CHAT_MODEL = "llama3.1"
DEFAULT_EMBEDDING_MODEL = "nomic-embed-text"


class OllamaApi:
    """
    Thin async client for the Ollama REST API.

    Args:
        base_url (str): Ollama server root, e.g. `http://localhost:11434`.
        client (httpx.AsyncClient | None): Shared client; one is created if omitted.
        error_handler (ResponseErrorHandler | None): Maps error statuses to exceptions.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        client: Optional[httpx.AsyncClient] = None,
        error_handler: Optional[ResponseErrorHandler] = None,
        timeout: float = 60.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.error_handler = error_handler or default_error_handler()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))

    async def chat(self, body: Dict[str, Any]) -> Dict[str, Any]:
        resp = await self._client.post(f"{self.base_url}/api/chat", json={**body, "stream": False})
        logger.info(f"[OllamaApi] chat response status: {resp.status_code}")
        self.error_handler.check(resp)
        return resp.json()

    async def chat_stream(self, body: Dict[str, Any]) -> AsyncIterator[Dict[str, Any]]:
        async with self._client.stream("POST", f"{self.base_url}/api/chat", json={**body, "stream": True}) as resp:
            logger.info(f"[OllamaApi] chat_stream response status: {resp.status_code}")
            await self.error_handler.acheck(resp)
            async for line in resp.aiter_lines():
                if not line:
                    continue
                yield json.loads(line)

    async def embed(self, model: str, inputs: List[str]) -> Dict[str, Any]:
        resp = await self._client.post(f"{self.base_url}/api/embed", json={"model": model, "input": inputs})
        logger.info(f"[OllamaApi] embed response status: {resp.status_code}")
        self.error_handler.check(resp)
        return resp.json()

    async def list_models(self) -> List[Dict[str, Any]]:
        resp = await self._client.get(f"{self.base_url}/api/tags")
        self.error_handler.check(resp)
        return resp.json().get("models", [])

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def _usage(data: Dict[str, Any]) -> Optional[DefaultUsage]:
    if "prompt_eval_count" not in data and "eval_count" not in data:
        return None
    return DefaultUsage(
        prompt_tokens=data.get("prompt_eval_count"),
        completion_tokens=data.get("eval_count"),
        native_usage={
            k: data[k]
            for k in ("prompt_eval_count", "eval_count", "total_duration", "load_duration", "eval_duration")
            if k in data
        },
    )


class OllamaChatModel(BaseChatModel):
    """
    Chat model for local Ollama models.
    """

    provider = "ollama"

    def __init__(self, api: OllamaApi, options: Optional[OllamaOptions] = None, **kwargs: Any):
        super().__init__(options if options is not None else OllamaOptions(model=DEFAULT_CHAT_MODEL), **kwargs)
        self.api = api

    # ─── Request ───────────────────────────────────────────────────────────────
    @staticmethod
    def _to_ollama_options(options: ChatOptions) -> Dict[str, Any]:
        mapped = {
            "temperature": options.temperature,
            "num_predict": options.max_tokens,
            "top_p": options.top_p,
            "top_k": options.top_k,
            "stop": options.stop_sequences,
            "frequency_penalty": options.frequency_penalty,
            "presence_penalty": options.presence_penalty,
            "seed": getattr(options, "seed", None),
            "num_ctx": getattr(options, "num_ctx", None),
            "repeat_penalty": getattr(options, "repeat_penalty", None),
        }
        return {k: v for k, v in mapped.items() if v is not None}

    @staticmethod
    def _to_wire_messages(messages: List[Message]) -> List[Dict[str, Any]]:
        wire: List[Dict[str, Any]] = []
        for message in messages:
            if isinstance(message, SystemMessage):
                wire.append({"role": "system", "content": message.text})
            elif isinstance(message, UserMessage):
                wire.append({"role": "user", "content": message.text})
            elif isinstance(message, AssistantMessage):
                entry: Dict[str, Any] = {"role": "assistant", "content": message.text or ""}
                if message.tool_calls:
                    entry["tool_calls"] = [
                        {"function": {"name": call.name, "arguments": json.loads(call.arguments or "{}")}}
                        for call in message.tool_calls
                    ]
                wire.append(entry)
            elif isinstance(message, ToolResponseMessage):
                for response in message.responses:
                    wire.append({"role": "tool", "tool_name": response.name, "content": response.response_data})
            else:
                raise TypeError(f"Unsupported message type: {type(message).__name__}")
        return wire

    def _create_request(self, prompt: Prompt) -> Dict[str, Any]:
        options = prompt.options
        body: Dict[str, Any] = {
            "model": options.model,
            "messages": self._to_wire_messages(prompt.messages),
            "options": self._to_ollama_options(options),
        }
        for key in ("keep_alive", "format"):
            value = getattr(options, key, None)
            if value is not None:
                body[key] = value

        definitions = self._tool_definitions(prompt)
        if definitions:
            body["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": d.name,
                        "description": d.description,
                        "parameters": d.input_schema,
                    },
                }
                for d in definitions
            ]
        return body

    # ─── Response ──────────────────────────────────────────────────────────────
    @staticmethod
    def _to_response(data: Dict[str, Any]) -> ChatResponse:
        message = data.get("message") or {}
        tool_calls = [
            ToolCall(
                id=call.get("id") or str(uuid.uuid4()),
                type="function",
                name=call["function"]["name"],
                arguments=json.dumps(call["function"].get("arguments") or {}),
            )
            for call in message.get("tool_calls") or []
        ]
        metadata = {"thinking": message["thinking"]} if message.get("thinking") else {}
        generation = Generation(
            output=AssistantMessage(text=message.get("content"), metadata=metadata, tool_calls=tool_calls),
            metadata=ChatGenerationMetadata(finish_reason=data.get("done_reason")),
        )
        return ChatResponse(
            generations=[generation],
            metadata=ChatResponseMetadata(
                model=data.get("model"),
                usage=_usage(data) or EmptyUsage(),
                extras={"created_at": data.get("created_at")},
            ),
        )

    async def _do_call(self, request: Dict[str, Any]) -> ChatResponse:
        logger.info(f"[OllamaChatModel] chat payload: {request}")
        data = await self.api.chat(request)
        logger.info(f"[OllamaChatModel] chat response data: {data}")
        return self._to_response(data)

    async def _do_stream(self, request: Dict[str, Any]) -> AsyncIterator[ChatResponse]:
        logger.info(f"[OllamaChatModel] chat_stream payload: {request}")
        async for chunk in self.api.chat_stream(request):
            logger.debug(f"[OllamaChatModel] chat_stream chunk: {chunk}")
            yield self._to_response(chunk)

    async def collect_model_information(self) -> List[Dict[str, Any]]:
        """Models pulled into the local Ollama server (`/api/tags`)."""
        return await self.api.list_models()

    async def aclose(self) -> None:
        await self.api.aclose()


class OllamaEmbeddingModel(EmbeddingModel):
    """Embeddings through `/api/embed`."""

    def __init__(
        self,
        api: OllamaApi,
        model: str = DEFAULT_EMBEDDING_MODEL,
        retry_template: Optional[RetryTemplate] = None,
    ):
        self.api = api
        self.model = model
        self.retry_template = retry_template or default_retry_template()

    async def embed(self, texts: List[str], model: Optional[str] = None) -> EmbeddingResponse:
        model = model or self.model
        logger.info(f"[OllamaEmbeddingModel] embed payload: model={model}, input_len={len(texts)}")
        data = await self.retry_template.execute(lambda: self.api.embed(model, texts))
        return EmbeddingResponse(
            embeddings=[Embedding(index=i, output=vector) for i, vector in enumerate(data.get("embeddings", []))],
            metadata=ChatResponseMetadata(
                model=data.get("model", model),
                usage=DefaultUsage(prompt_tokens=data.get("prompt_eval_count")),
            ),
        )

    async def aclose(self) -> None:
        await self.api.aclose()


# ────── Factories ──────
def _api() -> OllamaApi:
    props = settings.ollama
    return OllamaApi(
        base_url=str(props.base_url),
        error_handler=ResponseErrorHandler.from_properties(settings.retry),
        timeout=props.timeout,
    )


def get_chat_model(model_id: Optional[str] = None) -> OllamaChatModel:
    """
    Entry point for the adapter loader system.
    """
    props = settings.ollama
    require_enabled(props.chat.enabled, "Ollama chat")

    options = OllamaOptions(**props.chat.options.model_dump(exclude_none=True))
    if model_id:
        options.model = model_id
    return OllamaChatModel(_api(), options, **default_model_kwargs())


def get_embedding_model(model_id: Optional[str] = None) -> OllamaEmbeddingModel:
    props = settings.ollama
    require_enabled(props.embedding.enabled, "Ollama embedding")
    return OllamaEmbeddingModel(
        _api(),
        model=model_id or props.embedding.options.model or DEFAULT_EMBEDDING_MODEL,
        retry_template=default_retry_template(),
    )
