# chatbridge/adapters/adapter.py

"""
Defines the dynamic model loader and request router.

This class serves as the runtime glue between:
- The incoming request (chat, stream_chat, embed)
- The model routing logic (via route_logic.py)
- The provider module (e.g., `gemini_adapter`) and the model it builds

🧠 Purpose:
- Determine the provider + model for each request
- Import the provider module at runtime and build (or reuse) its model
- Turn the OpenAI-style request body into a portable `Prompt`
- Render portable responses back as OpenAI-style JSON

Models are built once per (provider, kind) and reused across requests; the
requested model name travels with each prompt (or embedding call), so the
cache never grows past one entry per provider module. `close_models()`
releases their HTTP clients on shutdown.
"""

import importlib
import json
import logging
import time
import uuid
from contextlib import aclosing, contextmanager
from typing import Any, AsyncIterator, Dict, Iterator, List, Optional, Tuple

import httpx

from chatbridge.exceptions import AdapterError, TransientAiError
from chatbridge.model.messages import AssistantMessage, Message, SystemMessage, UserMessage
from chatbridge.model.options import ChatOptions
from chatbridge.model.prompt import Prompt
from chatbridge.model.response import ChatResponse
from chatbridge.route_logic import select_adapter_and_model


logger = logging.getLogger("chatbridge.adapters.adapter")

_MODELS: Dict[Tuple[str, str], Any] = {}


def load_model(provider: str, kind: str) -> Any:
    """
    Build (or reuse) the chat or embedding model for a provider.

    Args:
        provider (str): Provider module prefix, e.g. "ollama".
        kind (str): "chat" or "embedding".
    """
    key = (provider, kind)
    if key in _MODELS:
        return _MODELS[key]

    module = importlib.import_module(f"chatbridge.adapters.{provider}_adapter")
    factory = getattr(module, f"get_{kind}_model", None)
    if factory is None:
        raise AdapterError(f"Provider '{provider}' does not support {kind} models", status_code=400)

    model = factory()
    _MODELS[key] = model
    logger.info(f"[Adapter] built {kind} model for {provider}")
    return model


async def close_models() -> None:
    """Close every cached model's HTTP client."""
    models = list(_MODELS.values())
    _MODELS.clear()
    for model in models:
        await model.aclose()


@contextmanager
def upstream_errors(provider: str) -> Iterator[None]:
    """Connection failures that outlived the retry template surface as `TransientAiError`."""
    try:
        yield
    except httpx.TransportError as e:
        raise TransientAiError(f"{provider} is unreachable: {e}") from e


def _to_message(entry: Dict[str, Any]) -> Message:
    role = entry.get("role")
    content = entry.get("content") or ""
    if role == "system":
        return SystemMessage(content)
    if role == "user":
        return UserMessage(content)
    if role == "assistant":
        return AssistantMessage(content)
    raise AdapterError(f"Unsupported message role '{role}'", status_code=400)


def build_prompt(payload: Dict[str, Any], model_id: Optional[str] = None) -> Prompt:
    """OpenAI-style chat request body -> portable `Prompt` for `model_id`."""
    options = ChatOptions(
        model=model_id or None,
        temperature=payload.get("temperature"),
        max_tokens=payload.get("max_tokens"),
        top_p=payload.get("top_p"),
        stop_sequences=payload.get("stop"),
        tool_names=list(payload.get("tools") or []),
    )
    return Prompt([_to_message(m) for m in payload["messages"]], options)


def with_model(prompt: Prompt, model_id: Optional[str]) -> Prompt:
    """Copy of `prompt` whose options name `model_id` (unchanged when empty)."""
    if not model_id:
        return prompt
    options = prompt.options.copy() if prompt.options else ChatOptions()
    options.model = model_id
    return prompt.with_options(options)


def _wire_tool_calls(message: AssistantMessage) -> List[Dict[str, Any]]:
    return [
        {"id": c.id, "type": "function", "function": {"name": c.name, "arguments": c.arguments}}
        for c in message.tool_calls
    ]


class Adapter:
    """
    Unified entry point for a single request.

    Based on the request type and payload, it:
    - Selects the appropriate provider + model
    - Loads the matching model from the provider module
    - Delegates `chat`, `chat_stream` and `embed` to that model
    """

    def __init__(self, request_type: str, payload: Dict[str, Any]):
        """
        Args:
            request_type (str): One of "chat", "stream_chat", or "embed"
            payload (Dict[str, Any]): The validated FastAPI request body
        """
        self.request_type = request_type
        self.payload = payload

        # Dynamically choose provider + model
        self.provider, self.model_id = select_adapter_and_model(request_type, payload)
        kind = "embedding" if request_type == "embed" else "chat"
        self._inner = load_model(self.provider, kind)

    def _model_name(self, response: ChatResponse) -> str:
        return response.metadata.model or self.model_id or self.provider

    async def chat(self) -> Dict[str, Any]:
        """
        Non-streaming completion, rendered as an OpenAI `chat.completion`.
        """
        with upstream_errors(self.provider):
            response = await self._inner.call(build_prompt(self.payload, self.model_id))
        choices = []
        for index, generation in enumerate(response.generations):
            message: Dict[str, Any] = {"role": "assistant", "content": generation.output.text}
            if generation.output.tool_calls:
                message["tool_calls"] = _wire_tool_calls(generation.output)
            choices.append({
                "index": index,
                "message": message,
                "finish_reason": generation.metadata.finish_reason,
            })
        return {
            "id": response.metadata.id or f"chatcmpl-{uuid.uuid4().hex}",
            "object": "chat.completion",
            "created": int(time.time()),
            "model": self._model_name(response),
            "choices": choices,
            "usage": response.metadata.usage.to_dict(),
        }

    async def chat_stream(self) -> AsyncIterator[str]:
        """
        Streaming response generator; yields `chat.completion.chunk` JSON strings.
        """
        stream_id = f"chatcmpl-{uuid.uuid4().hex}"
        with upstream_errors(self.provider):
            async with aclosing(self._inner.stream(build_prompt(self.payload, self.model_id))) as responses:
                async for response in responses:
                    yield json.dumps(self._render_chunk(stream_id, response))

    def _render_chunk(self, stream_id: str, response: ChatResponse) -> Dict[str, Any]:
        chunk: Dict[str, Any] = {
            "id": stream_id,
            "object": "chat.completion.chunk",
            "created": int(time.time()),
            "model": self._model_name(response),
            "choices": [
                {
                    "index": index,
                    "delta": {"role": "assistant", "content": generation.output.text},
                    "finish_reason": generation.metadata.finish_reason,
                }
                for index, generation in enumerate(response.generations)
            ],
        }
        usage = response.metadata.usage.to_dict()
        if usage["total_tokens"]:
            chunk["usage"] = usage
        return chunk

    async def embed(self) -> Dict[str, Any]:
        """
        Embedding request, rendered as an OpenAI embedding list.
        """
        with upstream_errors(self.provider):
            response = await self._inner.embed(list(self.payload["input"]), model=self.model_id or None)
        usage = response.metadata.usage
        return {
            "object": "list",
            "data": [
                {"object": "embedding", "index": e.index, "embedding": e.output}
                for e in response.embeddings
            ],
            "model": response.metadata.model or self.model_id,
            "usage": {"prompt_tokens": usage.prompt_tokens, "total_tokens": usage.total_tokens},
        }
