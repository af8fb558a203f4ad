# chatbridge/adapters/base.py

"""
Defines the chat and embedding model contracts, and `BaseChatModel`, which
runs the tool-calling orchestration loop for every provider.

The loop:

    build request -> call provider (under retry)
      -> response asks for tools?  no  -> return it
                                   yes -> execute tools
                                          return-direct? -> return tool results
                                          otherwise      -> append history, go again

Streaming follows the same shape: chunks pass through as they arrive, and a
chunk that asks for tools is replaced by the stream of the follow-up request.

Provider adapters only implement three hooks:
- `_create_request(prompt)`  portable prompt -> provider request
- `_do_call(request)`        one synchronous round trip -> ChatResponse
- `_do_stream(request)`      one streaming round trip -> ChatResponse chunks
"""

import logging
import time
from abc import ABC, abstractmethod
from contextlib import aclosing
from typing import Any, AsyncIterator, Dict, List, Optional

from chatbridge.config import settings
from chatbridge.exceptions import AdapterError, ToolExecutionError
from chatbridge.metrics import CHAT_LATENCY, CHAT_REQUESTS
from chatbridge.model.options import ChatOptions, merge
from chatbridge.model.prompt import Prompt
from chatbridge.model.response import ChatResponse, EmbeddingResponse
from chatbridge.retry import RetryTemplate, default_retry_template
from chatbridge.tools.definitions import ToolDefinition
from chatbridge.tools.manager import ToolCallingManager, ToolExecutionEligibilityPredicate
from chatbridge.tools.registry import default_registry


DEFAULT_MAX_TOOL_ROUNDS = 10


def default_model_kwargs() -> Dict[str, Any]:
    """Constructor arguments every settings-built chat model shares."""
    return {
        "tool_calling_manager": ToolCallingManager(default_registry),
        "retry_template": default_retry_template(),
        "max_tool_rounds": settings.tools.max_rounds,
    }


def require_enabled(enabled: bool, what: str) -> None:
    if not enabled:
        raise AdapterError(f"{what} is disabled by configuration", status_code=404)


def require_api_key(api_key: Optional[str], env_name: str) -> str:
    if not api_key:
        raise AdapterError(f"{env_name} is not configured", status_code=503)
    return api_key


class ChatModel(ABC):
    """A model that answers a prompt with a complete response."""

    @abstractmethod
    async def call(self, prompt: Prompt) -> ChatResponse:
        ...

    @property
    @abstractmethod
    def default_options(self) -> ChatOptions:
        ...

    async def call_text(self, text: str) -> Optional[str]:
        """Shorthand: one user message in, the first generation's text out."""
        response = await self.call(Prompt(text))
        return response.text


class StreamingChatModel(ABC):
    """A model that answers a prompt with a sequence of partial responses."""

    @abstractmethod
    def stream(self, prompt: Prompt) -> AsyncIterator[ChatResponse]:
        ...


class EmbeddingModel(ABC):
    @abstractmethod
    async def embed(self, texts: List[str], model: Optional[str] = None) -> EmbeddingResponse:
        """
        Generate vector embeddings for a list of strings.

        Args:
            texts (List[str]): Sentences or documents to embed.
            model (str, optional): Embedding model for this call; defaults to the configured one.

        Returns:
            EmbeddingResponse: One embedding per input, in input order.
        """
        ...

    async def aclose(self) -> None:
        return None


class BaseChatModel(ChatModel, StreamingChatModel):
    """
    Shared orchestration for provider chat models.

    Args:
        default_options (ChatOptions): Options applied under every prompt's own options.
        tool_calling_manager (ToolCallingManager | None): Resolves and executes tools.
        retry_template (RetryTemplate | None): Retry policy for each provider round trip.
        eligibility_predicate (ToolExecutionEligibilityPredicate | None): Decides when to run tools.
        max_tool_rounds (int): Tool rounds allowed per call before giving up.
    """

    provider: str = "base"

    def __init__(
        self,
        default_options: ChatOptions,
        tool_calling_manager: Optional[ToolCallingManager] = None,
        retry_template: Optional[RetryTemplate] = None,
        eligibility_predicate: Optional[ToolExecutionEligibilityPredicate] = None,
        max_tool_rounds: int = DEFAULT_MAX_TOOL_ROUNDS,
    ):
        if default_options is None:
            raise ValueError("Options must not be None")
        self._default_options = default_options
        self.tool_calling_manager = tool_calling_manager or ToolCallingManager()
        self.retry_template = retry_template or default_retry_template()
        self.eligibility_predicate = eligibility_predicate or ToolExecutionEligibilityPredicate()
        self.max_tool_rounds = max_tool_rounds
        self.logger = logging.getLogger(f"chatbridge.adapters.{self.provider}_adapter")

    @property
    def default_options(self) -> ChatOptions:
        return self._default_options.copy()

    # ─── Provider hooks ────────────────────────────────────────────────────────
    @abstractmethod
    def _create_request(self, prompt: Prompt) -> Any:
        ...

    @abstractmethod
    async def _do_call(self, request: Any) -> ChatResponse:
        ...

    @abstractmethod
    def _do_stream(self, request: Any) -> AsyncIterator[ChatResponse]:
        ...

    async def aclose(self) -> None:
        return None

    # ─── Orchestration ─────────────────────────────────────────────────────────
    def _merge_prompt(self, prompt: Prompt) -> Prompt:
        return prompt.with_options(merge(self._default_options, prompt.options))

    def _tool_definitions(self, prompt: Prompt) -> List[ToolDefinition]:
        return self.tool_calling_manager.resolve_tool_definitions(prompt.options)

    def _check_rounds(self, rounds: int) -> None:
        if rounds > self.max_tool_rounds:
            raise ToolExecutionError(
                f"Tool calling did not finish after {self.max_tool_rounds} rounds"
            )

    async def call(self, prompt: Prompt) -> ChatResponse:
        prompt = self._merge_prompt(prompt)
        rounds = 0
        while True:
            request = self._create_request(prompt)
            start = time.perf_counter()
            try:
                response = await self.retry_template.execute(lambda: self._do_call(request))
            except Exception:
                CHAT_REQUESTS.labels(provider=self.provider, mode="call", outcome="error").inc()
                self.logger.error(f"[{type(self).__name__}] chat call failed after retries")
                raise
            CHAT_LATENCY.labels(provider=self.provider, mode="call").observe(time.perf_counter() - start)
            CHAT_REQUESTS.labels(provider=self.provider, mode="call", outcome="success").inc()

            if not self.eligibility_predicate.is_tool_execution_required(prompt.options, response):
                return response

            rounds += 1
            self._check_rounds(rounds)
            result = await self.tool_calling_manager.execute_tool_calls(prompt, response)
            if result.return_direct:
                # Return tool execution result directly to the client.
                return ChatResponse(generations=result.build_generations(), metadata=response.metadata)

            self.logger.info(f"[{type(self).__name__}] tool round {rounds} complete, sending results back")
            prompt = Prompt(result.conversation_history, prompt.options)

    async def stream(self, prompt: Prompt) -> AsyncIterator[ChatResponse]:
        start = time.perf_counter()
        # Stays "cancelled" when the consumer stops iterating early
        outcome = "cancelled"
        try:
            async with aclosing(self._stream_round(self._merge_prompt(prompt), 0)) as responses:
                async for response in responses:
                    yield response
            outcome = "success"
            CHAT_LATENCY.labels(provider=self.provider, mode="stream").observe(time.perf_counter() - start)
        except Exception:
            outcome = "error"
            raise
        finally:
            CHAT_REQUESTS.labels(provider=self.provider, mode="stream", outcome=outcome).inc()

    async def _stream_round(self, prompt: Prompt, rounds: int) -> AsyncIterator[ChatResponse]:
        request = self._create_request(prompt)
        async with aclosing(self.retry_template.stream(lambda: self._do_stream(request))) as responses:
            async for response in responses:
                if not self.eligibility_predicate.is_tool_execution_required(prompt.options, response):
                    yield response
                    continue

                self._check_rounds(rounds + 1)
                result = await self.tool_calling_manager.execute_tool_calls(prompt, response)
                if result.return_direct:
                    yield ChatResponse(generations=result.build_generations(), metadata=response.metadata)
                else:
                    # Send the tool execution result back to the model.
                    follow_up = Prompt(result.conversation_history, prompt.options)
                    async with aclosing(self._stream_round(follow_up, rounds + 1)) as chunks:
                        async for chunk in chunks:
                            yield chunk
