# chatbridge/adapters/gemini_adapter.py

"""
Google Gemini chat model.

Translates the portable prompt into a Gemini `generateContent` request:
- the (single) system message becomes `systemInstruction`
- user messages become `user` contents, assistant messages `model` contents
- assistant tool calls become `functionCall` parts
- tool responses become `functionResponse` parts in a `user` content
- offered tools become one `Tool` with a function declaration each

Responses map back candidate by candidate; function calls surface as
`ToolCall`s so the shared loop in `BaseChatModel` can execute them.

🔐 Requires `GEMINI_API_KEY` (or `GEMINI__API_KEY`) when built from settings.
"""

import json
import uuid
from typing import Any, AsyncIterator, Dict, List, Optional

from chatbridge.adapters.base import (
    BaseChatModel,
    default_model_kwargs,
    require_api_key,
    require_enabled,
)
from chatbridge.adapters.gemini_api import (
    DEFAULT_CHAT_MODEL,
    Candidate,
    ChatCompletion,
    ChatCompletionRequest,
    Content,
    FunctionCall,
    FunctionDeclaration,
    FunctionResponse,
    GeminiApi,
    GenerationConfig,
    Part,
    Role,
    Tool,
)
from chatbridge.adapters.gemini_api import Usage as GeminiWireUsage
from chatbridge.adapters.gemini_schema import to_gemini_schema
from chatbridge.config import settings
from chatbridge.model.messages import (
    AssistantMessage,
    Message,
    SystemMessage,
    ToolCall,
    ToolResponseMessage,
    UserMessage,
)
from chatbridge.model.options import GeminiChatOptions
from chatbridge.model.prompt import Prompt
from chatbridge.model.response import (
    ChatGenerationMetadata,
    ChatResponse,
    ChatResponseMetadata,
    EmptyUsage,
    Generation,
    Usage,
)
from chatbridge.retry import ResponseErrorHandler


class GeminiUsage(Usage):
    """Token usage from Gemini's `usageMetadata`."""

    def __init__(self, usage: GeminiWireUsage):
        if usage is None:
            raise ValueError("Google Gemini Usage must not be None")
        self._usage = usage

    @classmethod
    def from_usage(cls, usage: GeminiWireUsage) -> "GeminiUsage":
        return cls(usage)

    @property
    def prompt_tokens(self) -> int:
        return self._usage.prompt_token_count or 0

    @property
    def completion_tokens(self) -> int:
        return self._usage.candidates_token_count or 0

    @property
    def total_tokens(self) -> int:
        return self._usage.total_token_count or 0

    @property
    def cache_hit_tokens(self) -> Optional[int]:
        return self._usage.cached_content_token_count

    @property
    def cache_miss_tokens(self) -> Optional[int]:
        completion = self._usage.candidates_token_count
        hit = self._usage.cached_content_token_count
        if completion is None or hit is None:
            return None
        return completion - hit

    @property
    def native_usage(self) -> GeminiWireUsage:
        return self._usage


# Gemini only sometimes assigns call ids; ids minted here never go back on the wire.
LOCAL_ID_PREFIX = "local_call_"


def _wire_id(call_id: Optional[str]) -> Optional[str]:
    if not call_id or call_id.startswith(LOCAL_ID_PREFIX):
        return None
    return call_id


def _as_object(response_data: str) -> Dict[str, Any]:
    """`functionResponse.response` must be a JSON object."""
    try:
        parsed = json.loads(response_data)
    except (TypeError, ValueError):
        return {"result": response_data}
    if isinstance(parsed, dict):
        return parsed
    return {"result": parsed}


class GeminiChatModel(BaseChatModel):
    """
    Chat model backed by `GeminiApi`.

    Args:
        api (GeminiApi): Low-level API client.
        options (GeminiChatOptions | None): Defaults; temperature 1.0 if omitted.
        **kwargs: Passed to `BaseChatModel` (tool manager, retry template, ...).
    """

    provider = "gemini"

    def __init__(self, api: GeminiApi, options: Optional[GeminiChatOptions] = None, **kwargs: Any):
        if api is None:
            raise ValueError("GeminiApi must not be None")
        super().__init__(options if options is not None else GeminiChatOptions(temperature=1.0), **kwargs)
        self.api = api

    @classmethod
    def from_api_key(
        cls,
        api_key: str,
        model: Optional[str] = None,
        options: Optional[GeminiChatOptions] = None,
        **kwargs: Any,
    ) -> "GeminiChatModel":
        api = GeminiApi(api_key, model=model or DEFAULT_CHAT_MODEL)
        return cls(api, options, **kwargs)

    # ─── Request ───────────────────────────────────────────────────────────────
    def _create_request(self, prompt: Prompt) -> ChatCompletionRequest:
        prompt.check_single_system_message()

        contents = [self._to_content(message) for message in prompt.non_system_messages]
        system = prompt.system_message

        tools = None
        definitions = self._tool_definitions(prompt)
        if definitions:
            tools = [Tool(function_declarations=[
                FunctionDeclaration(
                    name=definition.name,
                    description=definition.description,
                    parameters=to_gemini_schema(definition.input_schema),
                )
                for definition in definitions
            ])]

        return ChatCompletionRequest(
            contents=contents,
            system_instruction=Content.of_text(system.text) if system else None,
            generation_config=GenerationConfig.of(prompt.options),
            tools=tools,
            model=prompt.options.model if prompt.options else None,
        )

    @staticmethod
    def _to_content(message: Message) -> Content:
        if isinstance(message, UserMessage):
            return Content.of_text(message.text, Role.of(message.message_type))

        if isinstance(message, AssistantMessage):
            parts: List[Part] = []
            if message.text:
                parts.append(Part(text=message.text))
            for call in message.tool_calls:
                parts.append(Part(function_call=FunctionCall(
                    id=_wire_id(call.id),
                    name=call.name,
                    args=json.loads(call.arguments) if call.arguments else {},
                )))
            return Content(role=Role.MODEL, parts=parts or [Part(text="")])

        if isinstance(message, ToolResponseMessage):
            return Content(role=Role.USER, parts=[
                Part(function_response=FunctionResponse(
                    id=_wire_id(response.id),
                    name=response.name,
                    response=_as_object(response.response_data),
                ))
                for response in message.responses
            ])

        if isinstance(message, SystemMessage):
            raise ValueError("System messages travel as systemInstruction, not as contents")
        raise TypeError(f"Unknown instance of message: {type(message).__name__}")

    # ─── Response ──────────────────────────────────────────────────────────────
    @staticmethod
    def _to_assistant_message(candidate: Candidate) -> AssistantMessage:
        if candidate is None or candidate.content is None or not candidate.content.parts:
            return AssistantMessage(text=None)

        parts = candidate.content.parts
        texts = [p.text for p in parts if p.text is not None and not p.thought]
        thoughts = [p.text for p in parts if p.text is not None and p.thought]
        tool_calls = [
            ToolCall(
                id=p.function_call.id or f"{LOCAL_ID_PREFIX}{uuid.uuid4().hex}",
                type="function_call",
                name=p.function_call.name,
                arguments=json.dumps(p.function_call.args),
            )
            for p in parts
            if p.function_call is not None
        ]
        metadata = {"thought": "".join(thoughts)} if thoughts else {}
        return AssistantMessage(
            text="".join(texts) if texts else None,
            metadata=metadata,
            tool_calls=tool_calls,
        )

    def _to_response(self, completion: ChatCompletion) -> ChatResponse:
        generations = [
            Generation(
                output=self._to_assistant_message(candidate),
                metadata=ChatGenerationMetadata(finish_reason=candidate.finish_reason),
            )
            for candidate in completion.choices
        ]
        metadata = ChatResponseMetadata(
            id=completion.response_id,
            model=completion.model_version,
            usage=GeminiUsage.from_usage(completion.usage) if completion.usage else EmptyUsage(),
        )
        return ChatResponse(generations=generations, metadata=metadata)

    async def _do_call(self, request: ChatCompletionRequest) -> ChatResponse:
        completion = await self.api.chat_completion(request)
        if completion is None:
            self.logger.warning(f"[GeminiChatModel] no chat completion returned for request: {request.to_json()}")
            return ChatResponse(generations=[])
        return self._to_response(completion)

    async def _do_stream(self, request: ChatCompletionRequest) -> AsyncIterator[ChatResponse]:
        async for completion in self.api.chat_completion_stream(request):
            yield self._to_response(completion)

    async def aclose(self) -> None:
        await self.api.aclose()


def get_chat_model(model_id: Optional[str] = None) -> GeminiChatModel:
    """
    Build a Gemini chat model from `settings.gemini`.
    """
    props = settings.gemini
    require_enabled(props.chat.enabled, "Gemini chat")
    api_key = require_api_key(props.api_key, "GEMINI_API_KEY")

    options = GeminiChatOptions(**props.chat.options.model_dump(exclude_none=True))
    if model_id:
        options.model = model_id

    api = GeminiApi(
        api_key,
        model=options.model,
        base_url=str(props.base_url),
        error_handler=ResponseErrorHandler.from_properties(settings.retry),
        timeout=props.timeout,
    )
    return GeminiChatModel(api, options, **default_model_kwargs())
