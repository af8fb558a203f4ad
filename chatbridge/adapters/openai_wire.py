# chatbridge/adapters/openai_wire.py

"""
Helpers for the OpenAI-compatible chat completions wire format.

Shared by the OpenAI adapter (which talks through the `openai` SDK and works
on `model_dump()`-ed SDK objects) and the DeepSeek adapter (which talks raw
JSON over httpx). Everything here works on plain dicts.

Streaming note: tool call arguments arrive as string fragments spread over
many chunks. `ChunkAggregator` passes text deltas through immediately and
holds tool calls back until the choice finishes, so the orchestration loop
only ever sees complete tool calls.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from chatbridge.model.messages import (
    AssistantMessage,
    Message,
    SystemMessage,
    ToolCall,
    ToolResponseMessage,
    UserMessage,
)
from chatbridge.model.options import ChatOptions
from chatbridge.model.response import (
    ChatGenerationMetadata,
    ChatResponse,
    ChatResponseMetadata,
    DefaultUsage,
    EmptyUsage,
    Generation,
    Usage,
)
from chatbridge.tools.definitions import ToolDefinition


UsageFactory = Callable[[Dict[str, Any]], Usage]


def default_usage(usage: Dict[str, Any]) -> Usage:
    return DefaultUsage(
        prompt_tokens=usage.get("prompt_tokens"),
        completion_tokens=usage.get("completion_tokens"),
        total_tokens=usage.get("total_tokens"),
        native_usage=usage,
    )


# ─── Requests ──────────────────────────────────────────────────────────────────
def to_wire_messages(messages: List[Message]) -> List[Dict[str, Any]]:
    wire: List[Dict[str, Any]] = []
    for message in messages:
        if isinstance(message, SystemMessage):
            wire.append({"role": "system", "content": message.text})
        elif isinstance(message, UserMessage):
            wire.append({"role": "user", "content": message.text})
        elif isinstance(message, AssistantMessage):
            entry: Dict[str, Any] = {"role": "assistant", "content": message.text}
            if message.tool_calls:
                entry["tool_calls"] = [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {"name": call.name, "arguments": call.arguments},
                    }
                    for call in message.tool_calls
                ]
            wire.append(entry)
        elif isinstance(message, ToolResponseMessage):
            # one `tool` message per response, matched by tool_call_id
            for response in message.responses:
                wire.append({
                    "role": "tool",
                    "tool_call_id": response.id,
                    "content": response.response_data,
                })
        else:
            raise TypeError(f"Unsupported message type: {type(message).__name__}")
    return wire


def to_wire_tools(definitions: List[ToolDefinition]) -> List[Dict[str, Any]]:
    return [
        {
            "type": "function",
            "function": {
                "name": definition.name,
                "description": definition.description,
                "parameters": definition.input_schema,
            },
        }
        for definition in definitions
    ]


def build_request_body(
    messages: List[Message],
    options: ChatOptions,
    tool_definitions: List[ToolDefinition],
    stream: bool,
) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "model": options.model,
        "messages": to_wire_messages(messages),
    }
    optional = {
        "temperature": options.temperature,
        "max_tokens": options.max_tokens,
        "top_p": options.top_p,
        "frequency_penalty": options.frequency_penalty,
        "presence_penalty": options.presence_penalty,
        "stop": options.stop_sequences,
        "seed": getattr(options, "seed", None),
        "user": getattr(options, "user", None),
    }
    body.update({k: v for k, v in optional.items() if v is not None})

    if tool_definitions:
        body["tools"] = to_wire_tools(tool_definitions)
        parallel = getattr(options, "parallel_tool_calls", None)
        if parallel is not None:
            body["parallel_tool_calls"] = parallel

    if stream:
        body["stream"] = True
        body["stream_options"] = {"include_usage": True}
    return body


# ─── Responses ─────────────────────────────────────────────────────────────────
def to_assistant_message(message: Dict[str, Any]) -> AssistantMessage:
    tool_calls = [
        ToolCall(
            id=call.get("id") or "",
            type=call.get("type") or "function",
            name=call["function"]["name"],
            arguments=call["function"].get("arguments") or "{}",
        )
        for call in message.get("tool_calls") or []
    ]
    metadata: Dict[str, Any] = {"role": message.get("role", "assistant")}
    if message.get("reasoning_content"):
        metadata["reasoning_content"] = message["reasoning_content"]
    if message.get("refusal"):
        metadata["refusal"] = message["refusal"]
    return AssistantMessage(text=message.get("content"), metadata=metadata, tool_calls=tool_calls)


def completion_to_response(data: Dict[str, Any], usage_factory: UsageFactory = default_usage) -> ChatResponse:
    generations = [
        Generation(
            output=to_assistant_message(choice.get("message") or {}),
            metadata=ChatGenerationMetadata(
                finish_reason=choice.get("finish_reason"),
                extras={"index": choice.get("index", 0)},
            ),
        )
        for choice in data.get("choices") or []
    ]
    usage = data.get("usage")
    metadata = ChatResponseMetadata(
        id=data.get("id"),
        model=data.get("model"),
        usage=usage_factory(usage) if usage else EmptyUsage(),
        extras={"created": data.get("created"), "system_fingerprint": data.get("system_fingerprint")},
    )
    return ChatResponse(generations=generations, metadata=metadata)


@dataclass
class _PendingToolCall:
    id: str = ""
    type: str = "function"
    name: str = ""
    arguments: str = ""


@dataclass
class ChunkAggregator:
    """Turns streamed `chat.completion.chunk` dicts into `ChatResponse`s."""

    usage_factory: UsageFactory = default_usage
    _pending: Dict[int, Dict[int, _PendingToolCall]] = field(default_factory=dict)
    _last_id: Optional[str] = None
    _last_model: Optional[str] = None

    def _metadata(self, chunk: Dict[str, Any]) -> ChatResponseMetadata:
        usage = chunk.get("usage")
        return ChatResponseMetadata(
            id=chunk.get("id") or self._last_id,
            model=chunk.get("model") or self._last_model,
            usage=self.usage_factory(usage) if usage else EmptyUsage(),
        )

    def _take_tool_calls(self, choice_index: int) -> List[ToolCall]:
        pending = self._pending.pop(choice_index, {})
        return [
            ToolCall(id=p.id, type=p.type, name=p.name, arguments=p.arguments or "{}")
            for _, p in sorted(pending.items())
        ]

    def add(self, chunk: Dict[str, Any]) -> Optional[ChatResponse]:
        self._last_id = chunk.get("id") or self._last_id
        self._last_model = chunk.get("model") or self._last_model

        generations: List[Generation] = []
        for choice in chunk.get("choices") or []:
            index = choice.get("index", 0)
            delta = choice.get("delta") or {}
            finish_reason = choice.get("finish_reason")

            for fragment in delta.get("tool_calls") or []:
                slot = self._pending.setdefault(index, {}).setdefault(fragment.get("index", 0), _PendingToolCall())
                slot.id = fragment.get("id") or slot.id
                slot.type = fragment.get("type") or slot.type
                function = fragment.get("function") or {}
                slot.name = function.get("name") or slot.name
                slot.arguments += function.get("arguments") or ""

            content = delta.get("content")
            reasoning = delta.get("reasoning_content")
            if content or reasoning:
                metadata = {"reasoning_content": reasoning} if reasoning else {}
                generations.append(Generation(
                    output=AssistantMessage(text=content, metadata=metadata),
                    metadata=ChatGenerationMetadata(finish_reason=None if index in self._pending else finish_reason),
                ))

            if finish_reason:
                tool_calls = self._take_tool_calls(index)
                if tool_calls:
                    generations.append(Generation(
                        output=AssistantMessage(text=None, tool_calls=tool_calls),
                        metadata=ChatGenerationMetadata(finish_reason=finish_reason),
                    ))
                elif not (content or reasoning):
                    generations.append(Generation(
                        output=AssistantMessage(text=None),
                        metadata=ChatGenerationMetadata(finish_reason=finish_reason),
                    ))

        if not generations and not chunk.get("usage"):
            return None
        return ChatResponse(generations=generations, metadata=self._metadata(chunk))

    def flush(self) -> Optional[ChatResponse]:
        """Tool calls still pending when the stream ended without a finish reason."""
        generations = [
            Generation(
                output=AssistantMessage(text=None, tool_calls=self._take_tool_calls(index)),
                metadata=ChatGenerationMetadata(finish_reason="tool_calls"),
            )
            for index in sorted(self._pending)
        ]
        if not generations:
            return None
        return ChatResponse(
            generations=generations,
            metadata=ChatResponseMetadata(id=self._last_id, model=self._last_model),
        )
