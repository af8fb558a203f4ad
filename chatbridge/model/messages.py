# chatbridge/model/messages.py

"""
Portable chat messages.

These records are the provider-neutral conversation history. Adapters convert
them to and from each provider's wire format; nothing here knows about HTTP.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union


class MessageType(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    TOOL = "tool"


@dataclass
class ToolCall:
    """A tool invocation requested by the model. `arguments` is a JSON string."""
    id: str
    type: str
    name: str
    arguments: str


@dataclass
class ToolResponse:
    """The result of one tool call, sent back to the model."""
    id: str
    name: str
    response_data: str


@dataclass
class SystemMessage:
    text: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def message_type(self) -> MessageType:
        return MessageType.SYSTEM


@dataclass
class UserMessage:
    text: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def message_type(self) -> MessageType:
        return MessageType.USER


@dataclass
class AssistantMessage:
    text: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    tool_calls: List[ToolCall] = field(default_factory=list)

    @property
    def message_type(self) -> MessageType:
        return MessageType.ASSISTANT

    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


@dataclass
class ToolResponseMessage:
    responses: List[ToolResponse] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def message_type(self) -> MessageType:
        return MessageType.TOOL

    @property
    def text(self) -> str:
        return ""


Message = Union[SystemMessage, UserMessage, AssistantMessage, ToolResponseMessage]
