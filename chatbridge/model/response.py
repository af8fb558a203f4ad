# chatbridge/model/response.py

"""
Portable chat and embedding responses, and token usage.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from chatbridge.model.messages import AssistantMessage


class Usage:
    """
    Token usage reported by a provider.

    Subclasses map a provider's native counters; `total_tokens` falls back to
    prompt + completion when the provider does not report a total.
    """

    @property
    def prompt_tokens(self) -> int:
        return 0

    @property
    def completion_tokens(self) -> int:
        return 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    @property
    def native_usage(self) -> Any:
        return None

    def to_dict(self) -> Dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.to_dict()})"


class EmptyUsage(Usage):
    pass


class DefaultUsage(Usage):
    def __init__(
        self,
        prompt_tokens: Optional[int] = None,
        completion_tokens: Optional[int] = None,
        total_tokens: Optional[int] = None,
        native_usage: Any = None,
    ):
        self._prompt = prompt_tokens or 0
        self._completion = completion_tokens or 0
        self._total = total_tokens
        self._native = native_usage

    @property
    def prompt_tokens(self) -> int:
        return self._prompt

    @property
    def completion_tokens(self) -> int:
        return self._completion

    @property
    def total_tokens(self) -> int:
        return self._total if self._total is not None else self._prompt + self._completion

    @property
    def native_usage(self) -> Any:
        return self._native


@dataclass
class ChatGenerationMetadata:
    finish_reason: Optional[str] = None
    extras: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Generation:
    output: AssistantMessage
    metadata: ChatGenerationMetadata = field(default_factory=ChatGenerationMetadata)


@dataclass
class ChatResponseMetadata:
    id: Optional[str] = None
    model: Optional[str] = None
    usage: Usage = field(default_factory=EmptyUsage)
    extras: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ChatResponse:
    generations: List[Generation] = field(default_factory=list)
    metadata: ChatResponseMetadata = field(default_factory=ChatResponseMetadata)

    @property
    def result(self) -> Optional[Generation]:
        return self.generations[0] if self.generations else None

    @property
    def text(self) -> Optional[str]:
        return self.result.output.text if self.result else None

    def has_tool_calls(self) -> bool:
        return any(g.output.has_tool_calls() for g in self.generations)


@dataclass
class Embedding:
    index: int
    output: List[float]


@dataclass
class EmbeddingResponse:
    embeddings: List[Embedding] = field(default_factory=list)
    metadata: ChatResponseMetadata = field(default_factory=ChatResponseMetadata)

    @property
    def vectors(self) -> List[List[float]]:
        return [e.output for e in self.embeddings]
