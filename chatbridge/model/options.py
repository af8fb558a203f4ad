# chatbridge/model/options.py

"""
Portable chat options and their provider-specific extensions.

`ChatOptions` carries the generation settings every provider understands plus
the tool-calling settings. Provider subclasses add a handful of vendor fields;
adapters ignore fields they cannot send.

Options are merged, never mutated: `merge(defaults, runtime)` returns a new
object where the runtime value wins for every field it sets.
"""

from dataclasses import dataclass, field, fields, replace
from typing import TYPE_CHECKING, Any, Dict, List, Optional

if TYPE_CHECKING:
    from chatbridge.tools.callbacks import ToolCallback


@dataclass
class ChatOptions:
    model: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    top_p: Optional[float] = None
    top_k: Optional[int] = None
    stop_sequences: Optional[List[str]] = None
    frequency_penalty: Optional[float] = None
    presence_penalty: Optional[float] = None

    # ─── Tool calling ──────────────────────────────────────────────────────────
    tool_callbacks: List["ToolCallback"] = field(default_factory=list)
    tool_names: List[str] = field(default_factory=list)
    # When False, tool calls are returned to the caller instead of executed.
    internal_tool_execution_enabled: Optional[bool] = None

    def copy(self) -> "ChatOptions":
        return replace(
            self,
            tool_callbacks=list(self.tool_callbacks),
            tool_names=list(self.tool_names),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Non-empty generation fields, tool settings excluded."""
        skip = {"tool_callbacks", "tool_names", "internal_tool_execution_enabled"}
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name not in skip and getattr(self, f.name) is not None
        }


@dataclass
class OpenAiChatOptions(ChatOptions):
    seed: Optional[int] = None
    user: Optional[str] = None
    parallel_tool_calls: Optional[bool] = None


@dataclass
class DeepSeekChatOptions(ChatOptions):
    seed: Optional[int] = None


@dataclass
class OllamaOptions(ChatOptions):
    num_ctx: Optional[int] = None
    seed: Optional[int] = None
    repeat_penalty: Optional[float] = None
    keep_alive: Optional[str] = None
    format: Optional[str] = None


@dataclass
class GeminiChatOptions(ChatOptions):
    thinking_budget: Optional[int] = None
    candidate_count: Optional[int] = None


def merge(defaults: Optional[ChatOptions], runtime: Optional[ChatOptions]) -> ChatOptions:
    """
    Merge runtime options over default options.

    The result has the runtime class when it is at least as specific as the
    defaults' class, otherwise the defaults' class (so a portable `ChatOptions`
    passed at call time keeps provider defaults like `thinking_budget`).
    Tool callbacks and tool names are unioned, runtime entries first.
    """
    if defaults is None and runtime is None:
        return ChatOptions()
    if runtime is None:
        return defaults.copy()
    if defaults is None:
        return runtime.copy()

    target_cls = type(runtime) if isinstance(runtime, type(defaults)) else type(defaults)
    values: Dict[str, Any] = {}
    for f in fields(target_cls):
        runtime_value = getattr(runtime, f.name, None)
        default_value = getattr(defaults, f.name, None)
        values[f.name] = runtime_value if runtime_value is not None else default_value

    callbacks = list(runtime.tool_callbacks)
    seen = {cb.tool_definition.name for cb in callbacks}
    for cb in defaults.tool_callbacks:
        if cb.tool_definition.name not in seen:
            callbacks.append(cb)
            seen.add(cb.tool_definition.name)
    values["tool_callbacks"] = callbacks
    values["tool_names"] = list(dict.fromkeys([*runtime.tool_names, *defaults.tool_names]))
    return target_cls(**values)


def is_internal_tool_execution_enabled(options: Optional[ChatOptions]) -> bool:
    if options is None or options.internal_tool_execution_enabled is None:
        return True
    return options.internal_tool_execution_enabled
