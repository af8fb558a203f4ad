# chatbridge/tools/manager.py

"""
Tool-calling manager: the part of the orchestration loop that is the same for
every provider.

Given a model response that asks for tool calls, the manager runs each call
in the order the model listed them, collects the results into a
`ToolResponseMessage`, and returns the extended conversation so the chat model
can send a follow-up request.

A failing tool does not abort the loop: its error message becomes the tool's
response, and the model decides what to do with it. A call is resolved against
the tools offered in the prompt first, then against the whole registry, so a
registered tool still runs when the model names it unprompted. Only a name
found in neither place aborts the loop.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from chatbridge.exceptions import ToolExecutionError, ToolNotFoundError
from chatbridge.metrics import TOOL_CALLS
from chatbridge.model.messages import (
    AssistantMessage,
    Message,
    ToolResponse,
    ToolResponseMessage,
)
from chatbridge.model.options import ChatOptions, is_internal_tool_execution_enabled
from chatbridge.model.prompt import Prompt
from chatbridge.model.response import ChatGenerationMetadata, ChatResponse, Generation
from chatbridge.tools.callbacks import ToolCallback
from chatbridge.tools.definitions import ToolDefinition
from chatbridge.tools.registry import ToolRegistry


logger = logging.getLogger("chatbridge.tools.manager")

RETURN_DIRECT_FINISH_REASON = "returnDirect"


@dataclass
class ToolExecutionResult:
    conversation_history: List[Message] = field(default_factory=list)
    return_direct: bool = False

    def build_generations(self) -> List[Generation]:
        """One generation per tool response, carrying the raw tool output."""
        if not self.conversation_history:
            return []
        last = self.conversation_history[-1]
        if not isinstance(last, ToolResponseMessage):
            return []
        return [
            Generation(
                output=AssistantMessage(
                    text=response.response_data,
                    metadata={"tool_id": response.id, "tool_name": response.name},
                ),
                metadata=ChatGenerationMetadata(finish_reason=RETURN_DIRECT_FINISH_REASON),
            )
            for response in last.responses
        ]


class ToolExecutionEligibilityPredicate:
    """Decides whether the framework should run the tool calls in a response."""

    def is_tool_execution_required(self, options: Optional[ChatOptions], response: Optional[ChatResponse]) -> bool:
        if response is None:
            return False
        return is_internal_tool_execution_enabled(options) and response.has_tool_calls()


class ToolCallingManager:
    """
    Resolves the tools offered to a model and executes the ones it calls.

    Args:
        registry (ToolRegistry | None): Resolver for `ChatOptions.tool_names`.
    """

    def __init__(self, registry: Optional[ToolRegistry] = None):
        self.registry = registry if registry is not None else ToolRegistry()

    def resolve_tool_callbacks(self, options: Optional[ChatOptions]) -> List[ToolCallback]:
        if options is None:
            return []
        callbacks: List[ToolCallback] = list(options.tool_callbacks)
        callbacks.extend(self.registry.resolve(name) for name in options.tool_names)

        # The same callback may arrive both inline and by name.
        unique: Dict[str, ToolCallback] = {}
        for callback in callbacks:
            name = callback.tool_definition.name
            existing = unique.get(name)
            if existing is not None and existing is not callback:
                raise ValueError(f"Multiple tools with the same name ({name}) found in the chat options")
            unique[name] = callback
        return list(unique.values())

    def resolve_tool_definitions(self, options: Optional[ChatOptions]) -> List[ToolDefinition]:
        return [callback.tool_definition for callback in self.resolve_tool_callbacks(options)]

    async def execute_tool_calls(self, prompt: Prompt, response: ChatResponse) -> ToolExecutionResult:
        """
        Execute the tool calls of the first generation that has any.

        Returns:
            ToolExecutionResult: prompt history + assistant message + tool responses.

        Raises:
            ValueError: If the response has no tool calls.
            ToolNotFoundError: If a call names a tool that is not available.
        """
        generation = next((g for g in response.generations if g.output.has_tool_calls()), None)
        if generation is None:
            raise ValueError("No tool call requested by the chat model")

        assistant_message = generation.output
        callbacks = {cb.tool_definition.name: cb for cb in self.resolve_tool_callbacks(prompt.options)}

        responses: List[ToolResponse] = []
        return_direct: Optional[bool] = None
        for tool_call in assistant_message.tool_calls:
            callback = callbacks.get(tool_call.name) or self.registry.get(tool_call.name)
            if callback is None:
                raise ToolNotFoundError(tool_call.name)

            direct = callback.tool_metadata.return_direct
            return_direct = direct if return_direct is None else (return_direct and direct)

            start = time.perf_counter()
            try:
                result = await callback.call(tool_call.arguments)
                outcome = "success"
            except ToolExecutionError as e:
                logger.warning(f"[ToolCallingManager] tool {tool_call.name} failed: {e.detail}")
                result = e.detail
                outcome = "error"
            except Exception as e:
                logger.exception(f"[ToolCallingManager] tool {tool_call.name} raised")
                result = str(e) or type(e).__name__
                outcome = "error"

            TOOL_CALLS.labels(tool=tool_call.name, outcome=outcome).inc()
            logger.info(
                "tool executed",
                extra={
                    "tool": tool_call.name,
                    "tool_call_id": tool_call.id,
                    "outcome": outcome,
                    "duration_ms": round((time.perf_counter() - start) * 1000, 2),
                },
            )
            responses.append(ToolResponse(id=tool_call.id, name=tool_call.name, response_data=result))

        history: List[Message] = [*prompt.messages, assistant_message, ToolResponseMessage(responses=responses)]
        return ToolExecutionResult(conversation_history=history, return_direct=bool(return_direct))
