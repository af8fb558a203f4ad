# chatbridge/tools/__init__.py

"""
Tool calling: callbacks the model can invoke, the registry that names them,
and the manager that executes them on behalf of a chat model.
"""

from chatbridge.tools.callbacks import FunctionToolCallback, ToolCallback, tool
from chatbridge.tools.definitions import ToolDefinition, ToolMetadata
from chatbridge.tools.manager import (
    ToolCallingManager,
    ToolExecutionEligibilityPredicate,
    ToolExecutionResult,
)
from chatbridge.tools.registry import ToolRegistry, default_registry

__all__ = [
    "FunctionToolCallback",
    "ToolCallback",
    "ToolCallingManager",
    "ToolDefinition",
    "ToolExecutionEligibilityPredicate",
    "ToolExecutionResult",
    "ToolMetadata",
    "ToolRegistry",
    "default_registry",
    "tool",
]
