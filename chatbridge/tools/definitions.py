# chatbridge/tools/definitions.py

from dataclasses import dataclass, field
from typing import Any, Dict


@dataclass(frozen=True)
class ToolDefinition:
    """What the model is told about a tool: its name, purpose and JSON input schema."""
    name: str
    description: str
    input_schema: Dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})


@dataclass(frozen=True)
class ToolMetadata:
    """
    How the framework treats a tool's result.

    `return_direct` hands the result to the caller instead of sending it back
    to the model for another round.
    """
    return_direct: bool = False
