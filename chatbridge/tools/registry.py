# chatbridge/tools/registry.py

import logging
from typing import Dict, Iterable, List, Optional

from chatbridge.exceptions import ToolNotFoundError
from chatbridge.tools.callbacks import ToolCallback


logger = logging.getLogger("chatbridge.tools.registry")


class ToolRegistry:
    """Resolves tool names (as sent in `ChatOptions.tool_names`) to callbacks."""

    def __init__(self, callbacks: Optional[Iterable[ToolCallback]] = None):
        self._tools: Dict[str, ToolCallback] = {}
        for callback in callbacks or ():
            self.register(callback)

    def register(self, callback: ToolCallback) -> ToolCallback:
        name = callback.tool_definition.name
        if name in self._tools:
            logger.warning(f"Replacing registered tool: {name}")
        self._tools[name] = callback
        logger.debug(f"Registered tool: {name}")
        return callback

    def unregister(self, name: str) -> None:
        self._tools.pop(name, None)

    def get(self, name: str) -> Optional[ToolCallback]:
        return self._tools.get(name)

    def resolve(self, name: str) -> ToolCallback:
        callback = self._tools.get(name)
        if callback is None:
            raise ToolNotFoundError(name)
        return callback

    def list_tools(self) -> List[ToolCallback]:
        return list(self._tools.values())

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)


# Shared registry used by the router service's chat models.
default_registry = ToolRegistry()
