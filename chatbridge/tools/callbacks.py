# chatbridge/tools/callbacks.py

"""
Tool callbacks: Python callables a model can ask the framework to run.

Two ways to build one:

    class WeatherRequest(BaseModel):
        location: str
        unit: Literal["C", "F"] = "C"

    weather = FunctionToolCallback(
        "getCurrentWeather", get_weather,
        description="Get the weather in location",
        input_type=WeatherRequest,
    )

or, straight from a function signature:

    @tool(description="Get the current time in a timezone")
    def current_time(timezone: str = "UTC") -> str: ...

Arguments arrive as a JSON string from the model and are validated with
pydantic before the function runs. Results go back to the model as a string.
"""

import asyncio
import inspect
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional, Type

from pydantic import BaseModel, ValidationError, create_model

from chatbridge.exceptions import ToolExecutionError
from chatbridge.tools.definitions import ToolDefinition, ToolMetadata


logger = logging.getLogger("chatbridge.tools.callbacks")


class ToolCallback(ABC):
    """Contract between the tool-calling manager and a tool implementation."""

    @property
    @abstractmethod
    def tool_definition(self) -> ToolDefinition:
        ...

    @property
    def tool_metadata(self) -> ToolMetadata:
        return ToolMetadata()

    @abstractmethod
    async def call(self, tool_input: str) -> str:
        """
        Run the tool.

        Args:
            tool_input (str): JSON-encoded arguments produced by the model.

        Returns:
            str: The result to hand back to the model.

        Raises:
            ToolExecutionError: If the arguments are invalid or the tool fails.
        """
        ...


def _convert_result(result: Any) -> str:
    if isinstance(result, str):
        return result
    if isinstance(result, BaseModel):
        return result.model_dump_json()
    return json.dumps(result, default=str)


class FunctionToolCallback(ToolCallback):
    """
    Wraps a function taking a single pydantic model argument (or, with
    `unpack_arguments=True`, the model's fields as keyword arguments).
    """

    def __init__(
        self,
        name: str,
        function: Callable[..., Any],
        description: str = "",
        input_type: Optional[Type[BaseModel]] = None,
        return_direct: bool = False,
        unpack_arguments: bool = False,
    ):
        if not name:
            raise ValueError("Tool name must not be empty")
        self._function = function
        self._input_type = input_type or create_model(f"{name}Input")
        self._unpack = unpack_arguments
        self._definition = ToolDefinition(
            name=name,
            description=description or (inspect.getdoc(function) or name),
            input_schema=self._input_type.model_json_schema(),
        )
        self._metadata = ToolMetadata(return_direct=return_direct)

    @property
    def tool_definition(self) -> ToolDefinition:
        return self._definition

    @property
    def tool_metadata(self) -> ToolMetadata:
        return self._metadata

    async def call(self, tool_input: str) -> str:
        name = self._definition.name
        try:
            arguments = self._input_type.model_validate_json(tool_input or "{}")
        except ValidationError as e:
            raise ToolExecutionError(f"Invalid arguments for tool '{name}': {e}", tool_name=name) from e

        if self._unpack:
            args, kwargs = (), {field: getattr(arguments, field) for field in type(arguments).model_fields}
        else:
            args, kwargs = (arguments,), {}

        logger.debug(f"[FunctionToolCallback] calling {name} with {tool_input}")
        try:
            if inspect.iscoroutinefunction(self._function):
                result = await self._function(*args, **kwargs)
            else:
                result = await asyncio.to_thread(self._function, *args, **kwargs)
        except ToolExecutionError:
            raise
        except Exception as e:
            raise ToolExecutionError(str(e) or type(e).__name__, tool_name=name) from e

        return _convert_result(result)

    def __repr__(self) -> str:
        return f"FunctionToolCallback(name={self._definition.name!r})"


def tool(
    name: Optional[str] = None,
    description: Optional[str] = None,
    return_direct: bool = False,
) -> Callable[[Callable[..., Any]], FunctionToolCallback]:
    """
    Decorator turning a function into a `FunctionToolCallback`.

    The input schema is generated from the function's annotated parameters;
    parameters with defaults become optional.
    """
    def decorator(func: Callable[..., Any]) -> FunctionToolCallback:
        tool_name = name or func.__name__
        field_definitions = {}
        for param in inspect.signature(func).parameters.values():
            if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
                continue
            annotation = param.annotation if param.annotation is not inspect.Parameter.empty else Any
            default = param.default if param.default is not inspect.Parameter.empty else ...
            field_definitions[param.name] = (annotation, default)

        input_type = create_model(f"{tool_name}Input", **field_definitions)
        return FunctionToolCallback(
            tool_name,
            func,
            description=description or inspect.getdoc(func) or tool_name,
            input_type=input_type,
            return_direct=return_direct,
            unpack_arguments=True,
        )

    return decorator
