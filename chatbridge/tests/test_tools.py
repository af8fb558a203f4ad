import json

import pytest
from pydantic import BaseModel

from chatbridge.exceptions import ToolExecutionError, ToolNotFoundError
from chatbridge.model import AssistantMessage, ChatOptions, ChatResponse, Generation, Prompt, ToolCall, UserMessage
from chatbridge.model.messages import ToolResponseMessage
from chatbridge.tools import (
    FunctionToolCallback,
    ToolCallingManager,
    ToolExecutionEligibilityPredicate,
    ToolRegistry,
    tool,
)


class WeatherRequest(BaseModel):
    location: str
    unit: str = "C"


def get_weather(request: WeatherRequest) -> dict:
    temps = {"San Francisco": 30, "Tokyo": 10, "Paris": 15}
    return {"temp": temps.get(request.location.split(",")[0], 0), "unit": request.unit}


weather_tool = FunctionToolCallback(
    "getCurrentWeather",
    get_weather,
    description="Get the weather in location",
    input_type=WeatherRequest,
)


@tool(description="Add two integers")
async def add(a: int, b: int = 1) -> int:
    return a + b


@tool(return_direct=True)
def shout(text: str) -> str:
    """Upper-case the text."""
    return text.upper()


@tool()
def broken() -> str:
    raise RuntimeError("boom")


def _tool_response(*calls: ToolCall) -> ChatResponse:
    return ChatResponse(generations=[Generation(output=AssistantMessage(tool_calls=list(calls)))])


def _call(name: str, arguments: dict, call_id: str = "call-1") -> ToolCall:
    return ToolCall(id=call_id, type="function", name=name, arguments=json.dumps(arguments))


# ─── Callbacks ─────────────────────────────────────────────────────────────────
def test_function_tool_definition_uses_model_schema():
    definition = weather_tool.tool_definition
    assert definition.name == "getCurrentWeather"
    assert definition.description == "Get the weather in location"
    assert definition.input_schema["properties"]["location"]["type"] == "string"
    assert definition.input_schema["required"] == ["location"]


@pytest.mark.asyncio
async def test_function_tool_call_serializes_result():
    result = await weather_tool.call('{"location": "Tokyo, Japan"}')
    assert json.loads(result) == {"temp": 10, "unit": "C"}


@pytest.mark.asyncio
async def test_function_tool_rejects_invalid_arguments():
    with pytest.raises(ToolExecutionError) as exc:
        await weather_tool.call('{"unit": "F"}')
    assert exc.value.tool_name == "getCurrentWeather"


def test_tool_decorator_builds_schema_from_signature():
    schema = add.tool_definition.input_schema
    assert add.tool_definition.name == "add"
    assert set(schema["properties"]) == {"a", "b"}
    assert schema["required"] == ["a"]
    assert shout.tool_definition.description == "Upper-case the text."
    assert shout.tool_metadata.return_direct


@pytest.mark.asyncio
async def test_tool_decorator_unpacks_arguments():
    assert await add.call('{"a": 2, "b": 3}') == "5"
    assert await add.call('{"a": 2}') == "3"
    assert await shout.call('{"text": "hi"}') == "HI"


@pytest.mark.asyncio
async def test_tool_failure_is_wrapped():
    with pytest.raises(ToolExecutionError, match="boom"):
        await broken.call("{}")


# ─── Registry ──────────────────────────────────────────────────────────────────
def test_registry_register_and_resolve():
    registry = ToolRegistry([weather_tool])
    assert "getCurrentWeather" in registry
    assert registry.resolve("getCurrentWeather") is weather_tool
    assert len(registry) == 1

    registry.unregister("getCurrentWeather")
    assert registry.get("getCurrentWeather") is None
    with pytest.raises(ToolNotFoundError) as exc:
        registry.resolve("getCurrentWeather")
    assert exc.value.status_code == 400
    assert str(exc.value) == "No tool callback found for tool name: getCurrentWeather"


# ─── Manager ───────────────────────────────────────────────────────────────────
def test_manager_resolves_inline_and_named_tools():
    manager = ToolCallingManager(ToolRegistry([add]))
    options = ChatOptions(tool_callbacks=[weather_tool, add], tool_names=["add"])
    names = [d.name for d in manager.resolve_tool_definitions(options)]
    assert names == ["getCurrentWeather", "add"]


def test_manager_rejects_conflicting_tools_with_same_name():
    other_add = FunctionToolCallback("add", lambda: 0)
    manager = ToolCallingManager(ToolRegistry([other_add]))
    with pytest.raises(ValueError, match="Multiple tools with the same name"):
        manager.resolve_tool_callbacks(ChatOptions(tool_callbacks=[add], tool_names=["add"]))


@pytest.mark.asyncio
async def test_manager_executes_calls_in_order_and_builds_history():
    manager = ToolCallingManager()
    prompt = Prompt([UserMessage("weather?")], ChatOptions(tool_callbacks=[weather_tool, add]))
    response = _tool_response(
        _call("getCurrentWeather", {"location": "Paris"}, "c1"),
        _call("add", {"a": 1, "b": 2}, "c2"),
    )

    result = await manager.execute_tool_calls(prompt, response)

    assert not result.return_direct
    user, assistant, tool_message = result.conversation_history
    assert user == UserMessage("weather?")
    assert assistant is response.generations[0].output
    assert isinstance(tool_message, ToolResponseMessage)
    assert [(r.id, r.name) for r in tool_message.responses] == [("c1", "getCurrentWeather"), ("c2", "add")]
    assert json.loads(tool_message.responses[0].response_data)["temp"] == 15
    assert tool_message.responses[1].response_data == "3"


@pytest.mark.asyncio
async def test_manager_feeds_tool_errors_back_to_the_model():
    manager = ToolCallingManager()
    prompt = Prompt("go", ChatOptions(tool_callbacks=[broken]))

    result = await manager.execute_tool_calls(prompt, _tool_response(_call("broken", {})))

    assert result.conversation_history[-1].responses[0].response_data == "boom"


@pytest.mark.asyncio
async def test_manager_unknown_tool_raises():
    manager = ToolCallingManager()
    with pytest.raises(ToolNotFoundError):
        await manager.execute_tool_calls(Prompt("go", ChatOptions()), _tool_response(_call("missing", {})))


@pytest.mark.asyncio
async def test_manager_falls_back_to_registered_tools_not_offered():
    manager = ToolCallingManager(ToolRegistry([add]))

    result = await manager.execute_tool_calls(Prompt("go", ChatOptions()), _tool_response(_call("add", {"a": 2, "b": 2})))

    assert result.conversation_history[-1].responses[0].response_data == "4"


@pytest.mark.asyncio
async def test_return_direct_requires_every_tool_to_agree():
    manager = ToolCallingManager()
    options = ChatOptions(tool_callbacks=[shout, add])

    only_direct = await manager.execute_tool_calls(Prompt("go", options), _tool_response(_call("shout", {"text": "x"})))
    mixed = await manager.execute_tool_calls(
        Prompt("go", options),
        _tool_response(_call("shout", {"text": "x"}, "c1"), _call("add", {"a": 1}, "c2")),
    )

    assert only_direct.return_direct
    assert not mixed.return_direct

    generations = only_direct.build_generations()
    assert len(generations) == 1
    assert generations[0].output.text == "X"
    assert generations[0].output.metadata == {"tool_id": "call-1", "tool_name": "shout"}
    assert generations[0].metadata.finish_reason == "returnDirect"


def test_eligibility_predicate():
    predicate = ToolExecutionEligibilityPredicate()
    with_calls = _tool_response(_call("add", {"a": 1}))
    without_calls = ChatResponse(generations=[Generation(output=AssistantMessage("hi"))])

    assert predicate.is_tool_execution_required(ChatOptions(), with_calls)
    assert not predicate.is_tool_execution_required(ChatOptions(), without_calls)
    assert not predicate.is_tool_execution_required(ChatOptions(internal_tool_execution_enabled=False), with_calls)
    assert not predicate.is_tool_execution_required(ChatOptions(), None)
