import json

import httpx
import pytest
import respx
from pydantic import BaseModel

from chatbridge.adapters.gemini_adapter import GeminiChatModel, GeminiUsage
from chatbridge.adapters.gemini_api import ChatCompletionRequest, GeminiApi, Role
from chatbridge.adapters.gemini_api import Usage as GeminiWireUsage
from chatbridge.adapters.gemini_schema import to_gemini_schema
from chatbridge.exceptions import NonTransientAiError
from chatbridge.model import (
    AssistantMessage,
    ChatOptions,
    GeminiChatOptions,
    MessageType,
    Prompt,
    SystemMessage,
    UserMessage,
)
from chatbridge.tools import FunctionToolCallback, tool

HOST = "generativelanguage.googleapis.com"
GENERATE_PATH = "/v1beta/models/gemini-1.5-flash:generateContent"
STREAM_PATH = "/v1beta/models/gemini-1.5-flash:streamGenerateContent"


class WeatherRequest(BaseModel):
    location: str
    unit: str = "C"


def get_weather(request: WeatherRequest) -> dict:
    temps = {"San Francisco": 30, "Tokyo": 10, "Paris": 15}
    return {"temp": temps.get(request.location, 0), "unit": request.unit}


weather_tool = FunctionToolCallback(
    "getCurrentWeather", get_weather, description="Get the weather in location", input_type=WeatherRequest
)


@tool(return_direct=True)
def lookup(key: str) -> str:
    """Look a value up verbatim."""
    return f"value-of-{key}"


def _text(text: str, finish: str = "STOP") -> dict:
    return {
        "candidates": [{"content": {"role": "model", "parts": [{"text": text}]}, "finishReason": finish, "index": 0}],
        "usageMetadata": {"promptTokenCount": 12, "candidatesTokenCount": 5, "totalTokenCount": 17},
        "modelVersion": "gemini-1.5-flash-002",
        "responseId": "resp-1",
    }


def _function_call(name: str, args: dict) -> dict:
    return {
        "candidates": [{
            "content": {"role": "model", "parts": [{"functionCall": {"name": name, "args": args}}]},
            "finishReason": "STOP",
        }],
    }


def _sse(*events: dict) -> str:
    return "".join(f"data: {json.dumps(e)}\r\n\r\n" for e in events)


@pytest.fixture
def model(model_kwargs):
    return GeminiChatModel(GeminiApi("test-key"), **model_kwargs)


# ─── Request building ──────────────────────────────────────────────────────────
def test_create_request_maps_roles_and_system_instruction(model):
    prompt = Prompt(
        [SystemMessage("You are terse."), UserMessage("hi"), AssistantMessage("hello"), UserMessage("bye")],
        GeminiChatOptions(max_tokens=50, top_k=3, stop_sequences=["END"], thinking_budget=0),
    )

    body = model._create_request(model._merge_prompt(prompt)).to_json()

    assert body["systemInstruction"] == {"parts": [{"text": "You are terse."}]}
    assert [c["role"] for c in body["contents"]] == ["user", "model", "user"]
    assert body["contents"][1]["parts"] == [{"text": "hello"}]
    assert body["generationConfig"] == {
        "temperature": 1.0,
        "maxOutputTokens": 50,
        "topK": 3,
        "stopSequences": ["END"],
        "thinkingConfig": {"thinkingBudget": 0},
    }
    assert "tools" not in body
    assert "model" not in body


def test_create_request_declares_tools(model):
    prompt = Prompt("weather?", ChatOptions(tool_callbacks=[weather_tool]))

    body = model._create_request(model._merge_prompt(prompt)).to_json()

    declaration = body["tools"][0]["functionDeclarations"][0]
    assert declaration["name"] == "getCurrentWeather"
    assert declaration["description"] == "Get the weather in location"
    assert declaration["parameters"]["type"] == "object"
    assert "title" not in declaration["parameters"]
    assert declaration["parameters"]["required"] == ["location"]


def test_create_request_rejects_two_system_messages(model):
    prompt = Prompt([SystemMessage("a"), SystemMessage("b"), UserMessage("hi")])
    with pytest.raises(ValueError, match="Only one system message"):
        model._create_request(model._merge_prompt(prompt))


def test_role_of_rejects_system():
    assert Role.of(MessageType.USER) is Role.USER
    assert Role.of(MessageType.ASSISTANT) is Role.MODEL
    with pytest.raises(ValueError, match="Only USER and ASSISTANT roles are allowed."):
        Role.of(MessageType.SYSTEM)


def test_request_model_selects_url_not_body():
    request = ChatCompletionRequest(contents=[], model="gemini-2.0-flash")
    assert "model" not in request.to_json()
    api = GeminiApi("k")
    assert api._completion_url(request.model, stream=True).endswith("/models/gemini-2.0-flash:streamGenerateContent")
    assert api._completion_url(None, stream=False).endswith("/models/gemini-1.5-flash:generateContent")


def test_api_requires_key():
    with pytest.raises(ValueError):
        GeminiApi("")


# ─── Calls ─────────────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_call_returns_text_and_usage(model):
    with respx.mock:
        route = respx.post(host=HOST, path=GENERATE_PATH).mock(return_value=httpx.Response(200, json=_text("Hello!")))
        response = await model.call(Prompt("hi"))

    assert response.text == "Hello!"
    assert response.result.metadata.finish_reason == "STOP"
    assert response.metadata.model == "gemini-1.5-flash-002"
    assert response.metadata.usage.total_tokens == 17
    assert route.calls[0].request.url.params["key"] == "test-key"


@pytest.mark.asyncio
async def test_call_runs_tool_loop(model):
    with respx.mock:
        route = respx.post(host=HOST, path=GENERATE_PATH).mock(side_effect=[
            httpx.Response(200, json=_function_call("getCurrentWeather", {"location": "Paris"})),
            httpx.Response(200, json=_text("It is 15 degrees in Paris.")),
        ])
        response = await model.call(Prompt("What's the weather in Paris?", ChatOptions(tool_callbacks=[weather_tool])))

    assert response.text == "It is 15 degrees in Paris."
    assert route.call_count == 2

    follow_up = json.loads(route.calls[1].request.content)
    user, model_turn, tool_turn = follow_up["contents"]
    assert user["role"] == "user"
    assert model_turn == {"role": "model", "parts": [{"functionCall": {"name": "getCurrentWeather", "args": {"location": "Paris"}}}]}
    assert tool_turn == {
        "role": "user",
        "parts": [{"functionResponse": {"name": "getCurrentWeather", "response": {"temp": 15, "unit": "C"}}}],
    }


@pytest.mark.asyncio
async def test_call_returns_tool_result_directly(model):
    with respx.mock:
        route = respx.post(host=HOST, path=GENERATE_PATH).mock(
            return_value=httpx.Response(200, json=_function_call("lookup", {"key": "abc"}))
        )
        response = await model.call(Prompt("look up abc", ChatOptions(tool_callbacks=[lookup])))

    assert route.call_count == 1
    assert response.text == "value-of-abc"
    assert response.result.metadata.finish_reason == "returnDirect"
    assert response.result.output.metadata["tool_name"] == "lookup"


@pytest.mark.asyncio
async def test_call_leaves_tool_calls_to_caller_when_internal_execution_disabled(model):
    with respx.mock:
        respx.post(host=HOST, path=GENERATE_PATH).mock(
            return_value=httpx.Response(200, json=_function_call("getCurrentWeather", {"location": "Tokyo"}))
        )
        response = await model.call(Prompt(
            "weather?", ChatOptions(tool_callbacks=[weather_tool], internal_tool_execution_enabled=False)
        ))

    call = response.result.output.tool_calls[0]
    assert call.name == "getCurrentWeather"
    assert json.loads(call.arguments) == {"location": "Tokyo"}


@pytest.mark.asyncio
async def test_call_retries_server_errors(model):
    with respx.mock:
        route = respx.post(host=HOST, path=GENERATE_PATH).mock(side_effect=[
            httpx.Response(503, text="overloaded"),
            httpx.Response(200, json=_text("ok")),
        ])
        response = await model.call(Prompt("hi"))

    assert response.text == "ok"
    assert route.call_count == 2


@pytest.mark.asyncio
async def test_call_does_not_retry_client_errors(model):
    with respx.mock:
        route = respx.post(host=HOST, path=GENERATE_PATH).mock(return_value=httpx.Response(400, text="bad"))
        with pytest.raises(NonTransientAiError, match="400 - bad"):
            await model.call(Prompt("hi"))

    assert route.call_count == 1


@pytest.mark.asyncio
async def test_empty_body_gives_empty_response(model):
    with respx.mock:
        respx.post(host=HOST, path=GENERATE_PATH).mock(return_value=httpx.Response(200, content=b""))
        response = await model.call(Prompt("hi"))

    assert response.generations == []


@pytest.mark.asyncio
async def test_thoughts_are_kept_out_of_text(model):
    payload = {
        "candidates": [{
            "content": {"role": "model", "parts": [
                {"text": "thinking...", "thought": True},
                {"text": "Answer "},
                {"text": "here."},
            ]},
            "finishReason": "STOP",
        }],
    }
    with respx.mock:
        respx.post(host=HOST, path=GENERATE_PATH).mock(return_value=httpx.Response(200, json=payload))
        response = await model.call(Prompt("hi"))

    assert response.text == "Answer here."
    assert response.result.output.metadata["thought"] == "thinking..."


# ─── Streaming ─────────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_stream_yields_chunks(model):
    with respx.mock:
        route = respx.post(host=HOST, path=STREAM_PATH).mock(return_value=httpx.Response(
            200, text=_sse(_text("Hel", finish=None), _text("lo")), headers={"Content-Type": "text/event-stream"}
        ))
        chunks = [c async for c in model.stream(Prompt("hi"))]

    assert "".join(c.text for c in chunks) == "Hello"
    assert route.calls[0].request.url.params["alt"] == "sse"


@pytest.mark.asyncio
async def test_stream_runs_tool_loop(model):
    with respx.mock:
        route = respx.post(host=HOST, path=STREAM_PATH).mock(side_effect=[
            httpx.Response(200, text=_sse(_function_call("getCurrentWeather", {"location": "Tokyo"}))),
            httpx.Response(200, text=_sse(_text("10 degrees "), _text("in Tokyo."))),
        ])
        chunks = [c async for c in model.stream(Prompt("weather?", ChatOptions(tool_callbacks=[weather_tool])))]

    assert route.call_count == 2
    assert "".join(c.text for c in chunks) == "10 degrees in Tokyo."


@pytest.mark.asyncio
async def test_stream_returns_tool_result_directly(model):
    with respx.mock:
        route = respx.post(host=HOST, path=STREAM_PATH).mock(
            return_value=httpx.Response(200, text=_sse(_function_call("lookup", {"key": "abc"})))
        )
        chunks = [c async for c in model.stream(Prompt("look up abc", ChatOptions(tool_callbacks=[lookup])))]

    assert route.call_count == 1
    assert [(c.text, c.result.metadata.finish_reason) for c in chunks] == [("value-of-abc", "returnDirect")]
    assert chunks[0].result.output.metadata["tool_name"] == "lookup"


@pytest.mark.asyncio
async def test_stream_stops_at_done_marker(model):
    body = _sse(_text("one")) + "data: [DONE]\n\n" + _sse(_text("two"))
    with respx.mock:
        respx.post(host=HOST, path=STREAM_PATH).mock(return_value=httpx.Response(200, text=body))
        chunks = [c async for c in model.stream(Prompt("hi"))]

    assert [c.text for c in chunks] == ["one"]


# ─── Usage / schema ────────────────────────────────────────────────────────────
def test_usage_cache_counters():
    usage = GeminiUsage(GeminiWireUsage(
        prompt_token_count=100, candidates_token_count=40, total_token_count=140, cached_content_token_count=10
    ))
    assert (usage.prompt_tokens, usage.completion_tokens, usage.total_tokens) == (100, 40, 140)
    assert usage.cache_hit_tokens == 10
    assert usage.cache_miss_tokens == 30

    partial = GeminiUsage(GeminiWireUsage(prompt_token_count=5))
    assert partial.completion_tokens == 0
    assert partial.cache_miss_tokens is None

    with pytest.raises(ValueError):
        GeminiUsage(None)


def test_schema_inlines_refs_and_marks_nullable():
    class Address(BaseModel):
        city: str

    class Person(BaseModel):
        name: str
        nickname: str | None = None
        address: Address

    schema = to_gemini_schema(Person.model_json_schema())

    assert "$defs" not in schema
    assert schema["properties"]["address"] == {"type": "object", "properties": {"city": {"type": "string"}}, "required": ["city"]}
    assert schema["properties"]["nickname"] == {"type": "string", "nullable": True}
    assert "title" not in schema["properties"]["name"]


def test_schema_of_empty_model_is_object():
    assert to_gemini_schema({}) == {"type": "object", "properties": {}}
    assert to_gemini_schema({"type": "object"}) == {"type": "object", "properties": {}}
