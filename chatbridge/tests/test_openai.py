import json
from types import SimpleNamespace

import httpx
import pytest
import respx
from openai import AsyncOpenAI

from chatbridge.adapters import openai_wire
from chatbridge.adapters.openai_adapter import OpenAiChatModel, OpenAiEmbeddingModel
from chatbridge.exceptions import NonTransientAiError
from chatbridge.model import (
    AssistantMessage,
    ChatOptions,
    OpenAiChatOptions,
    Prompt,
    SystemMessage,
    ToolCall,
    UserMessage,
)
from chatbridge.model.messages import ToolResponse, ToolResponseMessage
from chatbridge.tools import tool

BASE_URL = "https://api.openai.com/v1"


@tool(description="Add two integers")
def add(a: int, b: int) -> int:
    return a + b


def _completion(content=None, tool_calls=None, finish_reason="stop") -> dict:
    message = {"role": "assistant", "content": content}
    if tool_calls:
        message["tool_calls"] = tool_calls
    return {
        "id": "chatcmpl-1",
        "object": "chat.completion",
        "created": 1700000000,
        "model": "gpt-4o-mini",
        "choices": [{"index": 0, "message": message, "finish_reason": finish_reason}],
        "usage": {"prompt_tokens": 9, "completion_tokens": 3, "total_tokens": 12},
    }


def _chunk(delta: dict, finish_reason=None) -> dict:
    return {
        "id": "chatcmpl-2",
        "object": "chat.completion.chunk",
        "created": 1700000000,
        "model": "gpt-4o-mini",
        "choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}],
    }


def _sse(*chunks: dict) -> str:
    return "".join(f"data: {json.dumps(c)}\n\n" for c in chunks) + "data: [DONE]\n\n"


ADD_CALL = {"id": "call_1", "type": "function", "function": {"name": "add", "arguments": '{"a": 2, "b": 3}'}}


@pytest.fixture
def client():
    return AsyncOpenAI(api_key="sk-test", base_url=BASE_URL, max_retries=0)


@pytest.fixture
def model(client, model_kwargs):
    return OpenAiChatModel(client, OpenAiChatOptions(model="gpt-4o-mini", temperature=0.7), **model_kwargs)


# ─── Wire helpers ──────────────────────────────────────────────────────────────
def test_wire_messages_expand_tool_responses():
    messages = [
        SystemMessage("sys"),
        UserMessage("hi"),
        AssistantMessage(tool_calls=[ToolCall(id="c1", type="function", name="add", arguments="{}")]),
        ToolResponseMessage(responses=[ToolResponse("c1", "add", "5"), ToolResponse("c2", "add", "6")]),
    ]

    wire = openai_wire.to_wire_messages(messages)

    assert [m["role"] for m in wire] == ["system", "user", "assistant", "tool", "tool"]
    assert wire[2]["tool_calls"][0]["function"] == {"name": "add", "arguments": "{}"}
    assert wire[3] == {"role": "tool", "tool_call_id": "c1", "content": "5"}


def test_request_body_carries_only_set_options():
    options = OpenAiChatOptions(model="gpt-4o", temperature=0.1, seed=7, stop_sequences=["x"], parallel_tool_calls=False)

    body = openai_wire.build_request_body([UserMessage("hi")], options, [add.tool_definition], stream=True)

    assert body["model"] == "gpt-4o"
    assert body["temperature"] == 0.1
    assert body["seed"] == 7
    assert body["stop"] == ["x"]
    assert "max_tokens" not in body
    assert body["tools"][0]["function"]["name"] == "add"
    assert body["parallel_tool_calls"] is False
    assert body["stream_options"] == {"include_usage": True}


def test_chunk_aggregator_assembles_tool_call_fragments():
    aggregator = openai_wire.ChunkAggregator()
    fragments = [
        _chunk({"role": "assistant", "tool_calls": [
            {"index": 0, "id": "call_1", "type": "function", "function": {"name": "add", "arguments": ""}}
        ]}),
        _chunk({"tool_calls": [{"index": 0, "function": {"arguments": '{"a": 2'}}]}),
        _chunk({"tool_calls": [{"index": 0, "function": {"arguments": ', "b": 3}'}}]}),
    ]

    assert all(aggregator.add(f) is None for f in fragments)
    response = aggregator.add(_chunk({}, finish_reason="tool_calls"))

    call = response.result.output.tool_calls[0]
    assert (call.id, call.name, json.loads(call.arguments)) == ("call_1", "add", {"a": 2, "b": 3})
    assert response.result.metadata.finish_reason == "tool_calls"
    assert aggregator.flush() is None


def test_chunk_aggregator_passes_text_and_usage():
    aggregator = openai_wire.ChunkAggregator()
    text = aggregator.add(_chunk({"content": "Hi"}))
    usage = aggregator.add({"id": "chatcmpl-2", "choices": [], "usage": {"prompt_tokens": 1, "completion_tokens": 2, "total_tokens": 3}})

    assert text.text == "Hi"
    assert usage.generations == []
    assert usage.metadata.usage.total_tokens == 3


# ─── Chat model ────────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_call_returns_text(model):
    with respx.mock:
        route = respx.post(f"{BASE_URL}/chat/completions").mock(
            return_value=httpx.Response(200, json=_completion("Hello!"))
        )
        response = await model.call(Prompt("hi"))

    assert response.text == "Hello!"
    assert response.metadata.id == "chatcmpl-1"
    assert response.metadata.usage.to_dict() == {"prompt_tokens": 9, "completion_tokens": 3, "total_tokens": 12}
    sent = json.loads(route.calls[0].request.content)
    assert sent["model"] == "gpt-4o-mini"
    assert sent["temperature"] == 0.7


@pytest.mark.asyncio
async def test_call_runs_tool_loop(model):
    with respx.mock:
        route = respx.post(f"{BASE_URL}/chat/completions").mock(side_effect=[
            httpx.Response(200, json=_completion(tool_calls=[ADD_CALL], finish_reason="tool_calls")),
            httpx.Response(200, json=_completion("2 + 3 = 5")),
        ])
        response = await model.call(Prompt("What is 2 + 3?", ChatOptions(tool_callbacks=[add])))

    assert response.text == "2 + 3 = 5"
    follow_up = json.loads(route.calls[1].request.content)["messages"]
    assert [m["role"] for m in follow_up] == ["user", "assistant", "tool"]
    assert follow_up[2] == {"role": "tool", "tool_call_id": "call_1", "content": "5"}


@pytest.mark.asyncio
async def test_client_error_is_not_retried(model):
    with respx.mock:
        route = respx.post(f"{BASE_URL}/chat/completions").mock(
            return_value=httpx.Response(400, json={"error": {"message": "bad model", "type": "invalid_request_error"}})
        )
        with pytest.raises(NonTransientAiError) as exc:
            await model.call(Prompt("hi"))

    assert exc.value.upstream_status == 400
    assert route.call_count == 1


@pytest.mark.asyncio
async def test_server_error_is_retried(model):
    with respx.mock:
        route = respx.post(f"{BASE_URL}/chat/completions").mock(side_effect=[
            httpx.Response(500, json={"error": {"message": "oops"}}),
            httpx.Response(200, json=_completion("ok")),
        ])
        response = await model.call(Prompt("hi"))

    assert response.text == "ok"
    assert route.call_count == 2


@pytest.mark.asyncio
async def test_stream_yields_text_deltas(model):
    body = _sse(_chunk({"role": "assistant", "content": "Hel"}), _chunk({"content": "lo"}), _chunk({}, "stop"))
    with respx.mock:
        respx.post(f"{BASE_URL}/chat/completions").mock(
            return_value=httpx.Response(200, text=body, headers={"Content-Type": "text/event-stream"})
        )
        chunks = [c async for c in model.stream(Prompt("hi"))]

    assert "".join(c.text or "" for c in chunks) == "Hello"
    assert chunks[-1].result.metadata.finish_reason == "stop"


class RecordingStream:
    """Stands in for the SDK stream: yields chunk objects and records `close`."""

    def __init__(self, *chunks: dict):
        self.chunks = chunks
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        self.closed = True

    async def __aiter__(self):
        for chunk in self.chunks:
            yield SimpleNamespace(model_dump=lambda chunk=chunk: chunk)


@pytest.mark.asyncio
async def test_stream_closes_sdk_stream_when_consumer_stops_early(model_kwargs):
    sdk_stream = RecordingStream(_chunk({"content": "Hel"}), _chunk({"content": "lo"}), _chunk({}, "stop"))

    async def create(**body):
        return sdk_stream

    client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))
    model = OpenAiChatModel(client, OpenAiChatOptions(model="gpt-4o-mini"), **model_kwargs)

    stream = model.stream(Prompt("hi"))
    assert (await stream.__anext__()).text == "Hel"
    assert not sdk_stream.closed
    await stream.aclose()

    assert sdk_stream.closed


@pytest.mark.asyncio
async def test_stream_runs_tool_loop(model):
    tool_stream = _sse(
        _chunk({"role": "assistant", "tool_calls": [
            {"index": 0, "id": "call_1", "type": "function", "function": {"name": "add", "arguments": '{"a": 2,'}}
        ]}),
        _chunk({"tool_calls": [{"index": 0, "function": {"arguments": ' "b": 3}'}}]}),
        _chunk({}, "tool_calls"),
    )
    answer_stream = _sse(_chunk({"content": "It is "}), _chunk({"content": "5."}), _chunk({}, "stop"))
    with respx.mock:
        route = respx.post(f"{BASE_URL}/chat/completions").mock(side_effect=[
            httpx.Response(200, text=tool_stream, headers={"Content-Type": "text/event-stream"}),
            httpx.Response(200, text=answer_stream, headers={"Content-Type": "text/event-stream"}),
        ])
        chunks = [c async for c in model.stream(Prompt("2 + 3?", ChatOptions(tool_callbacks=[add])))]

    assert route.call_count == 2
    assert "".join(c.text or "" for c in chunks) == "It is 5."
    follow_up = json.loads(route.calls[1].request.content)
    assert follow_up["stream"] is True
    assert follow_up["messages"][-1]["content"] == "5"


# ─── Embeddings ────────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_embed(client, retry_template):
    payload = {
        "object": "list",
        "data": [
            {"object": "embedding", "index": 0, "embedding": [0.1, 0.2]},
            {"object": "embedding", "index": 1, "embedding": [0.3, 0.4]},
        ],
        "model": "text-embedding-3-small",
        "usage": {"prompt_tokens": 4, "total_tokens": 4},
    }
    model = OpenAiEmbeddingModel(client, retry_template=retry_template)
    with respx.mock:
        route = respx.post(f"{BASE_URL}/embeddings").mock(return_value=httpx.Response(200, json=payload))
        response = await model.embed(["a", "b"])

    assert response.vectors == [[0.1, 0.2], [0.3, 0.4]]
    assert response.metadata.usage.total_tokens == 4
    assert json.loads(route.calls[0].request.content)["input"] == ["a", "b"]
