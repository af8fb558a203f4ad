import json

import httpx
import pytest
import respx

from chatbridge.adapters.deepseek_adapter import DeepSeekApi, DeepSeekChatModel, DeepSeekUsage
from chatbridge.exceptions import TransientAiError
from chatbridge.model import ChatOptions, DeepSeekChatOptions, Prompt
from chatbridge.tools import tool

URL = "https://api.deepseek.com/chat/completions"

USAGE = {
    "prompt_tokens": 20,
    "completion_tokens": 5,
    "total_tokens": 25,
    "prompt_cache_hit_tokens": 16,
    "prompt_cache_miss_tokens": 4,
}


@tool(description="Current time in a timezone")
def current_time(timezone: str = "UTC") -> str:
    return f"12:00 {timezone}"


def _completion(content=None, tool_calls=None, reasoning=None) -> dict:
    message = {"role": "assistant", "content": content}
    if tool_calls:
        message["tool_calls"] = tool_calls
    if reasoning:
        message["reasoning_content"] = reasoning
    return {
        "id": "ds-1",
        "object": "chat.completion",
        "model": "deepseek-chat",
        "choices": [{"index": 0, "message": message, "finish_reason": "tool_calls" if tool_calls else "stop"}],
        "usage": USAGE,
    }


@pytest.fixture
def model(model_kwargs):
    return DeepSeekChatModel(DeepSeekApi("ds-key"), DeepSeekChatOptions(model="deepseek-chat"), **model_kwargs)


@pytest.mark.asyncio
async def test_call_maps_usage_and_reasoning(model):
    with respx.mock:
        route = respx.post(URL).mock(return_value=httpx.Response(
            200, json=_completion("42", reasoning="Let me think.")
        ))
        response = await model.call(Prompt("answer?"))

    assert response.text == "42"
    assert response.result.output.metadata["reasoning_content"] == "Let me think."
    usage = response.metadata.usage
    assert isinstance(usage, DeepSeekUsage)
    assert (usage.cache_hit_tokens, usage.cache_miss_tokens, usage.total_tokens) == (16, 4, 25)
    assert route.calls[0].request.headers["Authorization"] == "Bearer ds-key"


@pytest.mark.asyncio
async def test_call_runs_tool_loop(model):
    call = {"id": "call_0", "type": "function", "function": {"name": "current_time", "arguments": '{"timezone": "CET"}'}}
    with respx.mock:
        route = respx.post(URL).mock(side_effect=[
            httpx.Response(200, json=_completion(tool_calls=[call])),
            httpx.Response(200, json=_completion("It is noon.")),
        ])
        response = await model.call(Prompt("time?", ChatOptions(tool_callbacks=[current_time])))

    assert response.text == "It is noon."
    messages = json.loads(route.calls[1].request.content)["messages"]
    assert messages[-1] == {"role": "tool", "tool_call_id": "call_0", "content": "12:00 CET"}


@pytest.mark.asyncio
async def test_rate_limit_is_retried_when_configured(model_kwargs):
    from chatbridge.retry import ResponseErrorHandler

    api = DeepSeekApi("ds-key", error_handler=ResponseErrorHandler(on_http_codes=[429]))
    model = DeepSeekChatModel(api, **model_kwargs)
    with respx.mock:
        route = respx.post(URL).mock(side_effect=[
            httpx.Response(429, text="rate limited"),
            httpx.Response(200, json=_completion("ok")),
        ])
        response = await model.call(Prompt("hi"))

    assert response.text == "ok"
    assert route.call_count == 2


@pytest.mark.asyncio
async def test_stream_parses_sse_and_skips_keep_alive(model):
    def chunk(delta, finish=None):
        return {"id": "ds-2", "model": "deepseek-chat", "choices": [{"index": 0, "delta": delta, "finish_reason": finish}]}

    body = (
        ": keep-alive\n\n"
        f"data: {json.dumps(chunk({'reasoning_content': 'hmm'}))}\n\n"
        f"data: {json.dumps(chunk({'content': 'Hi'}))}\n\n"
        f"data: {json.dumps(chunk({'content': '!'}, 'stop'))}\n\n"
        f"data: {json.dumps({'id': 'ds-2', 'choices': [], 'usage': USAGE})}\n\n"
        "data: [DONE]\n\n"
    )
    with respx.mock:
        route = respx.post(URL).mock(return_value=httpx.Response(200, text=body))
        chunks = [c async for c in model.stream(Prompt("hi"))]

    assert "".join(c.text or "" for c in chunks) == "Hi!"
    assert chunks[0].result.output.metadata["reasoning_content"] == "hmm"
    assert chunks[-1].metadata.usage.cache_hit_tokens == 16
    sent = json.loads(route.calls[0].request.content)
    assert sent["stream"] is True
    assert sent["stream_options"] == {"include_usage": True}


@pytest.mark.asyncio
async def test_stream_error_status_raises(model):
    with respx.mock:
        route = respx.post(URL).mock(return_value=httpx.Response(503, text="busy"))
        with pytest.raises(TransientAiError, match="503 - busy"):
            [c async for c in model.stream(Prompt("hi"))]

    assert route.call_count == 3
