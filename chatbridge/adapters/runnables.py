# chatbridge/adapters/runnables.py

"""
Exposes chat models as LangChain `Runnable`s.

`as_runnable(model)` wraps any `ChatModel` in a `RunnableLambda`, and
`router_chain` picks the provider's model from the `model` field of its input,
the same way the HTTP service routes requests.

Accepted inputs:
- a plain string (one user message)
- a `Prompt`
- an OpenAI-style dict: {"model": ..., "messages": [...], "temperature": ...}

🧠 Why use RunnableLambda?
- Abstract away provider details
- Enable plug-and-play routing by model name
- Compose into LangChain pipelines, agent flows, RAG chains, etc.
"""

import asyncio
from typing import Any, Dict, Optional, Union

from langchain_core.runnables import RunnableLambda

from chatbridge.adapters.adapter import build_prompt, load_model, with_model
from chatbridge.adapters.base import ChatModel
from chatbridge.model.prompt import Prompt
from chatbridge.model.response import ChatResponse
from chatbridge.route_logic import select_adapter_and_model

RunnableInput = Union[str, Prompt, Dict[str, Any]]


def _to_prompt(inputs: RunnableInput) -> Prompt:
    if isinstance(inputs, Prompt):
        return inputs
    if isinstance(inputs, str):
        return Prompt(inputs)
    return build_prompt(inputs)


def as_runnable(chat_model: ChatModel, model: Optional[str] = None) -> RunnableLambda:
    """
    Wrap a chat model; `invoke` / `ainvoke` return its `ChatResponse`.

    `model`, when given, overrides the model name of every prompt.
    """
    async def _acall(inputs: RunnableInput) -> ChatResponse:
        return await chat_model.call(with_model(_to_prompt(inputs), model))

    def _call(inputs: RunnableInput) -> ChatResponse:
        return asyncio.run(_acall(inputs))

    return RunnableLambda(_call, afunc=_acall, name=f"{type(chat_model).__name__}")


# ─── Routing Logic ────────────────────────────────────────────────────────────
def _route(inputs: Dict[str, Any]) -> RunnableLambda:
    """
    Route to the chat model named by the `model` field ("provider:model").

    Returns:
        RunnableLambda: The chain LangChain invokes next with the same inputs.
    """
    provider, model_id = select_adapter_and_model("chat", inputs)
    return as_runnable(load_model(provider, "chat"), model=model_id)


# Exposed as a unified entry point
router_chain = RunnableLambda(_route)
