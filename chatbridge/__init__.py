# chatbridge/__init__.py

"""
ChatBridge: one portable chat and embedding model over several LLM providers.

Layout:
- `chatbridge.model`     portable prompt / options / response records
- `chatbridge.tools`     tool callbacks, registry and the tool-calling manager
- `chatbridge.retry`     retry template and upstream error classification
- `chatbridge.adapters`  provider chat models (OpenAI, Ollama, DeepSeek, Gemini)
- `chatbridge.main`      FastAPI router service exposing the adapters over HTTP

Typical library use:

    from chatbridge.adapters.gemini_adapter import GeminiChatModel
    from chatbridge.model import Prompt

    model = GeminiChatModel.from_api_key("...")
    response = await model.call(Prompt("Hello"))
"""

__version__ = "0.2.0"
