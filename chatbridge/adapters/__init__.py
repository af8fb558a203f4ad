# chatbridge/adapters/__init__.py

"""
Provider chat and embedding models.

Each `<provider>_adapter.py` module builds on `base.BaseChatModel` and exposes
`get_chat_model(model_id)` (and `get_embedding_model(model_id)` where the
provider has embeddings) so the router can load it by name:

- `openai_adapter.py`    OpenAI, through the `openai` SDK
- `deepseek_adapter.py`  DeepSeek, OpenAI-compatible JSON over httpx
- `ollama_adapter.py`    local Ollama server
- `gemini_adapter.py`    Google Gemini (`gemini_api.py` holds the wire client)

🧠 See also: `adapter.py`, which picks and caches a model per request.
"""
