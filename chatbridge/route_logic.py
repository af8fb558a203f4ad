# chatbridge/route_logic.py

"""
This module contains the logic used to select the provider and model for an
incoming request.

This is effectively the “router brain” of the ChatBridge service.

🔁 Rules:
- `"provider:model"` routes to that provider; only the first colon splits,
  so Ollama tags like `ollama:llama3.1:8b` keep their tag
- a bare model name (`"gpt-4o"`) goes to the default provider
- no model at all uses the configured default chat / embedding model
- an unknown provider is a client error (400)
"""

from typing import Any, Dict, Tuple

from chatbridge.config import settings
from chatbridge.exceptions import AdapterError

SUPPORTED_PROVIDERS = ("openai", "ollama", "deepseek", "gemini")

REQUEST_TYPES = ("chat", "stream_chat", "embed")


def split_model(model: str) -> Tuple[str, str]:
    """
    Split a `provider:model` string on its first colon.

    Returns:
        Tuple[str, str]: (provider, model_id); model_id may be empty for `"ollama:"`.
    """
    provider, _, model_id = model.partition(":")
    provider = provider.strip().lower()
    if provider not in SUPPORTED_PROVIDERS:
        raise AdapterError(f"Unknown provider '{provider}'", status_code=400)
    return provider, model_id.strip()


def select_adapter_and_model(
    request_type: str,
    payload: Dict[str, Any]
) -> Tuple[str, str]:
    """
    Determine which provider module and model ID to use for a given request.

    Args:
        request_type (str): One of "chat", "stream_chat", "embed"
        payload (Dict[str, Any]): The incoming request body

    Returns:
        Tuple[str, str]: (provider_name, model_id), e.g. ("gemini", "gemini-2.0-flash").
            An empty model_id means "the provider's configured default".

    Raises:
        AdapterError(400): Unknown request type or provider.
    """
    if request_type not in REQUEST_TYPES:
        raise AdapterError(f"Unsupported request type '{request_type}'", status_code=400)

    model = (payload.get("model") or "").strip()

    # ─── No model requested: configured defaults ───────────────────────────────
    if not model:
        default = settings.default_embed_model if request_type == "embed" else settings.default_chat_model
        return split_model(default)

    # ─── Explicit provider prefix ──────────────────────────────────────────────
    prefix = model.split(":", 1)[0].strip().lower()
    if ":" in model and prefix in SUPPORTED_PROVIDERS:
        return split_model(model)

    # ─── Bare model name (an Ollama-style tag only makes sense for Ollama) ─────
    if ":" in model and settings.default_provider != "ollama":
        raise AdapterError(f"Unknown provider '{prefix}'", status_code=400)
    return settings.default_provider, model
