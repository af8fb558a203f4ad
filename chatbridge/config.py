# chatbridge/config.py

"""
Configuration module for ChatBridge.

Runtime configuration uses Pydantic's `BaseSettings`, so every value can come
from the environment or a `.env` file and is validated on load.

Provider groups follow one shape: endpoint, key, then `chat` / `embedding` groups.
Nested values use a double underscore, for example:

    OLLAMA__BASE_URL=http://localhost:11434
    OLLAMA__CHAT__OPTIONS__MODEL=llama3.1
    GEMINI__CHAT__OPTIONS__THINKING_BUDGET=128
    RETRY__MAX_ATTEMPTS=3

Provider API keys fall back to the variables each vendor documents
(`OPENAI_API_KEY`, `DEEPSEEK_API_KEY`, `GEMINI_API_KEY`).

This config powers:
- Provider endpoints, keys and default chat options
- The retry policy around provider calls
- The tool-calling loop bound
- Router service secrets, rate limits and CORS
"""

import os
from typing import List, Literal, Optional, Union

from pydantic import AnyHttpUrl, BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# ─── Chat option groups ────────────────────────────────────────────────────────
class ChatOptionsProperties(BaseModel):
    """Portable generation options shared by every provider."""
    model: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    top_p: Optional[float] = None
    top_k: Optional[int] = None
    stop_sequences: Optional[List[str]] = None
    frequency_penalty: Optional[float] = None
    presence_penalty: Optional[float] = None


class OpenAiChatOptionsProperties(ChatOptionsProperties):
    model: Optional[str] = "gpt-4o-mini"
    temperature: Optional[float] = 0.7
    seed: Optional[int] = None
    user: Optional[str] = None
    parallel_tool_calls: Optional[bool] = None


class DeepSeekChatOptionsProperties(ChatOptionsProperties):
    model: Optional[str] = "deepseek-chat"
    temperature: Optional[float] = 0.7
    seed: Optional[int] = None


class OllamaOptionsProperties(ChatOptionsProperties):
    model: Optional[str] = "llama3.1"
    num_ctx: Optional[int] = None
    seed: Optional[int] = None
    repeat_penalty: Optional[float] = None
    keep_alive: Optional[str] = None
    format: Optional[str] = None


class GeminiChatOptionsProperties(ChatOptionsProperties):
    model: Optional[str] = "gemini-1.5-flash"
    temperature: Optional[float] = 1.0
    thinking_budget: Optional[int] = None
    candidate_count: Optional[int] = None


class EmbeddingOptionsProperties(BaseModel):
    model: Optional[str] = None


# ─── Provider groups ───────────────────────────────────────────────────────────
class OpenAiChatProperties(BaseModel):
    enabled: bool = True
    options: OpenAiChatOptionsProperties = OpenAiChatOptionsProperties()


class OpenAiEmbeddingProperties(BaseModel):
    enabled: bool = True
    options: EmbeddingOptionsProperties = EmbeddingOptionsProperties(model="text-embedding-3-small")


class OpenAiProperties(BaseModel):
    base_url: AnyHttpUrl = "https://api.openai.com/v1"
    api_key: Optional[str] = Field(default_factory=lambda: os.getenv("OPENAI_API_KEY"))
    timeout: float = 60.0
    chat: OpenAiChatProperties = OpenAiChatProperties()
    embedding: OpenAiEmbeddingProperties = OpenAiEmbeddingProperties()


class DeepSeekChatProperties(BaseModel):
    enabled: bool = True
    options: DeepSeekChatOptionsProperties = DeepSeekChatOptionsProperties()


class DeepSeekProperties(BaseModel):
    base_url: AnyHttpUrl = "https://api.deepseek.com"
    api_key: Optional[str] = Field(default_factory=lambda: os.getenv("DEEPSEEK_API_KEY"))
    timeout: float = 60.0
    chat: DeepSeekChatProperties = DeepSeekChatProperties()


class OllamaChatProperties(BaseModel):
    enabled: bool = True
    options: OllamaOptionsProperties = OllamaOptionsProperties()


class OllamaEmbeddingProperties(BaseModel):
    enabled: bool = True
    options: EmbeddingOptionsProperties = EmbeddingOptionsProperties(model="nomic-embed-text")


class OllamaProperties(BaseModel):
    # Ollama local API endpoint (commonly used for local model serving in Docker)
    base_url: AnyHttpUrl = Field(
        default_factory=lambda: os.getenv("OLLAMA_URL", "http://host.docker.internal:11434")
    )
    timeout: float = 60.0
    chat: OllamaChatProperties = OllamaChatProperties()
    embedding: OllamaEmbeddingProperties = OllamaEmbeddingProperties()


class GeminiChatProperties(BaseModel):
    enabled: bool = True
    options: GeminiChatOptionsProperties = GeminiChatOptionsProperties()


class GeminiProperties(BaseModel):
    base_url: AnyHttpUrl = "https://generativelanguage.googleapis.com/v1beta"
    api_key: Optional[str] = Field(default_factory=lambda: os.getenv("GEMINI_API_KEY"))
    timeout: float = 60.0
    chat: GeminiChatProperties = GeminiChatProperties()


# ─── Retry / tool loop ─────────────────────────────────────────────────────────
class RetryProperties(BaseModel):
    max_attempts: int = 10
    initial_interval: float = 2.0   # seconds
    multiplier: float = 5.0
    max_interval: float = 180.0     # seconds
    on_client_errors: bool = False  # retry 4xx as well
    on_http_codes: List[int] = []
    exclude_on_http_codes: List[int] = []

    @field_validator("max_attempts")
    @classmethod
    def check_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("retry max_attempts must be at least 1")
        return v


class ToolProperties(BaseModel):
    max_rounds: int = 10


class Settings(BaseSettings):
    # ─── Secrets (required by the router service, not by library use) ─────────
    chatbridge_api_key: Optional[str] = None  # Used to authenticate clients for issuing JWTs
    jwt_secret_key: Optional[str] = None      # Secret key used to sign JWTs

    # ─── Logging ───────────────────────────────────────────────────────────────
    log_level: str = "INFO"

    # ─── Model Limits ──────────────────────────────────────────────────────────
    max_input_chars: int = 16000  # Max total character count allowed in chat messages
    max_model_tokens: int = 4096  # Max model token generation capacity per request

    # ─── Providers ─────────────────────────────────────────────────────────────
    openai: OpenAiProperties = OpenAiProperties()
    deepseek: DeepSeekProperties = DeepSeekProperties()
    ollama: OllamaProperties = OllamaProperties()
    gemini: GeminiProperties = GeminiProperties()

    retry: RetryProperties = RetryProperties()
    tools: ToolProperties = ToolProperties()

    # ─── CORS Configuration ────────────────────────────────────────────────────
    cors_origins: List[Union[AnyHttpUrl, Literal["*"]]] = ["*"]

    # ─── Rate Limiting Policies ────────────────────────────────────────────────
    # Format must be "<count>/<unit>", e.g. "10/minute"
    rate_limit_token: str = "10/minute"
    rate_limit_chat: str = "30/minute"
    rate_limit_embed: str = "60/minute"

    # ─── Default Models ────────────────────────────────────────────────────────
    default_chat_model: str = "openai:gpt-4o-mini"
    default_embed_model: str = "openai:text-embedding-3-small"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",                      # Ignore unknown env vars like OPENAI_API_KEY
    )

    @field_validator("rate_limit_token", "rate_limit_chat", "rate_limit_embed")
    @classmethod
    def check_rate_limit_format(cls, v: str) -> str:
        """
        Validates rate limit string format: must include a "/" (e.g., "30/minute").
        """
        if "/" not in v:
            raise ValueError("rate limits must be of form `<num>/<unit>`, e.g. `30/minute`")
        return v

    @field_validator("default_chat_model", "default_embed_model")
    @classmethod
    def check_model_prefix(cls, v: str) -> str:
        if ":" not in v:
            raise ValueError("default models must be of form `<provider>:<model>`")
        return v

    @property
    def default_provider(self) -> str:
        return self.default_chat_model.split(":", 1)[0]


# Instantiate a singleton config object, importable throughout the package
settings = Settings()
