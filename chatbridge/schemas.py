# chatbridge/schemas.py

"""
Defines Pydantic data models for request validation in the ChatBridge API.

These models serve three primary purposes:
1. Ensure incoming requests conform to expected shapes and types
2. Provide automatic OpenAPI schema generation for FastAPI
3. Add business logic validation (e.g., max character limits)

💡 These schemas enforce security and performance boundaries (e.g., token limits)
at the API edge before anything hits an LLM backend.
"""

from typing import List, Literal, Optional, Union

from pydantic import BaseModel, Field, model_validator

from chatbridge.config import settings


class ChatMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


class ChatRequest(BaseModel):
    """
    Defines the expected schema for a /v1/chat/completions request.

    Fields:
        model (str | None): `provider:model`, a bare model name, or omitted for the default
        messages (List[ChatMessage]): Required chat history in OpenAI format
        temperature / max_tokens / top_p / stop: Optional generation settings
        stream (bool | None): Whether to use streaming responses (Server-Sent Events)
        tools (List[str] | None): Names of registered tools the model may call
    """
    model: Optional[str] = None
    messages: List[ChatMessage] = Field(..., min_length=1)
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    top_p: Optional[float] = None
    stop: Optional[List[str]] = None
    stream: Optional[bool] = False
    tools: Optional[List[str]] = None

    @model_validator(mode="after")
    def check_payload_limits(self):
        """
        Enforces global constraints:
        - Total input message length must be under `max_input_chars`
        - `max_tokens` must be within bounds

        Raises:
            ValueError: If message length or max_tokens exceeds allowed thresholds.
        """
        # 1. Character count limit for all input messages
        total_chars = sum(len(m.content) for m in self.messages)
        if total_chars > settings.max_input_chars:
            raise ValueError(
                f"Total message content too large ({total_chars} chars); "
                f"max is {settings.max_input_chars}"
            )

        # 2. Token count limit for generation
        if self.max_tokens and self.max_tokens > settings.max_model_tokens:
            raise ValueError(
                f"Requested max_tokens ({self.max_tokens}) exceeds limit "
                f"({settings.max_model_tokens})"
            )

        return self


class EmbeddingRequest(BaseModel):
    """
    Defines the expected schema for a /v1/embeddings request.

    Fields:
        model (str | None): `provider:model`, or omitted for the default embedding model.
        input (str | List[str]): Text(s) to embed.
    """
    model: Optional[str] = None
    input: Union[str, List[str]] = Field(
        ...,
        examples=[["What is a vector embedding?"]],
        description="A string or list of strings to convert into embeddings."
    )

    @model_validator(mode="after")
    def normalize_input(self):
        if isinstance(self.input, str):
            self.input = [self.input]
        if not self.input:
            raise ValueError("input must not be empty")
        return self
