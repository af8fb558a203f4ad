# chatbridge/adapters/gemini_api.py

"""
Low-level client for the Google Gemini `generateContent` REST API.

Docs: https://ai.google.dev/api/generate-content

Wire records are pydantic models with the API's camelCase field names as
aliases; `None` fields are left out of request bodies.

Endpoints:
- POST /models/{model}:generateContent?key=...
- POST /models/{model}:streamGenerateContent?alt=sse&key=...   (SSE `data:` lines)
"""

import logging
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field

from chatbridge.model.messages import MessageType
from chatbridge.model.options import ChatOptions, GeminiChatOptions
from chatbridge.retry import ResponseErrorHandler, default_error_handler


logger = logging.getLogger("chatbridge.adapters.gemini_api")

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"

SSE_DONE = "[DONE]"


class GeminiModelName(str, Enum):
    GEMINI_1_5_FLASH = "gemini-1.5-flash"
    GEMINI_1_5_PRO = "gemini-1.5-pro"
    GEMINI_1_0_PRO = "gemini-1.0-pro"
    GEMINI_2_0_FLASH = "gemini-2.0-flash"
    GEMINI_2_5_FLASH = "gemini-2.5-flash"
    GEMINI_2_5_FLASH_LITE = "gemini-2.5-flash-lite"
    GEMINI_2_5_PRO = "gemini-2.5-pro"


DEFAULT_CHAT_MODEL = GeminiModelName.GEMINI_1_5_FLASH.value


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class FunctionCall(_WireModel):
    id: Optional[str] = None
    name: str
    args: Dict[str, Any] = Field(default_factory=dict)


class FunctionResponse(_WireModel):
    id: Optional[str] = None
    name: str
    response: Dict[str, Any] = Field(default_factory=dict)


class Part(_WireModel):
    text: Optional[str] = None
    function_call: Optional[FunctionCall] = Field(default=None, alias="functionCall")
    function_response: Optional[FunctionResponse] = Field(default=None, alias="functionResponse")
    thought: Optional[bool] = None


class Role(str, Enum):
    USER = "user"
    MODEL = "model"

    @classmethod
    def of(cls, message_type: MessageType) -> "Role":
        if message_type == MessageType.USER:
            return cls.USER
        if message_type == MessageType.ASSISTANT:
            return cls.MODEL
        raise ValueError("Only USER and ASSISTANT roles are allowed.")


class Content(_WireModel):
    role: Optional[Role] = None
    parts: List[Part] = Field(default_factory=list)

    @classmethod
    def of_text(cls, text: str, role: Optional[Role] = None) -> "Content":
        return cls(role=role, parts=[Part(text=text)])


class FunctionDeclaration(_WireModel):
    name: str
    description: Optional[str] = None
    parameters: Optional[Dict[str, Any]] = None


class Tool(_WireModel):
    function_declarations: List[FunctionDeclaration] = Field(alias="functionDeclarations")


class ThinkingConfig(_WireModel):
    thinking_budget: Optional[int] = Field(default=None, alias="thinkingBudget")


class GenerationConfig(_WireModel):
    temperature: Optional[float] = None
    max_output_tokens: Optional[int] = Field(default=None, alias="maxOutputTokens")
    top_p: Optional[float] = Field(default=None, alias="topP")
    top_k: Optional[int] = Field(default=None, alias="topK")
    stop_sequences: Optional[List[str]] = Field(default=None, alias="stopSequences")
    candidate_count: Optional[int] = Field(default=None, alias="candidateCount")
    thinking_config: Optional[ThinkingConfig] = Field(default=None, alias="thinkingConfig")

    @classmethod
    def of(cls, options: Optional[ChatOptions]) -> Optional["GenerationConfig"]:
        if options is None:
            return None
        config = cls(
            temperature=options.temperature,
            max_output_tokens=options.max_tokens,
            top_p=options.top_p,
            top_k=options.top_k,
            stop_sequences=options.stop_sequences,
        )
        if isinstance(options, GeminiChatOptions):
            config.candidate_count = options.candidate_count
            if options.thinking_budget is not None:
                config.thinking_config = ThinkingConfig(thinking_budget=options.thinking_budget)
        return config


class ChatCompletionRequest(_WireModel):
    contents: List[Content]
    system_instruction: Optional[Content] = Field(default=None, alias="systemInstruction")
    generation_config: Optional[GenerationConfig] = Field(default=None, alias="generationConfig")
    tools: Optional[List[Tool]] = None
    # Target model; part of the URL, never of the body.
    model: Optional[str] = Field(default=None, exclude=True)


class Candidate(_WireModel):
    content: Optional[Content] = None
    finish_reason: Optional[str] = Field(default=None, alias="finishReason")
    index: Optional[int] = None


class Usage(_WireModel):
    prompt_token_count: Optional[int] = Field(default=None, alias="promptTokenCount")
    cached_content_token_count: Optional[int] = Field(default=None, alias="cachedContentTokenCount")
    candidates_token_count: Optional[int] = Field(default=None, alias="candidatesTokenCount")
    tool_use_prompt_token_count: Optional[int] = Field(default=None, alias="toolUsePromptTokenCount")
    thoughts_token_count: Optional[int] = Field(default=None, alias="thoughtsTokenCount")
    total_token_count: Optional[int] = Field(default=None, alias="totalTokenCount")


class ChatCompletion(_WireModel):
    choices: List[Candidate] = Field(default_factory=list, alias="candidates")
    usage: Optional[Usage] = Field(default=None, alias="usageMetadata")
    model_version: Optional[str] = Field(default=None, alias="modelVersion")
    response_id: Optional[str] = Field(default=None, alias="responseId")


class GeminiApi:
    """
    Single-class client for Gemini chat completions.

    Args:
        api_key (str): Google AI Studio API key.
        model (str): Model used when a request does not name one.
        base_url (str): API root, without a trailing slash.
        client (httpx.AsyncClient | None): Shared client; one is created if omitted.
        error_handler (ResponseErrorHandler | None): Maps error statuses to exceptions.
    """

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_CHAT_MODEL,
        base_url: str = DEFAULT_BASE_URL,
        client: Optional[httpx.AsyncClient] = None,
        error_handler: Optional[ResponseErrorHandler] = None,
        timeout: float = 60.0,
    ):
        if not api_key:
            raise ValueError("API key must not be empty")
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.error_handler = error_handler or default_error_handler()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            headers={"Content-Type": "application/json"},
        )

    def _completion_url(self, model: Optional[str], stream: bool) -> str:
        method = "streamGenerateContent" if stream else "generateContent"
        return f"{self.base_url}/models/{model or self.model}:{method}"

    async def chat_completion(self, request: ChatCompletionRequest) -> Optional[ChatCompletion]:
        """
        Create a model response for the given conversation.

        Returns:
            ChatCompletion | None: None when the API answered with an empty body.
        """
        if request is None:
            raise ValueError("The request body can not be null.")

        url = self._completion_url(request.model, stream=False)
        payload = request.to_json()
        logger.debug(f"[GeminiApi] generateContent payload: {payload}")

        resp = await self._client.post(url, params={"key": self.api_key}, json=payload)
        logger.info(f"[GeminiApi] response status: {resp.status_code}")
        self.error_handler.check(resp)
        if not resp.content:
            return None
        return ChatCompletion.model_validate(resp.json())

    async def chat_completion_stream(self, request: ChatCompletionRequest) -> AsyncIterator[ChatCompletion]:
        """Stream completion chunks for the given conversation (server-sent events)."""
        if request is None:
            raise ValueError("The request body can not be null.")

        url = self._completion_url(request.model, stream=True)
        payload = request.to_json()
        logger.debug(f"[GeminiApi] streamGenerateContent payload: {payload}")

        async with self._client.stream(
            "POST", url, params={"alt": "sse", "key": self.api_key}, json=payload
        ) as resp:
            logger.info(f"[GeminiApi] stream response status: {resp.status_code}")
            await self.error_handler.acheck(resp)
            async for line in resp.aiter_lines():
                if not line.startswith("data:"):
                    continue
                data = line[len("data:"):].strip()
                if not data:
                    continue
                if data == SSE_DONE:
                    break
                yield ChatCompletion.model_validate_json(data)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
