# chatbridge/model/__init__.py

"""
Portable data model: messages, prompts, options and responses.

These are plain transport records that map onto each provider's JSON fields.
"""

from chatbridge.model.messages import (
    AssistantMessage,
    Message,
    MessageType,
    SystemMessage,
    ToolCall,
    ToolResponse,
    ToolResponseMessage,
    UserMessage,
)
from chatbridge.model.options import (
    ChatOptions,
    DeepSeekChatOptions,
    GeminiChatOptions,
    OllamaOptions,
    OpenAiChatOptions,
    merge,
)
from chatbridge.model.prompt import Prompt
from chatbridge.model.response import (
    ChatGenerationMetadata,
    ChatResponse,
    ChatResponseMetadata,
    DefaultUsage,
    Embedding,
    EmbeddingResponse,
    EmptyUsage,
    Generation,
    Usage,
)

__all__ = [
    "AssistantMessage",
    "ChatGenerationMetadata",
    "ChatOptions",
    "ChatResponse",
    "ChatResponseMetadata",
    "DeepSeekChatOptions",
    "DefaultUsage",
    "Embedding",
    "EmbeddingResponse",
    "EmptyUsage",
    "GeminiChatOptions",
    "Generation",
    "Message",
    "MessageType",
    "OllamaOptions",
    "OpenAiChatOptions",
    "Prompt",
    "SystemMessage",
    "ToolCall",
    "ToolResponse",
    "ToolResponseMessage",
    "Usage",
    "UserMessage",
    "merge",
]
