# chatbridge/exceptions.py

"""
Exception types for ChatBridge.

Every error raised by the framework derives from `AdapterError`, which carries
an HTTP status code so the router service can turn it into a JSON response
without a per-type mapping table.

The upstream errors are split the way the retry template needs them:
- `TransientAiError`     worth retrying (5xx, throttling, dropped connections)
- `NonTransientAiError`  retrying cannot help (bad request, auth failures)

Tool-calling failures have their own types so callers can tell a broken tool
apart from a broken provider. `InvalidPromptError` marks a prompt the provider
cannot accept (a 400); it is also a `ValueError`.
"""

from typing import Optional


class AdapterError(Exception):
    """
    Base exception for adapter-specific errors.

    Args:
        detail (str): Human-readable description of the error.
        status_code (int): HTTP status code to be returned to the client.

    Example:
        raise AdapterError("Provider not available", status_code=503)
    """
    def __init__(self, detail: str, status_code: int = 500):
        self.detail = detail
        self.status_code = status_code
        super().__init__(detail)


class TransientAiError(AdapterError):
    """Upstream failure that may succeed when retried."""

    def __init__(self, detail: str, upstream_status: Optional[int] = None):
        self.upstream_status = upstream_status
        super().__init__(detail, status_code=502)


class NonTransientAiError(AdapterError):
    """Upstream failure that will fail again if retried."""

    def __init__(self, detail: str, upstream_status: Optional[int] = None):
        self.upstream_status = upstream_status
        super().__init__(detail, status_code=502)


class ToolExecutionError(AdapterError):
    """
    Raised when a tool callback fails or the tool loop does not converge.

    `tool_name` is None for loop-level failures.
    """
    def __init__(self, detail: str, tool_name: Optional[str] = None):
        self.tool_name = tool_name
        super().__init__(detail, status_code=500)


class ToolNotFoundError(AdapterError):
    """The model (or a request) referenced a tool nobody registered."""

    def __init__(self, tool_name: str):
        self.tool_name = tool_name
        super().__init__(f"No tool callback found for tool name: {tool_name}", status_code=400)


class InvalidPromptError(AdapterError, ValueError):
    """The prompt breaks a rule of the target provider (e.g. two system messages)."""

    def __init__(self, detail: str):
        super().__init__(detail, status_code=400)
