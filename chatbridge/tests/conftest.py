import os

# Settings are read once at import time; set the secrets before anything imports them.
os.environ.setdefault("CHATBRIDGE_API_KEY", "testkey")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret")
os.environ.setdefault("OPENAI_API_KEY", "sk-test")
os.environ.setdefault("DEEPSEEK_API_KEY", "ds-test")
os.environ.setdefault("GEMINI_API_KEY", "gm-test")
os.environ.setdefault("OLLAMA_URL", "http://ollama.test:11434")
os.environ.setdefault("RETRY__MAX_ATTEMPTS", "3")
os.environ.setdefault("RETRY__INITIAL_INTERVAL", "0")

import pytest  # noqa: E402

from chatbridge.retry import RetryTemplate  # noqa: E402
from chatbridge.tools.manager import ToolCallingManager  # noqa: E402
from chatbridge.tools.registry import ToolRegistry  # noqa: E402


@pytest.fixture
def retry_template():
    """Three attempts, no waiting."""
    return RetryTemplate(max_attempts=3, initial_interval=0)


@pytest.fixture
def registry():
    return ToolRegistry()


@pytest.fixture
def model_kwargs(retry_template, registry):
    return {
        "retry_template": retry_template,
        "tool_calling_manager": ToolCallingManager(registry),
    }
