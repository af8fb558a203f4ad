# chatbridge/logging_config.py

"""
Configures structured JSON logging for ChatBridge.

One JSON object per log line on stdout, so the router service can run in a
container and ship logs as-is. Adapter loggers live under `chatbridge.*`; the
request middleware logs under `chatbridge.router`.

Uses the `python-json-logger` package to serialize records.
"""

import logging
import sys
from typing import Optional

from pythonjsonlogger.json import JsonFormatter


def configure_logging(level: str = "INFO", quiet_loggers: Optional[list[str]] = None) -> None:
    """
    Replace any existing root handlers with a single JSON handler on stdout.

    Args:
        level (str): Log level name (e.g., "DEBUG", "INFO", "ERROR").
        quiet_loggers (list[str] | None): Noisy third-party loggers to cap at WARNING.
    """
    handler = logging.StreamHandler(sys.stdout)

    fmt = "%(asctime)s %(levelname)s %(name)s %(message)s"
    handler.setFormatter(JsonFormatter(fmt))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level.upper())

    # httpx logs every request line at INFO
    for name in quiet_loggers if quiet_loggers is not None else ["httpx", "httpcore"]:
        logging.getLogger(name).setLevel(logging.WARNING)
