"""Logging setup and redacted security-event logging."""

from __future__ import annotations

import logging
from typing import Any

from rich.console import Console
from rich.logging import RichHandler

SECURITY_LOGGER = "markpad.security"
REDACTED = "[REDACTED]"

_REDACTED_KEYS = ("filePath", "content")
_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

security_logger = logging.getLogger(SECURITY_LOGGER)


def configure_logging(*, level: int = logging.INFO, rich_output: bool = True) -> None:
    """Route ``markpad`` and ``uvicorn`` loggers to stderr."""
    if rich_output:
        handler: logging.Handler = RichHandler(
            console=Console(stderr=True),
            show_path=False,
            rich_tracebacks=True,
        )
        handler.setFormatter(logging.Formatter("%(message)s"))
    else:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_LOG_FORMAT))

    for name in ("markpad", "uvicorn", "uvicorn.error", "uvicorn.access"):
        logger = logging.getLogger(name)
        logger.handlers = [handler] if name in ("markpad", "uvicorn") else []
        logger.setLevel(level)
        logger.propagate = name not in ("markpad", "uvicorn")


def redact(details: dict[str, Any] | None = None) -> dict[str, Any]:
    """Copy ``details`` with path and content fields replaced."""
    safe = dict(details or {})
    for key in _REDACTED_KEYS:
        safe[key] = REDACTED
    return safe


def log_security_event(event: str, **details: Any) -> None:
    """Log a security-relevant event without exposing paths or content."""
    security_logger.warning("[SECURITY] %s %s", event, redact(details))
