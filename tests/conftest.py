"""Pytest fixtures for markpad tests."""

from __future__ import annotations

import logging
from collections.abc import Generator
from pathlib import Path

import pytest

from markpad.admission import AccessPolicy


@pytest.fixture
def docs_dir(tmp_path: Path) -> Path:
    """Create an allowed directory holding a 50-byte note."""
    docs = tmp_path / "docs"
    docs.mkdir()
    (docs / "note.md").write_text("x" * 49 + "\n")
    return docs


@pytest.fixture
def policy(docs_dir: Path) -> AccessPolicy:
    """Policy allowing markdown under docs_dir with a 1000-byte limit."""
    return AccessPolicy.build([str(docs_dir)], 1000, {"md"})


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Clear Markpad-related environment variables."""
    env_vars = [
        "ALLOWED_DIRECTORIES",
        "MAX_FILE_SIZE",
        "PORT",
        "HOST",
        "PORT_ATTEMPTS",
        "MARKPAD_ENV",
        "ENABLE_CORS",
        "RATE_LIMIT_MAX_REQUESTS",
        "RATE_LIMIT_WINDOW",
        "SHUTDOWN_GRACE_SECONDS",
        "STATIC_DIR",
        "MARKPAD_UI",
        "NO_COLOR",
    ]
    for var in env_vars:
        monkeypatch.delenv(var, raising=False)


@pytest.fixture(autouse=True)
def reset_markpad_logging() -> Generator[None, None, None]:
    """Undo handler changes made by configure_logging."""
    yield
    for name in ("markpad", "uvicorn"):
        logger = logging.getLogger(name)
        logger.handlers = []
        logger.propagate = True
        logger.setLevel(logging.NOTSET)
