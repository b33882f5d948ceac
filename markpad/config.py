"""Configuration handling for Markpad."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

from markpad.admission import DEFAULT_ALLOWED_EXTENSIONS, AccessPolicy
from markpad.errors import ConfigurationError

DEFAULT_MAX_FILE_SIZE = 5 * 1024 * 1024
LOCK_FILE_NAME = ".markpad.lock"


def _parse_bool(value: str | None) -> bool:
    """Parse boolean from environment variable."""
    if value is None:
        return False
    return bool(re.match(r"^(1|true|yes)$", value.lower()))


def _parse_paths(value: str | None) -> list[str]:
    """Parse comma-separated paths, trimming whitespace."""
    if not value:
        return []
    return [p.strip() for p in value.split(",") if p.strip()]


def _parse_int(name: str, value: str | None, default: int) -> int:
    if value is None or value.strip() == "":
        return default
    try:
        return int(value.strip(), 10)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer (got: {value!r})") from exc


def _parse_float(name: str, value: str | None, default: float) -> float:
    if value is None or value.strip() == "":
        return default
    try:
        return float(value.strip())
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be a number (got: {value!r})") from exc


def _parse_mode(value: str | None, default: str, allowed: set[str]) -> str:
    """Parse a mode value with allowed options."""
    if value is None:
        return default
    lowered = value.lower().strip()
    if lowered in allowed:
        return lowered
    return default


@dataclass
class MarkpadConfig:
    """Configuration for the Markpad server."""

    allowed_directories: list[str] = field(default_factory=list)
    max_file_size: int = DEFAULT_MAX_FILE_SIZE
    allowed_extensions: frozenset[str] = DEFAULT_ALLOWED_EXTENSIONS

    host: str = "127.0.0.1"
    port: int = 3000
    port_attempts: int = 10
    environment: str = "development"
    enable_cors: bool = False
    shutdown_grace_seconds: float = 30.0
    static_dir: Path = field(default_factory=lambda: Path("public"))
    lock_file: Path = field(default_factory=lambda: Path.cwd() / LOCK_FILE_NAME)

    # Rate limiting
    rate_limit_max_requests: int = 100
    rate_limit_window: float = 60.0

    # UI config
    ui_mode: str = "auto"  # auto|rich|plain
    no_color: bool = False

    @classmethod
    def from_env(cls, root_dir: Path | None = None, *, dotenv: bool = True) -> MarkpadConfig:
        """Load configuration from environment variables (and ``.env``)."""
        if root_dir is None:
            root_dir = Path.cwd()
        if dotenv:
            load_dotenv(root_dir / ".env")

        static_dir = Path(os.environ.get("STATIC_DIR", "public"))
        if not static_dir.is_absolute():
            static_dir = root_dir / static_dir

        return cls(
            allowed_directories=_parse_paths(os.environ.get("ALLOWED_DIRECTORIES")),
            max_file_size=_parse_int(
                "MAX_FILE_SIZE", os.environ.get("MAX_FILE_SIZE"), DEFAULT_MAX_FILE_SIZE
            ),
            host=os.environ.get("HOST", "127.0.0.1"),
            port=_parse_int("PORT", os.environ.get("PORT"), 3000),
            port_attempts=_parse_int("PORT_ATTEMPTS", os.environ.get("PORT_ATTEMPTS"), 10),
            environment=os.environ.get("MARKPAD_ENV", "development"),
            enable_cors=_parse_bool(os.environ.get("ENABLE_CORS")),
            shutdown_grace_seconds=_parse_float(
                "SHUTDOWN_GRACE_SECONDS", os.environ.get("SHUTDOWN_GRACE_SECONDS"), 30.0
            ),
            static_dir=static_dir,
            lock_file=root_dir / LOCK_FILE_NAME,
            rate_limit_max_requests=_parse_int(
                "RATE_LIMIT_MAX_REQUESTS", os.environ.get("RATE_LIMIT_MAX_REQUESTS"), 100
            ),
            rate_limit_window=_parse_float(
                "RATE_LIMIT_WINDOW", os.environ.get("RATE_LIMIT_WINDOW"), 60.0
            ),
            ui_mode=_parse_mode(os.environ.get("MARKPAD_UI"), "auto", {"auto", "rich", "plain"}),
            no_color="NO_COLOR" in os.environ,
        )

    def validate(self) -> list[str]:
        """Validate configuration, returning list of errors."""
        errors: list[str] = []

        if not self.allowed_directories:
            errors.append("No allowed directories configured (set ALLOWED_DIRECTORIES)")

        if self.max_file_size <= 0:
            errors.append(f"MAX_FILE_SIZE must be positive (got: {self.max_file_size})")

        if not 0 < self.port < 65536:
            errors.append(f"PORT must be between 1 and 65535 (got: {self.port})")

        if self.port_attempts < 1:
            errors.append(f"PORT_ATTEMPTS must be at least 1 (got: {self.port_attempts})")

        if self.rate_limit_max_requests < 1:
            errors.append(
                f"RATE_LIMIT_MAX_REQUESTS must be at least 1 (got: {self.rate_limit_max_requests})"
            )

        return errors

    def build_policy(self) -> AccessPolicy:
        """Build the process-wide access policy; fails when no directory is set."""
        if not self.allowed_directories:
            raise ConfigurationError("No allowed directories configured")
        try:
            return AccessPolicy.build(
                self.allowed_directories,
                self.max_file_size,
                self.allowed_extensions,
            )
        except ValueError as exc:
            raise ConfigurationError(str(exc)) from exc
