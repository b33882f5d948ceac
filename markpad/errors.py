"""Exception types shared across Markpad."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from markpad.instance import InstanceLock


class MarkpadError(Exception):
    """Base class for Markpad errors."""


class ConfigurationError(MarkpadError, ValueError):
    """Configuration is missing or invalid; the server must not start."""


class StartupError(MarkpadError, RuntimeError):
    """Fatal startup coordination failure."""


class InstanceRunningError(StartupError):
    """Another live process owns the instance lock."""

    def __init__(self, lock: InstanceLock) -> None:
        super().__init__(
            f"Another instance is already running (PID: {lock.pid}, Port: {lock.port})"
        )
        self.lock = lock


class PortExhaustedError(StartupError):
    """No free port was found in the probed range."""

    def __init__(self, preferred_port: int, max_attempts: int) -> None:
        last_port = preferred_port + max_attempts - 1
        super().__init__(
            f"Could not find an available port after trying {max_attempts} ports "
            f"({preferred_port}-{last_port})"
        )
        self.preferred_port = preferred_port
        self.max_attempts = max_attempts


class CorruptLockError(MarkpadError, ValueError):
    """The lock file exists but cannot be parsed."""
