"""Path admission control for editor file operations.

Every read or save request passes through two gates before the disk is
touched:

- ``validate_path_input`` rejects malformed path strings (wrong type,
  empty or overlong, embedded control characters).
- ``evaluate`` decides whether a well-formed path may be opened under the
  process-wide ``AccessPolicy``.

Check order inside ``evaluate``:

1. Lexical normalization to an absolute path (no symlink resolution).
2. Containment in one of the allowed directories, on a path-segment boundary.
3. Existence, and the target must be a regular file.
4. Extension membership in the allowed set.
5. Size limit (read intent only).

Containment is decided before any filesystem probe so that answers about
existence, extension or size are never produced for paths outside the
sandbox.
"""

from __future__ import annotations

import os
import stat
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable

MAX_PATH_INPUT_LENGTH = 500
DEFAULT_ALLOWED_EXTENSIONS: frozenset[str] = frozenset({"md", "markdown", "txt"})

_FORBIDDEN_PATH_CHARS = ("\0", "\n", "\r")
_BOM = "\ufeff"


class Intent(str, Enum):
    """Operation the caller is about to perform."""

    READ = "read"
    WRITE = "write"


class DenyReason(str, Enum):
    """Why admission was refused."""

    INVALID_INPUT = "invalid_input"
    NOT_FOUND = "not_found"
    NOT_A_FILE = "not_a_file"
    OUTSIDE_ALLOWED_DIRECTORIES = "outside_allowed_directories"
    EXTENSION_NOT_ALLOWED = "extension_not_allowed"
    FILE_TOO_LARGE = "file_too_large"
    VALIDATION_ERROR = "validation_error"

    @property
    def message(self) -> str:
        return _REASON_MESSAGES[self]


_REASON_MESSAGES = {
    DenyReason.INVALID_INPUT: "Invalid file path format",
    DenyReason.NOT_FOUND: "File does not exist",
    DenyReason.NOT_A_FILE: "Path is not a file",
    DenyReason.OUTSIDE_ALLOWED_DIRECTORIES: "File is outside allowed directories",
    DenyReason.EXTENSION_NOT_ALLOWED: "File extension is not allowed",
    DenyReason.FILE_TOO_LARGE: "File size exceeds maximum allowed size",
    DenyReason.VALIDATION_ERROR: "Path validation error",
}


@dataclass(frozen=True)
class AccessPolicy:
    """Static allow-list every file operation is checked against."""

    allowed_directories: tuple[str, ...]
    max_file_size: int
    allowed_extensions: frozenset[str] = DEFAULT_ALLOWED_EXTENSIONS

    def __post_init__(self) -> None:
        directories = tuple(normalize_path(d) for d in self.allowed_directories)
        if not directories:
            raise ValueError("AccessPolicy requires at least one allowed directory")
        if self.max_file_size <= 0:
            raise ValueError(f"max_file_size must be positive (got: {self.max_file_size})")
        extensions = frozenset(ext.lower().lstrip(".") for ext in self.allowed_extensions)
        object.__setattr__(self, "allowed_directories", directories)
        object.__setattr__(self, "allowed_extensions", extensions)

    @classmethod
    def build(
        cls,
        directories: Iterable[str],
        max_file_size: int,
        extensions: Iterable[str] | None = None,
    ) -> AccessPolicy:
        """Build a policy from raw configuration values."""
        return cls(
            allowed_directories=tuple(directories),
            max_file_size=max_file_size,
            allowed_extensions=frozenset(
                DEFAULT_ALLOWED_EXTENSIONS if extensions is None else extensions
            ),
        )

    def contains(self, normalized: str) -> bool:
        """Return True if a normalized path lies inside an allowed directory."""
        return any(_is_within(normalized, directory) for directory in self.allowed_directories)


@dataclass(frozen=True)
class AdmissionDecision:
    """Verdict for a single candidate path.

    ``cause`` holds the underlying exception text for internal logging and
    must never be returned to HTTP clients.
    """

    allowed: bool
    reason: DenyReason | None = None
    path: str | None = None
    cause: str | None = field(default=None, compare=False)

    @classmethod
    def allow(cls, path: str | None = None) -> AdmissionDecision:
        return cls(allowed=True, path=path)

    @classmethod
    def deny(
        cls, reason: DenyReason, path: str | None = None, cause: str | None = None
    ) -> AdmissionDecision:
        return cls(allowed=False, reason=reason, path=path, cause=cause)

    @property
    def message(self) -> str:
        if self.reason is None:
            return "Allowed"
        return self.reason.message

    def __bool__(self) -> bool:
        return self.allowed


def normalize_path(raw_path: str) -> str:
    """Resolve to an absolute path with ``.`` and ``..`` collapsed lexically."""
    return os.path.normpath(os.path.abspath(raw_path))


def _is_within(candidate: str, directory: str) -> bool:
    if candidate == directory:
        return True
    prefix = directory if directory.endswith(os.sep) else directory + os.sep
    return candidate.startswith(prefix)


def _extension_of(path: str) -> str:
    _, ext = os.path.splitext(os.path.basename(path))
    return ext[1:].lower()


def _describe(exc: Exception) -> str:
    # OSError's str() embeds the filename; keep only the error kind.
    if isinstance(exc, OSError) and exc.strerror:
        return f"{type(exc).__name__}: {exc.strerror}"
    return type(exc).__name__


def evaluate(
    raw_path: str, policy: AccessPolicy, intent: Intent = Intent.READ
) -> AdmissionDecision:
    """Decide whether ``raw_path`` may be opened under ``policy``.

    Never raises; metadata failures become ``VALIDATION_ERROR`` decisions.
    """
    try:
        normalized = normalize_path(raw_path)
    except (TypeError, ValueError) as exc:
        return AdmissionDecision.deny(DenyReason.VALIDATION_ERROR, cause=_describe(exc))

    if not policy.contains(normalized):
        return AdmissionDecision.deny(DenyReason.OUTSIDE_ALLOWED_DIRECTORIES, normalized)

    try:
        info = os.stat(normalized)
    except (FileNotFoundError, NotADirectoryError):
        return AdmissionDecision.deny(DenyReason.NOT_FOUND, normalized)
    except (OSError, ValueError) as exc:
        return AdmissionDecision.deny(
            DenyReason.VALIDATION_ERROR, normalized, cause=_describe(exc)
        )

    if not stat.S_ISREG(info.st_mode):
        return AdmissionDecision.deny(DenyReason.NOT_A_FILE, normalized)

    extension = _extension_of(normalized)
    if not extension or extension not in policy.allowed_extensions:
        return AdmissionDecision.deny(DenyReason.EXTENSION_NOT_ALLOWED, normalized)

    if intent is Intent.READ and info.st_size > policy.max_file_size:
        return AdmissionDecision.deny(DenyReason.FILE_TOO_LARGE, normalized)

    return AdmissionDecision.allow(normalized)


def validate_path_input(value: Any) -> str | None:
    """Return the trimmed path string, or None if its shape is malformed."""
    if not isinstance(value, str):
        return None

    trimmed = value.strip()
    if not trimmed or len(trimmed) > MAX_PATH_INPUT_LENGTH:
        return None

    if any(char in trimmed for char in _FORBIDDEN_PATH_CHARS):
        return None

    return trimmed


def sanitize_content(content: Any) -> str:
    """Strip a leading byte-order mark and every NUL character."""
    if not isinstance(content, str):
        return ""
    if content.startswith(_BOM):
        content = content[len(_BOM):]
    return content.replace("\0", "")


def validate_content_size(content: str, max_size: int) -> AdmissionDecision:
    """Check the UTF-8 byte length of content about to be written."""
    size = len(content.encode("utf-8"))
    if size > max_size:
        return AdmissionDecision.deny(
            DenyReason.FILE_TOO_LARGE,
            cause=f"Content exceeds maximum size ({max_size} bytes)",
        )
    return AdmissionDecision.allow()
