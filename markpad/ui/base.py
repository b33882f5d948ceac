"""Base UI protocol for Markpad operator output."""

from __future__ import annotations

from typing import Protocol


class UI(Protocol):
    """Protocol for Markpad console renderers."""

    def title(self, text: str) -> None:
        """Display a large title."""
        ...

    def kv(self, key: str, value: str) -> None:
        """Display a key-value pair."""
        ...

    def panel(self, tag: str, title: str, content: str) -> None:
        """Display a titled panel block."""
        ...

    def ok(self, text: str) -> None:
        """Display success message (green)."""
        ...

    def warn(self, text: str) -> None:
        """Display warning message (yellow)."""
        ...

    def err(self, text: str) -> None:
        """Display error message (red)."""
        ...
