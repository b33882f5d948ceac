"""Plain text UI implementation (no Rich dependency)."""

from __future__ import annotations

import shutil
import sys
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import TextIO

# ANSI color codes
COLORS = {
    "reset": "\033[0m",
    "bold": "\033[1m",
    "dim": "\033[2m",
    "red": "\033[31m",
    "green": "\033[32m",
    "yellow": "\033[33m",
}


class PlainUI:
    """Plain text UI with optional ANSI colors."""

    def __init__(
        self,
        no_color: bool = False,
        ascii_only: bool = False,
        file: TextIO | None = None,
    ):
        self.no_color = no_color
        self.ascii_only = ascii_only
        self._file = file or sys.stderr
        self._hr_char = "-" if ascii_only else "─"
        self._block_left = "|" if ascii_only else "│"
        self._width = min(shutil.get_terminal_size(fallback=(80, 24)).columns, 100)

    def _color(self, text: str, *styles: str) -> str:
        """Apply color codes if colors are enabled."""
        if self.no_color:
            return text
        prefix = "".join(COLORS.get(s, "") for s in styles)
        return f"{prefix}{text}{COLORS['reset']}" if prefix else text

    def _print(self, text: str = "") -> None:
        """Print to output file."""
        print(text, file=self._file)

    def title(self, text: str) -> None:
        """Display a large title."""
        self._hr()
        padding = max((self._width - len(text)) // 2, 0)
        self._print(self._color(" " * padding + text, "bold"))
        self._hr()

    def _hr(self) -> None:
        self._print(self._color(self._hr_char * self._width, "dim"))

    def kv(self, key: str, value: str) -> None:
        """Display a key-value pair."""
        padded_key = f"  {key}:".ljust(22)
        self._print(f"{padded_key}{value}")

    def panel(self, tag: str, title: str, content: str) -> None:
        """Display a titled panel block."""
        label = f"{tag} · {title}" if title else tag
        self._print(self._color(f"{self._hr_char * 2} {label} ", "bold"))
        for line in content.splitlines():
            self._print(f"{self._block_left} {line}")
        self._hr()

    def ok(self, text: str) -> None:
        """Display success message (green)."""
        self._print(self._color(f"OK: {text}", "green"))

    def warn(self, text: str) -> None:
        """Display warning message (yellow)."""
        self._print(self._color(f"WARN: {text}", "yellow"))

    def err(self, text: str) -> None:
        """Display error message (red)."""
        self._print(self._color(f"ERROR: {text}", "red", "bold"))
