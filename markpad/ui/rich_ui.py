"""Rich-based terminal UI implementation."""

from __future__ import annotations

import sys
from typing import TYPE_CHECKING

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.rule import Rule
from rich.text import Text

if TYPE_CHECKING:
    from typing import TextIO

PANEL_STYLES = {
    "LOCK": "red",
}


class RichUI:
    """Rich-based terminal UI."""

    def __init__(
        self,
        no_color: bool = False,
        ascii_only: bool = False,
        file: TextIO | None = None,
    ):
        self.no_color = no_color
        self.ascii_only = ascii_only
        self._file = file or sys.stderr
        self.console = Console(file=self._file, no_color=no_color, highlight=False)

    def title(self, text: str) -> None:
        """Display a large title."""
        self.console.print(Rule(Text(text, style="bold cyan"), style="dim"))

    def kv(self, key: str, value: str) -> None:
        """Display a key-value pair."""
        line = Text()
        line.append(f"  {key}:".ljust(22), style="bold")
        line.append(value)
        self.console.print(line)

    def panel(self, tag: str, title: str, content: str) -> None:
        """Display a titled panel block."""
        label = f"{tag} · {title}" if title else tag
        self.console.print(
            Panel(
                Text(content),
                title=label,
                title_align="left",
                border_style=PANEL_STYLES.get(tag, "white"),
                box=box.ASCII if self.ascii_only else box.ROUNDED,
            )
        )

    def ok(self, text: str) -> None:
        """Display success message (green)."""
        marker = "OK:" if self.ascii_only else "✓"
        self.console.print(Text(f"{marker} {text}", style="green"))

    def warn(self, text: str) -> None:
        """Display warning message (yellow)."""
        self.console.print(Text(f"WARN: {text}", style="yellow"))

    def err(self, text: str) -> None:
        """Display error message (red)."""
        self.console.print(Text(f"ERROR: {text}", style="bold red"))
