"""
User interaction port.

The engine never talks to the terminal directly: confirmations and
typed-name checks go through a Prompter, so deletion and merge logic
can be exercised without a TTY.
"""

from __future__ import annotations

from typing import Optional, Protocol

from rich.console import Console
from rich.prompt import Confirm, Prompt


class Prompter(Protocol):
    """Anything that can ask the user a question."""

    def confirm(self, message: str, default: bool = False) -> bool:
        """Ask a yes/no question."""
        ...

    def ask(self, message: str) -> str:
        """Ask for free text."""
        ...


class ConsolePrompter:
    """Prompter backed by rich's interactive prompts."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def confirm(self, message: str, default: bool = False) -> bool:
        return Confirm.ask(message, default=default, console=self.console)

    def ask(self, message: str) -> str:
        return Prompt.ask(message, default="", console=self.console)


def confirm_typed_name(prompter: Prompter, name: str) -> bool:
    """Require the user to type the exact item name (case-sensitive)."""
    typed = prompter.ask(f"  Type [bold]{name}[/] to confirm deletion")
    return typed.strip() == name
