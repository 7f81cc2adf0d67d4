"""Interactive prompts — every suspension point of a wizard goes through here."""

from __future__ import annotations

from typing import Callable, Optional, Sequence

from rich.console import Console
from rich.prompt import Confirm, IntPrompt, Prompt


class Prompter:
    """Terminal prompts backed by rich; invalid answers are asked again."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def confirm(self, question: str, default: bool = False) -> bool:
        return Confirm.ask(
            f"[yellow]{question}[/]", default=default, console=self.console
        )

    def ask(self, question: str, default: str = "") -> str:
        answer = Prompt.ask(
            question, default=default, show_default=bool(default),
            console=self.console,
        )
        return (answer or "").strip()

    def ask_int(
        self, question: str, minimum: int, maximum: int
    ) -> int:
        while True:
            value = IntPrompt.ask(question, console=self.console)
            if minimum <= value <= maximum:
                return value
            self.console.print(
                f"[red]Invalid input, enter a number between {minimum} and {maximum}.[/]"
            )

    def choose(
        self,
        question: str,
        choices: Sequence[str],
        allow_empty: bool = False,
    ) -> Optional[int]:
        """Numbered menu; returns a 0-based index, or None on empty input."""
        self.console.print(f"[cyan]{question}[/]")
        for i, choice in enumerate(choices, 1):
            self.console.print(f"  [cyan]{i}.[/] {choice}")
        while True:
            answer = Prompt.ask(
                f"Select 1-{len(choices)}", default="", show_default=False,
                console=self.console,
            ).strip()
            if not answer and allow_empty:
                return None
            if answer.isdigit() and 1 <= int(answer) <= len(choices):
                return int(answer) - 1
            self.console.print(
                f"[red]Invalid choice, enter a number from 1 to {len(choices)}.[/]"
            )

    def ask_valid(
        self,
        question: str,
        validate: Callable[[str], bool],
        error: str,
        default: str = "",
    ) -> str:
        while True:
            answer = self.ask(question, default=default)
            if validate(answer):
                return answer
            self.console.print(f"[red]{error}[/]")
