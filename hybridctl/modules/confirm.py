"""Operator confirmation gate."""
import logging
from typing import Callable, Optional

import click
import typer

from hybridctl.errors import AwaitingInput

logger = logging.getLogger("hybridctl.confirm")

YES_ANSWERS = ("y", "yes")


def _typer_input(prompt: str) -> str:
    return typer.prompt(prompt, default="", show_default=False)


class ConfirmationGate:
    """Blocks on operator input before sensitive steps.

    Args:
        assume_yes: Answer every confirmation with yes and skip pauses
        input_func: Reads one line of operator input; defaults to typer.prompt
    """

    def __init__(self, assume_yes: bool = False, input_func: Optional[Callable[[str], str]] = None):
        self.assume_yes = assume_yes
        self.input_func = input_func or _typer_input

    def _read(self, prompt: str) -> str:
        try:
            return self.input_func(prompt)
        except (EOFError, click.exceptions.Abort):
            raise AwaitingInput(prompt)

    def confirm(self, prompt: str) -> bool:
        """Ask a yes/no question; only y/yes (any case) counts as yes."""
        if self.assume_yes:
            logger.info(f"{prompt} (y/n): y [--yes]")
            return True
        answer = self._read(f"{prompt} (y/n)")
        return answer.strip().lower() in YES_ANSWERS

    def acknowledge(self, message: str) -> None:
        """Pause until the operator presses Enter."""
        if self.assume_yes:
            logger.warning(f"Not pausing for: {message} [--yes]")
            return
        self._read(message)
