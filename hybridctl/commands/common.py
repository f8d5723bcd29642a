"""Helpers shared by the command groups."""
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import typer
from rich.console import Console
from rich.markup import escape

from hybridctl.config import PipelineConfig
from hybridctl.errors import AwaitingInput, HybridctlError
from hybridctl.modules.confirm import ConfirmationGate
from hybridctl.modules.pipeline import EXIT_AWAITING_INPUT, EXIT_FAILURE

logger = logging.getLogger("hybridctl.cli")

console = Console()


def load_config(ctx: typer.Context, root: Optional[Path] = None) -> PipelineConfig:
    """Configuration for this invocation; a command's --root wins over the global one."""
    obj = ctx.obj or {}
    root = root or obj.get("root")
    try:
        return PipelineConfig.load(obj.get("config_path"), root=root)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]❌ Invalid configuration: {escape(str(e))}[/red]")
        raise typer.Exit(code=EXIT_FAILURE)


def make_gate(assume_yes: bool = False, ctx: Optional[typer.Context] = None) -> ConfirmationGate:
    """Gate for this invocation; the global --yes applies to every subcommand."""
    if ctx is not None:
        assume_yes = assume_yes or bool((ctx.obj or {}).get("assume_yes"))
    return ConfirmationGate(assume_yes=assume_yes)


@contextmanager
def handle_errors(ctx: typer.Context) -> Iterator[None]:
    """Turn hybridctl errors into operator-facing output and an exit code."""
    try:
        yield
    except AwaitingInput as e:
        console.print(f"[yellow]⏸️  {escape(str(e))}[/yellow]")
        if e.remediation:
            console.print(f"→ {escape(e.remediation)}")
        raise typer.Exit(code=EXIT_AWAITING_INPUT)
    except HybridctlError as e:
        if (ctx.obj or {}).get("debug"):
            logger.exception("Command failed")
        console.print(f"[red]❌ {escape(str(e))}[/red]")
        if e.remediation:
            console.print(f"→ {escape(e.remediation)}")
        raise typer.Exit(code=EXIT_FAILURE)
