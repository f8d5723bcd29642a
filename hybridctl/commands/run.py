import typer
from pathlib import Path
from typing import List, Optional

from hybridctl.commands.common import console, handle_errors, load_config, make_gate
from hybridctl.modules.pipeline import PipelineController

app = typer.Typer()


def run_pipeline(
    ctx: typer.Context,
    start_at: Optional[str] = None,
    only: Optional[List[str]] = None,
    force: Optional[List[str]] = None,
    assume_yes: bool = False,
    root: Optional[Path] = None,
) -> None:
    config = load_config(ctx, root)
    console.print(f"🚀 Hybrid cluster deployment from {config.root.resolve()}")
    with handle_errors(ctx):
        controller = PipelineController(config, make_gate(assume_yes, ctx), console=console)
        code = controller.execute(start_at=start_at, only=only or None, force=force or ())
    raise typer.Exit(code=code)


@app.callback(invoke_without_command=True)
def run(
    ctx: typer.Context,
    start_at: Optional[str] = typer.Option(None, "--from", help="Resume at this phase"),
    only: Optional[List[str]] = typer.Option(None, "--only", help="Run only this phase (repeatable)"),
    force: Optional[List[str]] = typer.Option(None, "--force", help="Run this phase even if already done (repeatable)"),
    assume_yes: bool = typer.Option(False, "--yes", "-y", help="Answer yes to every confirmation"),
    root: Optional[Path] = typer.Option(None, "--root", help="Infrastructure repository root"),
):
    """Run the provisioning pipeline."""
    run_pipeline(ctx, start_at, only, force, assume_yes, root)
