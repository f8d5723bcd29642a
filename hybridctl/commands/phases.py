import typer
from pathlib import Path
from typing import Optional

from rich.table import Table

from hybridctl.commands.common import console, handle_errors, load_config, make_gate
from hybridctl.modules.pipeline import PipelineController

app = typer.Typer()


@app.callback(invoke_without_command=True)
def phases(
    ctx: typer.Context,
    root: Optional[Path] = typer.Option(None, "--root", help="Infrastructure repository root"),
):
    """List pipeline phases and whether each is already done."""
    config = load_config(ctx, root)
    with handle_errors(ctx):
        controller = PipelineController(config, make_gate(), console=console)
        status = controller.status()

        table = Table(title="Pipeline phases")
        table.add_column("#", justify="right")
        table.add_column("Phase")
        table.add_column("Description")
        table.add_column("Status")
        for i, phase in enumerate(controller.phases(), start=1):
            if phase.probe is None:
                state = "runs every time"
            else:
                state = "✅ done" if status[phase.name] else "⏳ pending"
            table.add_row(str(i), phase.name, phase.description, state)
        console.print(table)
