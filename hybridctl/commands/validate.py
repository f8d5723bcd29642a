import json
import logging
import typer
from pathlib import Path
from typing import Optional

from hybridctl.commands.common import console, handle_errors, load_config
from hybridctl.modules.checks import run_battery

app = typer.Typer()


def _run(ctx: typer.Context, battery: str, as_json: bool, root: Optional[Path]) -> None:
    config = load_config(ctx, root)
    if as_json:
        # Keep stdout machine-readable
        logging.getLogger("hybridctl").setLevel(logging.WARNING)
    else:
        console.print(f"🔍 Running {battery} validation...")
    with handle_errors(ctx):
        report = run_battery(battery, config)
    if as_json:
        typer.echo(json.dumps(report.to_dict(), indent=2))
    else:
        report.render(console)
    raise typer.Exit(code=report.exit_code)


@app.command("prereqs")
def validate_prereqs(
    ctx: typer.Context,
    as_json: bool = typer.Option(False, "--json", help="Print the report as JSON"),
    root: Optional[Path] = typer.Option(None, "--root", help="Infrastructure repository root"),
):
    """Check tools, credentials and connectivity before deploying."""
    _run(ctx, "prereqs", as_json, root)


@app.command("deployment")
def validate_deployment(
    ctx: typer.Context,
    as_json: bool = typer.Option(False, "--json", help="Print the report as JSON"),
    root: Optional[Path] = typer.Option(None, "--root", help="Infrastructure repository root"),
):
    """Check node readiness, API health, DNS and system pods."""
    _run(ctx, "deployment", as_json, root)


@app.command("tunnel")
def validate_tunnel(
    ctx: typer.Context,
    as_json: bool = typer.Option(False, "--json", help="Print the report as JSON"),
    root: Optional[Path] = typer.Option(None, "--root", help="Infrastructure repository root"),
):
    """Check the cloudflared deployment, its credentials and DNS routes."""
    _run(ctx, "tunnel", as_json, root)
