import typer
import logging
from pathlib import Path
from typing import Optional
from hybridctl.commands import inventory, phases, run, secrets, serve, validate
from hybridctl.logging import setup_logging

app = typer.Typer(help="Provision and validate a hybrid K3s cluster.")

# Add all command groups
app.add_typer(run.app, name="run")
app.add_typer(phases.app, name="phases")
app.add_typer(validate.app, name="validate")
app.add_typer(secrets.app, name="secrets")
app.add_typer(inventory.app, name="inventory")
app.add_typer(serve.app, name="serve")


# Global options callback
@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    debug: bool = typer.Option(False, "--debug", "-d", help="Enable debug logging"),
    root: Optional[Path] = typer.Option(None, "--root", help="Infrastructure repository root"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to hybridctl.yaml"),
    assume_yes: bool = typer.Option(False, "--yes", "-y", help="Answer yes to every confirmation"),
):
    """hybridctl - hybrid K3s cluster provisioning."""
    setup_logging(debug)
    if debug:
        logging.debug("Debug mode enabled")
    ctx.obj = {"debug": debug, "root": root, "config_path": config_path, "assume_yes": assume_yes}

    # No subcommand runs the whole pipeline
    if ctx.invoked_subcommand is None:
        run.run_pipeline(ctx)


if __name__ == "__main__":
    app()
