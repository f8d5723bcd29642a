import typer
from pathlib import Path
from typing import Optional

from rich.markup import escape
from rich.table import Table

from hybridctl.commands.common import console, handle_errors, load_config
from hybridctl.modules.inventory import HostRegistry

app = typer.Typer()


@app.command("show")
def show(
    ctx: typer.Context,
    group: Optional[str] = typer.Argument(None, help="Only show this group"),
    root: Optional[Path] = typer.Option(None, "--root", help="Infrastructure repository root"),
):
    """Show hosts as the pipeline resolves them."""
    config = load_config(ctx, root)
    registry = HostRegistry(config.path(config.inventory_file))

    with handle_errors(ctx):
        hosts = registry.resolve(group) if group else registry.all_hosts()

    table = Table(title=f"Hosts in {registry.path}")
    table.add_column("Group")
    table.add_column("Name")
    table.add_column("Address")
    table.add_column("User")
    table.add_column("Attributes", overflow="fold")
    for host in hosts:
        attrs = " ".join(f"{k}={v}" for k, v in host.attributes.items())
        table.add_row(host.group, host.name, host.address, host.user, escape(attrs))
    console.print(table)
