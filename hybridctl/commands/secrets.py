import typer
from pathlib import Path
from typing import Optional

from rich.table import Table

from hybridctl.commands.common import console, handle_errors, load_config, make_gate
from hybridctl.modules.secrets import (
    AGE_KEYPAIR,
    VAULT_VARIABLES,
    ArtifactStatus,
    SecretBootstrap,
    has_age_private_key,
    is_vault_encrypted,
)

app = typer.Typer()


@app.command("bootstrap")
def bootstrap(
    ctx: typer.Context,
    assume_yes: bool = typer.Option(False, "--yes", "-y", help="Do not pause for template edits"),
    root: Optional[Path] = typer.Option(None, "--root", help="Infrastructure repository root"),
):
    """Create any missing vault, inventory and age key files from their templates."""
    config = load_config(ctx, root)
    with handle_errors(ctx):
        results = SecretBootstrap(config, make_gate(assume_yes, ctx)).run()
    for result in results:
        marker = {
            ArtifactStatus.CREATED: "✅ created",
            ArtifactStatus.ENCRYPTED: "🔒 encrypted",
        }.get(result.status, "✔️  already present")
        console.print(f"{marker}: {result.name} ({result.path})")


@app.command("status")
def status(
    ctx: typer.Context,
    root: Optional[Path] = typer.Option(None, "--root", help="Infrastructure repository root"),
):
    """Show which secret artifacts exist."""
    config = load_config(ctx, root)
    bootstrap = SecretBootstrap(config, make_gate())

    table = Table(title="Secret artifacts")
    table.add_column("Artifact")
    table.add_column("Path")
    table.add_column("Status")
    for name, path in bootstrap.paths().items():
        if not path.exists():
            state = "❌ missing"
        elif name == VAULT_VARIABLES and not is_vault_encrypted(path):
            state = "⚠️  not encrypted"
        elif name == AGE_KEYPAIR and not has_age_private_key(path):
            state = "⚠️  no private key"
        else:
            state = "✅ present"
        table.add_row(name, str(path), state)
    console.print(table)

    if not bootstrap.is_complete():
        console.print("→ Run: hybridctl secrets bootstrap")
        raise typer.Exit(code=1)
