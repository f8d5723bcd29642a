import typer
import uvicorn

app = typer.Typer()


@app.callback(invoke_without_command=True)
def serve(
    host: str = typer.Option("127.0.0.1", help="Bind address"),
    port: int = typer.Option(8000, help="Bind port"),
):
    """Serve phase status and validation reports over HTTP (X-API-Key required)."""
    uvicorn.run("hybridctl.api.main:app", host=host, port=port)
