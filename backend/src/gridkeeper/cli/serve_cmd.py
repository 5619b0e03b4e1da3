"""Serve command - run the views API under uvicorn."""

import click

LOG_LEVELS = ["critical", "error", "warning", "info", "debug", "trace"]


@click.command()
@click.option("--host", default="127.0.0.1", show_default=True, help="Interface to bind.")
@click.option("--port", default=8000, show_default=True, envvar="GRIDKEEPER_PORT", type=int)
@click.option("--reload", is_flag=True, help="Restart when source files change (development).")
@click.option(
    "--log-level",
    default="info",
    show_default=True,
    envvar="GRIDKEEPER_LOG_LEVEL",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
)
def serve(host: str, port: int, reload: bool, log_level: str):
    """Run the Gridkeeper API.

    Database, metadata and cache settings come from the GRIDKEEPER_* and
    DATABASE_URL environment variables, read when the app starts.
    """
    import uvicorn

    click.echo(f"Serving Gridkeeper API on http://{host}:{port}")
    uvicorn.run(
        "gridkeeper.api.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level=log_level.lower(),
    )
