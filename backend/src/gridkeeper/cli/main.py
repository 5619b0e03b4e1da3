"""Gridkeeper CLI entry point."""

import click


@click.group()
def cli():
    """Gridkeeper - authorization-aware view query CLI."""
    pass


# Register subcommand groups
from gridkeeper.cli.metadata_cmd import metadata  # noqa: E402
from gridkeeper.cli.query_cmd import query  # noqa: E402
from gridkeeper.cli.serve_cmd import serve  # noqa: E402

cli.add_command(metadata)
cli.add_command(query)
cli.add_command(serve)
