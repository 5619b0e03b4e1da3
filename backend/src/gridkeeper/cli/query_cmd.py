"""Query CLI commands - compile view parameters into a descriptor."""

import json
from pathlib import Path

import click

from gridkeeper.errors import UnknownEntity
from gridkeeper.metadata.registry import SchemaRegistry
from gridkeeper.query.compiler import QueryCompiler
from gridkeeper.query.sanitizer import (
    AllowList,
    sanitize_columns,
    sanitize_filter,
    sanitize_sort,
)


def _json_option(value: str | None, name: str):
    if value is None:
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"invalid JSON: {e}", param_hint=name) from e


@click.group()
def query():
    """Query commands."""
    pass


@query.command("compile")
@click.argument("entity")
@click.option("--columns", "-c", default=None, help="Comma-separated columns (default: all).")
@click.option(
    "--allow",
    default=None,
    help="Comma-separated allow-list to sanitize against (default: every column).",
)
@click.option("--filter", "filter_json", default=None, help="Filter as JSON.")
@click.option("--sort", "sort_json", default=None, help="Sort as JSON.")
@click.option("--search", default=None, help="Global search text.")
@click.option(
    "--path",
    "metadata_path",
    default=None,
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    help="Metadata directory (defaults to the packaged entity definitions).",
)
def compile_cmd(
    entity: str,
    columns: str | None,
    allow: str | None,
    filter_json: str | None,
    sort_json: str | None,
    search: str | None,
    metadata_path: Path | None,
):
    """Sanitize and compile view parameters for ENTITY, printing the descriptor."""
    registry = SchemaRegistry.load(metadata_path)
    try:
        model = registry.require_entity(entity)
    except UnknownEntity as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    allowed = (
        [c.strip() for c in allow.split(",") if c.strip()]
        if allow
        else registry.column_paths(model.name)
    )
    allow_list = AllowList(allowed, root=model.name, registry=registry)

    projection = (
        sanitize_columns([c.strip() for c in columns.split(",")], allow_list)
        if columns
        else list(allow_list)
    )
    tree = sanitize_filter(_json_option(filter_json, "--filter"), allow_list)
    sort = sanitize_sort(_json_option(sort_json, "--sort"), allow_list)

    descriptor = QueryCompiler(registry).compile(
        model.name, projection, tree, sort, search, searchable=list(allow_list)
    )
    click.echo(json.dumps(descriptor.to_dict(), indent=2, default=str))
