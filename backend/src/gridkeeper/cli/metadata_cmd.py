"""Metadata CLI commands - validate and inspect entity schemas."""

from pathlib import Path

import click

from gridkeeper.core.types import LIST_OPERATORS, get_field_type
from gridkeeper.metadata.registry import SchemaRegistry

_path_option = click.option(
    "--path",
    "metadata_path",
    default=None,
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    help="Metadata directory (defaults to the packaged entity definitions).",
)


def _load(metadata_path: Path | None) -> SchemaRegistry:
    try:
        return SchemaRegistry.load(metadata_path)
    except (ValueError, KeyError) as e:
        click.echo(click.style(f"Schema validation failed: {e}", fg="red"), err=True)
        raise SystemExit(1)


@click.group()
def metadata():
    """Metadata commands."""
    pass


@metadata.command()
@_path_option
def validate(metadata_path: Path | None):
    """Load every entity schema and check cross-entity references."""
    registry = _load(metadata_path)

    entities = registry.list_entities()
    if not entities:
        click.echo(click.style("No entity definitions found.", fg="red"), err=True)
        raise SystemExit(1)

    click.echo(f"Loaded {len(entities)} entities:")
    for name in sorted(entities):
        entity = registry.require_entity(name)
        reachable = ", ".join(t for t in registry.reachable_tables(name) if t != entity.table.lower())
        click.echo(
            f"  ✓ {name} ({len(entity.fields)} fields, table: {entity.table}"
            + (f", reaches: {reachable}" if reachable else "")
            + ")"
        )

    click.echo(click.style("\nAll metadata is valid.", fg="green", bold=True))


@metadata.command()
@click.argument("entity")
@_path_option
@click.option("--operators", is_flag=True, default=False, help="Show query operators per column.")
def columns(entity: str, metadata_path: Path | None, operators: bool):
    """Show the columns reachable from ENTITY and their types."""
    registry = _load(metadata_path)
    model = registry.get_entity(entity)
    if model is None:
        click.echo(f"Error: Entity '{entity}' not found", err=True)
        raise SystemExit(1)

    for path, type_label in registry.columns(model.name).items():
        line = f"  {path:<28} {type_label}"
        if operators:
            resolved = registry.resolve_path(model.name, path)
            if resolved is not None and resolved.field is not None and resolved.field.list:
                ops = LIST_OPERATORS
            elif resolved is not None and resolved.field is not None:
                ops = get_field_type(resolved.field.type).query_operators
            else:
                ops = ["some", "every", "none"]
            line += f"  [{', '.join(ops)}]"
        click.echo(line)
