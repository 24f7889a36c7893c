"""View command - show or export the semantic view of a scope."""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table as RichTable

from calcfields.cli.common import (
    ConfigDirOption,
    OutputDirOption,
    ScopeArg,
    VerboseOption,
    console,
    run_in_context,
    setup_logging,
)
from calcfields.context import FieldsContext
from calcfields.views.export import dump_json, dump_yaml, write_view
from calcfields.views.models import SemanticViewDefinition


class ViewFormat(str, Enum):
    TABLE = "table"
    YAML = "yaml"
    JSON = "json"
    SQL = "sql"


def view(
    scope_id: ScopeArg,
    fmt: Annotated[ViewFormat, typer.Option("--format", "-f")] = ViewFormat.TABLE,
    write: Annotated[
        Path | None,
        typer.Option("--write", "-w", help="Write the view to a .yaml or .json file"),
    ] = None,
    output_dir: OutputDirOption = None,
    config_dir: ConfigDirOption = None,
    verbose: VerboseOption = 0,
) -> None:
    """Regenerate and show the semantic view of a scope.

    Examples:

        calcfields view credit

        calcfields view credit --format sql

        calcfields view credit --write views/credit.yaml
    """
    setup_logging(verbosity=verbose)

    async def work(ctx: FieldsContext) -> SemanticViewDefinition | None:
        ctx.catalogs.get_snapshot(scope_id)
        return ctx.registry.current(scope_id)

    semantic_view = run_in_context(work, output_dir, config_dir)
    if semantic_view is None:
        console.print(
            f"[red]The view of '{scope_id}' could not be built; see the operator alert above[/red]"
        )
        raise typer.Exit(1)

    if write is not None:
        try:
            path = write_view(semantic_view, write)
        except ValueError as e:
            console.print(f"[red]{e}[/red]")
            raise typer.Exit(1) from e
        console.print(f"[green]Wrote {path}[/green]")
        return

    if fmt == ViewFormat.YAML:
        console.print(dump_yaml(semantic_view), markup=False)
    elif fmt == ViewFormat.JSON:
        console.print(dump_json(semantic_view), markup=False)
    elif fmt == ViewFormat.SQL:
        console.print(semantic_view.select_sql(), markup=False)
    else:
        _print_table(semantic_view)


def _print_table(semantic_view: SemanticViewDefinition) -> None:
    console.print(
        f"\n[bold]{semantic_view.scope_id}[/bold] over [cyan]{semantic_view.relation}[/cyan] "
        f"[dim](generation {semantic_view.generation_version}, "
        f"store revision {semantic_view.store_revision})[/dim]\n"
    )

    table = RichTable(show_header=True, header_style="bold")
    table.add_column("Kind")
    table.add_column("Name", style="cyan")
    table.add_column("Type")
    table.add_column("Expression / label")
    for c in semantic_view.dimensions:
        table.add_row("dimension", c.name, c.data_type.value, c.display_name)
    for c in semantic_view.measures:
        table.add_row("measure", c.name, c.data_type.value, c.display_name)
    for f in semantic_view.calculated_fields:
        table.add_row(
            f"[green]calculated v{f.version}[/green]", f.name, f.result_type.value, f.expression
        )
    console.print(table)
