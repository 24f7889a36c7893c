"""Tools command - show the tool descriptors exported for a scope."""

from __future__ import annotations

from rich.table import Table as RichTable

from calcfields.cli.common import (
    ConfigDirOption,
    JsonFlag,
    OutputDirOption,
    ScopeArg,
    console,
    run_in_context,
    setup_logging,
)
from calcfields.context import FieldsContext
from calcfields.tools.models import ToolDescriptorSet


def tools(
    scope_id: ScopeArg,
    output_dir: OutputDirOption = None,
    config_dir: ConfigDirOption = None,
    json_output: JsonFlag = False,
) -> None:
    """Show the tool descriptors exported to the orchestration layer.

    Examples:

        calcfields tools credit --json
    """
    setup_logging()

    async def work(ctx: FieldsContext) -> ToolDescriptorSet:
        ctx.catalogs.get_snapshot(scope_id)
        return ctx.exporter.export(scope_id)

    exported = run_in_context(work, output_dir, config_dir)

    if json_output:
        console.print(exported.model_dump_json(indent=2), markup=False)
        return

    table = RichTable(title=f"Tools: {scope_id}", show_header=True)
    table.add_column("Name", style="cyan")
    table.add_column("Kind")
    table.add_column("Output")
    table.add_column("Description")
    for t in exported.tools:
        table.add_row(t.name, t.kind.value, t.output_type, t.description)
    console.print(table)

    names = ", ".join(exported.calculated_fields) or "(none)"
    console.print(f"\nCalculated fields (via {scope_id} view): {names}")
