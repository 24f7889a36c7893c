"""Field commands - request, define, list, deprecate, attempts."""

from __future__ import annotations

import json
from typing import Annotated

import typer
from rich.table import Table as RichTable

from calcfields.catalog.models import DataType
from calcfields.cli.common import (
    ConfigDirOption,
    JsonFlag,
    OutputDirOption,
    RequesterOption,
    ScopeArg,
    VerboseOption,
    console,
    run_in_context,
    setup_logging,
)
from calcfields.context import FieldsContext
from calcfields.expressions.models import FieldCandidate
from calcfields.fields.models import AttemptOutcome, CalculatedFieldDefinition, FieldAttempt
from calcfields.pipeline.coordinator import FieldRequestResult

ExpectedVersionOption = Annotated[
    int | None,
    typer.Option(
        "--expected-version",
        help="Current version of the field when redefining it",
        min=1,
    ),
]


def request(
    scope_id: ScopeArg,
    text: Annotated[str, typer.Argument(help="What to calculate, in plain language")],
    requested_by: RequesterOption = "cli",
    expected_version: ExpectedVersionOption = None,
    output_dir: OutputDirOption = None,
    config_dir: ConfigDirOption = None,
    json_output: JsonFlag = False,
    verbose: VerboseOption = 0,
) -> None:
    """Request a calculated field in natural language.

    The generated expression is validated against the scope's catalog before
    it is saved; the semantic view is regenerated before this returns.

    Examples:

        calcfields request credit "multiply LTM EBITDA by Total Leverage"

        calcfields request credit "net debt over EBITDA" --expected-version 2
    """
    setup_logging(verbosity=verbose)

    async def work(ctx: FieldsContext) -> FieldRequestResult:
        return await ctx.coordinator.request_field(
            scope_id, text, requested_by=requested_by, expected_version=expected_version
        )

    result = run_in_context(work, output_dir, config_dir, with_generator=True)
    _print_result(result, json_output)


def define(
    scope_id: ScopeArg,
    name: Annotated[str, typer.Argument(help="Field name, e.g. LEVERED_EBITDA")],
    expression: Annotated[str, typer.Argument(help="Expression over catalog columns")],
    result_type: Annotated[
        DataType, typer.Option("--type", "-t", help="Declared result type")
    ] = DataType.NUMBER,
    display_name: Annotated[
        str | None, typer.Option("--display-name", help="Human-readable label")
    ] = None,
    description: Annotated[str | None, typer.Option("--description", "-d")] = None,
    requested_by: RequesterOption = "cli",
    expected_version: ExpectedVersionOption = None,
    output_dir: OutputDirOption = None,
    config_dir: ConfigDirOption = None,
    json_output: JsonFlag = False,
    verbose: VerboseOption = 0,
) -> None:
    """Define a calculated field with an explicit expression.

    Runs the same validation as generated fields.

    Examples:

        calcfields define credit LEVERED_EBITDA "LTM_EBITDA * TOTAL_LEVERAGE"

        calcfields define credit IS_HIGH_LEVERAGE "TOTAL_LEVERAGE > 6" -t BOOLEAN
    """
    setup_logging(verbosity=verbose)
    candidate = FieldCandidate(
        name=name,
        display_name=display_name or name.replace("_", " ").title(),
        expression=expression,
        result_type=result_type,
    )

    async def work(ctx: FieldsContext) -> FieldRequestResult:
        return await ctx.coordinator.submit_definition(
            scope_id,
            candidate,
            requested_by=requested_by,
            expected_version=expected_version,
            description=description,
        )

    result = run_in_context(work, output_dir, config_dir)
    _print_result(result, json_output)


def list_fields(
    scope_id: ScopeArg,
    include_deprecated: Annotated[
        bool, typer.Option("--all", "-a", help="Include deprecated fields")
    ] = False,
    output_dir: OutputDirOption = None,
    config_dir: ConfigDirOption = None,
    json_output: JsonFlag = False,
) -> None:
    """List the calculated fields of a scope.

    Examples:

        calcfields list credit

        calcfields list credit --all --json
    """
    setup_logging()

    async def work(ctx: FieldsContext) -> list[CalculatedFieldDefinition]:
        ctx.catalogs.get_snapshot(scope_id)
        return await ctx.store.list_fields(scope_id, include_deprecated=include_deprecated)

    fields = run_in_context(work, output_dir, config_dir)

    if json_output:
        console.print(
            json.dumps([f.model_dump(mode="json") for f in fields], indent=2), markup=False
        )
        return

    if not fields:
        console.print(f"[yellow]No calculated fields in scope '{scope_id}'[/yellow]")
        return

    table = RichTable(title=f"Calculated fields: {scope_id}", show_header=True)
    table.add_column("Name", style="cyan")
    table.add_column("Type")
    table.add_column("Version", justify="right")
    table.add_column("Status")
    table.add_column("Expression")
    table.add_column("By", style="dim")
    for f in fields:
        status = f.status.value if f.is_active else f"[dim]{f.status.value}[/dim]"
        table.add_row(
            f.name, f.result_type.value, str(f.version), status, f.expression_text, f.created_by
        )
    console.print(table)


def deprecate(
    scope_id: ScopeArg,
    name: Annotated[str, typer.Argument(help="Field to deprecate")],
    expected_version: Annotated[
        int, typer.Option("--expected-version", help="Current version of the field", min=1)
    ],
    requested_by: RequesterOption = "cli",
    output_dir: OutputDirOption = None,
    config_dir: ConfigDirOption = None,
    json_output: JsonFlag = False,
    verbose: VerboseOption = 0,
) -> None:
    """Deprecate a calculated field.

    The field stays in the store but is left out of the next view generation.

    Examples:

        calcfields deprecate credit LEVERED_EBITDA --expected-version 1
    """
    setup_logging(verbosity=verbose)

    async def work(ctx: FieldsContext) -> FieldRequestResult:
        return await ctx.coordinator.deprecate(scope_id, name, expected_version, requested_by)

    result = run_in_context(work, output_dir, config_dir)
    _print_result(result, json_output)


def attempts(
    scope_id: ScopeArg,
    outcome: Annotated[
        AttemptOutcome | None, typer.Option("--outcome", help="Only this outcome")
    ] = None,
    limit: Annotated[int, typer.Option("--limit", "-n", min=1)] = 20,
    output_dir: OutputDirOption = None,
    config_dir: ConfigDirOption = None,
    json_output: JsonFlag = False,
) -> None:
    """Show the audit trail of pipeline attempts, newest first.

    Examples:

        calcfields attempts credit --outcome rejected
    """
    setup_logging()

    async def work(ctx: FieldsContext) -> list[FieldAttempt]:
        ctx.catalogs.get_snapshot(scope_id)
        return await ctx.store.list_attempts(scope_id, outcome=outcome, limit=limit)

    records = run_in_context(work, output_dir, config_dir)

    if json_output:
        console.print(
            json.dumps([a.model_dump(mode="json") for a in records], indent=2), markup=False
        )
        return

    if not records:
        console.print("[yellow]No attempts recorded[/yellow]")
        return

    table = RichTable(title=f"Attempts: {scope_id}", show_header=True)
    table.add_column("When", style="dim")
    table.add_column("Outcome")
    table.add_column("Field", style="cyan")
    table.add_column("Request / expression")
    table.add_column("Errors", style="red")
    for a in records:
        table.add_row(
            a.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            a.outcome.value,
            a.name or "",
            a.request_text or a.expression_text or "",
            "\n".join(a.errors),
        )
    console.print(table)


def _print_result(result: FieldRequestResult, json_output: bool) -> None:
    """Print a pipeline result; exits 1 on failure."""
    if json_output:
        console.print(result.model_dump_json(indent=2), markup=False)
        if not result.success:
            raise typer.Exit(1)
        return

    if result.success and result.definition is not None:
        d = result.definition
        verb = "Deprecated" if not d.is_active else "Saved"
        suffix = " [dim](already saved, nothing changed)[/dim]" if result.replayed else ""
        console.print(
            f"[green]{verb}[/green] [cyan]{d.name}[/cyan] v{d.version} "
            f"({d.result_type.value}){suffix}"
        )
        if d.is_active:
            console.print(f"  {d.canonical_sql or d.expression_text}")
        if result.view_published:
            console.print(f"[dim]View regenerated (generation {result.generation_version})[/dim]")
        for warning in result.warnings:
            console.print(f"[yellow]Warning: {warning}[/yellow]")
        return

    console.print(f"[red]{result.status.value.replace('_', ' ').title()}[/red]")
    if result.candidate is not None:
        console.print(f"  Proposed: {result.candidate.name} = {result.candidate.expression}")
    for message in result.error_messages:
        console.print(f"  [red]-[/red] {message}")
    if result.retryable:
        console.print("[dim]Transient failure; retrying may succeed.[/dim]")
    raise typer.Exit(1)
