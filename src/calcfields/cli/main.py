"""Main CLI application entry point."""

from __future__ import annotations

import typer

from calcfields.cli.commands import fields, mcp, tools, view

app = typer.Typer(
    name="calcfields",
    help="Calculated fields - natural-language metrics over a governed semantic view.",
    no_args_is_help=True,
)

# Register commands
app.command()(fields.request)
app.command()(fields.define)
app.command("list")(fields.list_fields)
app.command()(fields.deprecate)
app.command()(fields.attempts)
app.command()(view.view)
app.command()(tools.tools)
app.command()(mcp.mcp)


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
