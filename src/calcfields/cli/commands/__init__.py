"""CLI command implementations."""

from calcfields.cli.commands import fields, mcp, tools, view

__all__ = [
    "fields",
    "mcp",
    "tools",
    "view",
]
