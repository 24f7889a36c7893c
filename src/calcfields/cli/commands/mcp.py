"""MCP command - serve a scope's tools over stdio."""

from __future__ import annotations

import asyncio

from calcfields.cli.common import ScopeArg, VerboseOption, setup_logging


def mcp(
    scope_id: ScopeArg,
    verbose: VerboseOption = 0,
) -> None:
    """Run the MCP server for a scope (stdio transport).

    Examples:

        calcfields mcp credit
    """
    from calcfields.mcp.server import run_server

    # stdout carries the protocol; logs go to stderr
    setup_logging(verbosity=verbose, log_format="json")
    asyncio.run(run_server(scope_id))
