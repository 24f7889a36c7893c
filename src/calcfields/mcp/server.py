"""MCP Server implementation for calcfields.

Exposes one scope's exported tool descriptors to the orchestration layer.
The server only holds an OrchestratorCapabilities: it can read the view and
request new fields, but has no write path of its own.
"""

from __future__ import annotations

from typing import Any

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from calcfields.mcp.formatters import (
    format_field_result,
    format_function_usage,
    format_view_for_llm,
)
from calcfields.pipeline.capabilities import OrchestratorCapabilities
from calcfields.tools.exporter import REQUEST_TOOL, VIEW_TOOL

DEFAULT_REQUESTER = "mcp"


def create_server(capabilities: OrchestratorCapabilities, scope_id: str) -> Server:
    """Create and configure the MCP server for one scope."""
    server = Server(f"calcfields-{scope_id}")

    @server.list_tools()  # type: ignore[no-untyped-call, untyped-decorator]
    async def list_tools() -> list[Tool]:
        """List the exported tool descriptors."""
        exported = capabilities.export_tools(scope_id)
        return [
            Tool(name=t.name, description=t.description, inputSchema=t.input_schema)
            for t in exported.tools
        ]

    @server.call_tool()  # type: ignore[no-untyped-call, untyped-decorator]
    async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
        """Execute a tool and return results."""
        if name == REQUEST_TOOL:
            result = await _request_field(capabilities, scope_id, arguments)
        elif name == VIEW_TOOL:
            result = _get_view(capabilities, scope_id)
        else:
            descriptor = capabilities.export_tools(scope_id).get(name)
            if descriptor is None:
                result = f"Unknown tool: {name}"
            else:
                result = format_function_usage(descriptor)

        return [TextContent(type="text", text=result)]

    return server


async def _request_field(
    capabilities: OrchestratorCapabilities, scope_id: str, arguments: dict[str, Any]
) -> str:
    """Run the field pipeline for a natural-language request."""
    request = arguments.get("request")
    if not request:
        return "Error: 'request' is required"

    requested_by = arguments.get("requested_by") or DEFAULT_REQUESTER
    result = await capabilities.request_field(scope_id, request, requested_by)
    return format_field_result(result)


def _get_view(capabilities: OrchestratorCapabilities, scope_id: str) -> str:
    """Get the published semantic view."""
    view = capabilities.get_view(scope_id)
    if view is None:
        return f"Error: No semantic view published for scope '{scope_id}'"
    return format_view_for_llm(view)


async def run_server(scope_id: str) -> None:
    """Run the MCP server using stdio transport."""
    from calcfields.context import FieldsContext

    async with FieldsContext(with_generator=True) as ctx:
        server = create_server(ctx.capabilities, scope_id)
        async with stdio_server() as (read_stream, write_stream):
            await server.run(read_stream, write_stream, server.create_initialization_options())
