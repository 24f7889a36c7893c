"""MCP Server for calcfields.

Provides the exported tools of one scope:
- request_calculated_field: Natural-language request for a new calculated field
- get_semantic_view: The published view, including calculated fields
- one tool per operator-registered pre-built function
"""

from calcfields.mcp.server import create_server, run_server

__all__ = ["create_server", "run_server"]
