"""MCP (Model Context Protocol) server for ctxgraph.

Lets any MCP client (Claude Code, Cursor, custom agents) pull budgeted
context from a ctxgraph index.

Usage:
    ctxgraph serve              # Start the MCP server on stdio
"""

from ctxgraph.mcp.server import MCPServer

__all__ = ["MCPServer"]
