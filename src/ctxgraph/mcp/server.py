"""MCP server: expose context assembly via the Model Context Protocol.

JSON-RPC 2.0 over stdio with Content-Length framing, implemented directly
on asyncio streams. Each tool call opens the workspace index, answers, and
closes it again; nothing is kept between calls.

Protocol reference: https://modelcontextprotocol.io/specification
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

from ctxgraph import __version__
from ctxgraph.config import ProjectConfig, find_project_root, load_config, resolve_workspace
from ctxgraph.context.assembler import MAX_DEPTH
from ctxgraph.context.models import LensType
from ctxgraph.exceptions import CtxGraphError, ValidationError
from ctxgraph.graph.models import Direction, RelationshipType

logger = logging.getLogger("ctxgraph.mcp")

OUTPUT_FORMATS = ("markdown", "json")

# JSON-RPC error codes
METHOD_NOT_FOUND = -32601
INTERNAL_ERROR = -32603


class MCPServer:
    """Model Context Protocol server for a ctxgraph project.

    ``db_path`` pins every call to one index database, the way ``--db``
    does on the command line; otherwise the ``workspace`` argument of a
    tool call picks a workspace from the project config.
    """

    PROTOCOL_VERSION = "2024-11-05"
    SERVER_NAME = "ctxgraph"

    def __init__(self, root: Path | None = None, db_path: Path | None = None) -> None:
        self.root = root or find_project_root() or Path.cwd()
        self.db_path = db_path
        self._tools = self._define_tools()

    def _define_tools(self) -> list[dict]:
        return [
            {
                "name": "context",
                "description": (
                    "Assemble relevance-ranked, token-budgeted context from the "
                    "knowledge graph for a topic or node id. Returns the most "
                    "relevant nodes with content and fields, plus a list of "
                    "related nodes that did not fit the budget."
                ),
                "inputSchema": {
                    "type": "object",
                    "properties": {
                        "query": {
                            "type": "string",
                            "description": "Topic text or a node id to start from",
                        },
                        "depth": {
                            "type": "integer",
                            "description": f"Traversal depth, 1-{MAX_DEPTH} (default: 2)",
                            "minimum": 1,
                            "maximum": MAX_DEPTH,
                        },
                        "max_tokens": {
                            "type": "integer",
                            "description": "Token budget for the document (default: 4000)",
                        },
                        "lens": {
                            "type": "string",
                            "enum": [t.value for t in LensType],
                            "description": "Traversal preset (default: general)",
                        },
                        "format": {
                            "type": "string",
                            "enum": list(OUTPUT_FORMATS),
                            "description": "Output format (default: markdown)",
                            "default": "markdown",
                        },
                        "include_fields": {
                            "type": "boolean",
                            "description": "Attach field values to nodes (default: true)",
                            "default": True,
                        },
                        "workspace": {
                            "type": "string",
                            "description": "Workspace alias from the project config",
                        },
                    },
                    "required": ["query"],
                },
            },
            {
                "name": "search",
                "description": "Search nodes by name. Returns ids, names and tags.",
                "inputSchema": {
                    "type": "object",
                    "properties": {
                        "query": {"type": "string", "description": "Text to look for"},
                        "limit": {
                            "type": "integer",
                            "description": "Maximum results (default: 10)",
                            "default": 10,
                        },
                        "workspace": {
                            "type": "string",
                            "description": "Workspace alias from the project config",
                        },
                    },
                    "required": ["query"],
                },
            },
            {
                "name": "related",
                "description": (
                    "List nodes linked to a node, with the relationship type, "
                    "direction and distance of each."
                ),
                "inputSchema": {
                    "type": "object",
                    "properties": {
                        "node_id": {"type": "string", "description": "Node to start from"},
                        "direction": {
                            "type": "string",
                            "enum": [d.value for d in Direction],
                            "default": "both",
                        },
                        "types": {
                            "type": "array",
                            "items": {
                                "type": "string",
                                "enum": [t.value for t in RelationshipType],
                            },
                            "description": "Relationship types to follow (default: all)",
                        },
                        "depth": {
                            "type": "integer",
                            "description": f"Traversal depth, 1-{MAX_DEPTH} (default: 1)",
                            "default": 1,
                        },
                        "limit": {
                            "type": "integer",
                            "description": "Maximum related nodes (default: 50)",
                            "default": 50,
                        },
                        "workspace": {
                            "type": "string",
                            "description": "Workspace alias from the project config",
                        },
                    },
                    "required": ["node_id"],
                },
            },
        ]

    # =========================================================================
    # Tool Implementations
    # =========================================================================

    def _handle_tool_call(self, name: str, arguments: dict) -> str:
        if name == "context":
            return self._tool_context(arguments)
        elif name == "search":
            return self._tool_search(arguments)
        elif name == "related":
            return self._tool_related(arguments)
        else:
            raise ValidationError(f"Unknown tool: {name}")

    def _settings(self, workspace: str | None) -> tuple[ProjectConfig, Path, str]:
        config = load_config(self.root)
        name = workspace or config.default_workspace
        if self.db_path is not None:
            return config, self.db_path, name
        return config, resolve_workspace(self.root, config, workspace), name

    def _tool_context(self, args: dict) -> str:
        from ctxgraph.context.assembler import ContextAssembler
        from ctxgraph.graph.store import SqliteNodeStore

        config, db_path, workspace = self._settings(args.get("workspace"))
        defaults = config.context

        depth = args.get("depth", defaults.depth)
        _check_depth(depth)
        output_format = args.get("format", "markdown")
        if output_format not in OUTPUT_FORMATS:
            raise ValidationError(
                f"Unknown format '{output_format}'. Must be one of: {', '.join(OUTPUT_FORMATS)}"
            )

        with SqliteNodeStore(db_path) as store:
            doc = ContextAssembler.from_config(store, config, workspace).assemble(
                args["query"],
                depth=depth,
                max_tokens=args.get("max_tokens", defaults.max_tokens),
                include_fields=args.get("include_fields", True),
                lens=args.get("lens", defaults.lens),
            )

        if output_format == "json":
            return doc.to_json()
        return doc.render_markdown()

    def _tool_search(self, args: dict) -> str:
        from ctxgraph.graph.store import SqliteNodeStore

        _, db_path, _ = self._settings(args.get("workspace"))
        with SqliteNodeStore(db_path) as store:
            hits = store.search(args["query"], limit=args.get("limit", 10))
        if not hits:
            return f"No matching nodes found for '{args['query']}'"

        lines = []
        for hit in hits:
            tags = f" [{', '.join(hit.tags)}]" if hit.tags else ""
            lines.append(f"  {hit.name}{tags} ({hit.id})")
        return "\n".join(lines)

    def _tool_related(self, args: dict) -> str:
        from ctxgraph.graph.models import TraversalQuery
        from ctxgraph.graph.store import SqliteNodeStore
        from ctxgraph.graph.traversal import GraphTraversal

        depth = args.get("depth", 1)
        _check_depth(depth)
        query = TraversalQuery(
            node_id=args["node_id"],
            direction=Direction(args.get("direction", Direction.BOTH.value)),
            types=[RelationshipType(t) for t in args.get("types") or []]
            or list(RelationshipType),
            max_depth=depth,
            limit=args.get("limit", 50),
        )

        _, db_path, _ = self._settings(args.get("workspace"))
        with SqliteNodeStore(db_path) as store:
            result = GraphTraversal(store).traverse(query)

        source = result.source_node
        if not result.related:
            return f"No related nodes found for {source.name} ({source.id})"

        lines = [f"Related to {source.name} ({source.id}):"]
        for related in result.related:
            rel = related.relationship
            indent = "  " * rel.distance
            lines.append(
                f"{indent}{related.name} ({related.id}) "
                f"{rel.type.value}/{rel.direction.value}"
            )
        if result.truncated:
            lines.append(f"(truncated at {result.count} nodes)")
        return "\n".join(lines)

    # =========================================================================
    # MCP Protocol Implementation (JSON-RPC 2.0 over stdio)
    # =========================================================================

    async def run_stdio(self) -> None:
        """Run the MCP server over stdio until the client closes the stream."""
        loop = asyncio.get_running_loop()
        reader = asyncio.StreamReader()
        protocol = asyncio.StreamReaderProtocol(reader)
        await loop.connect_read_pipe(lambda: protocol, sys.stdin.buffer)

        writer_transport, writer_protocol = await loop.connect_write_pipe(
            asyncio.streams.FlowControlMixin, sys.stdout.buffer
        )
        writer = asyncio.StreamWriter(writer_transport, writer_protocol, None, loop)

        logger.info("ctxgraph MCP server started (stdio transport)")

        while True:
            try:
                message = await self._read_message(reader)
            except (asyncio.IncompleteReadError, ValueError) as e:
                logger.error("Unreadable message, closing: %s", e)
                break
            if message is None:
                break
            response = self._handle_message(message)
            if response is not None:
                await self._write_message(writer, response)

        logger.info("MCP server shutting down")

    async def _read_message(self, reader: asyncio.StreamReader) -> dict | None:
        """Read one Content-Length framed JSON-RPC message; None at EOF."""
        content_length = 0
        while True:
            line = await reader.readline()
            if not line:
                return None
            line = line.decode("utf-8").strip()
            if not line:
                break
            if line.lower().startswith("content-length:"):
                content_length = int(line.split(":")[1].strip())

        if content_length == 0:
            return None

        body = await reader.readexactly(content_length)
        return json.loads(body.decode("utf-8"))

    async def _write_message(self, writer: asyncio.StreamWriter, message: dict) -> None:
        body = json.dumps(message).encode("utf-8")
        header = f"Content-Length: {len(body)}\r\n\r\n".encode()
        writer.write(header + body)
        await writer.drain()

    def _handle_message(self, message: dict) -> dict | None:
        """Route a JSON-RPC message; notifications get no response."""
        method = message.get("method", "")
        msg_id = message.get("id")
        params = message.get("params", {})

        if msg_id is None:
            self._handle_notification(method, params)
            return None

        try:
            result = self._dispatch(method, params)
        except _MethodNotFound as e:
            return _error(msg_id, METHOD_NOT_FOUND, str(e))
        except CtxGraphError as e:
            return _error(msg_id, INTERNAL_ERROR, str(e))
        return {"jsonrpc": "2.0", "id": msg_id, "result": result}

    def _handle_notification(self, method: str, params: dict) -> None:
        if method == "notifications/initialized":
            logger.info("Client initialized")
        elif method == "notifications/cancelled":
            logger.info("Request cancelled: %s", params.get("requestId"))

    def _dispatch(self, method: str, params: dict) -> Any:
        if method == "initialize":
            return self._rpc_initialize(params)
        elif method == "tools/list":
            return {"tools": self._tools}
        elif method == "tools/call":
            return self._rpc_tools_call(params)
        elif method == "ping":
            return {}
        else:
            raise _MethodNotFound(f"Unknown method: {method}")

    def _rpc_initialize(self, params: dict) -> dict:
        return {
            "protocolVersion": self.PROTOCOL_VERSION,
            "capabilities": {"tools": {"listChanged": False}},
            "serverInfo": {"name": self.SERVER_NAME, "version": __version__},
        }

    def _rpc_tools_call(self, params: dict) -> dict:
        """Call a tool; failures come back as an error result, not an RPC error."""
        name = params.get("name", "")
        arguments = params.get("arguments") or {}

        try:
            text = self._handle_tool_call(name, arguments)
        except KeyError as e:
            text, is_error = f"Error: missing argument {e}", True
        except (CtxGraphError, TypeError, ValueError) as e:
            # Bad argument types, enum values and pydantic validation included
            text, is_error = f"Error: {e}", True
        else:
            is_error = False

        if is_error:
            logger.debug("Tool %s failed: %s", name, text)
        return {"content": [{"type": "text", "text": text}], "isError": is_error}

    # =========================================================================
    # MCP Config Generators
    # =========================================================================

    @staticmethod
    def generate_claude_config(project_path: str | None = None) -> dict:
        """MCP config for Claude Code (~/.claude/mcp_servers.json)."""
        return {
            "ctxgraph": {
                "command": "ctxgraph",
                "args": ["serve", "--transport", "stdio"],
                "cwd": project_path or ".",
            }
        }

    @staticmethod
    def generate_cursor_config(project_path: str | None = None) -> dict:
        """MCP config for Cursor (.cursor/mcp.json)."""
        return {
            "mcpServers": {
                "ctxgraph": {
                    "command": "ctxgraph",
                    "args": ["serve", "--transport", "stdio"],
                    "cwd": project_path or ".",
                }
            }
        }


class _MethodNotFound(CtxGraphError):
    pass


def _check_depth(depth: int) -> None:
    if isinstance(depth, bool) or not isinstance(depth, int) or not 1 <= depth <= MAX_DEPTH:
        raise ValidationError(f"depth must be between 1 and {MAX_DEPTH}, got {depth!r}")


def _error(msg_id: Any, code: int, message: str) -> dict:
    return {"jsonrpc": "2.0", "id": msg_id, "error": {"code": code, "message": message}}
