"""Command-line interface for ctxgraph."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path

import click
from pydantic import ValidationError as PydanticValidationError
from rich.logging import RichHandler

from ctxgraph import __version__
from ctxgraph.config import (
    ProjectConfig,
    WorkspaceConfig,
    find_project_root,
    load_config,
    resolve_workspace,
    save_config,
    set_config_value,
)
from ctxgraph.context.models import LensType
from ctxgraph.exceptions import CtxGraphError
from ctxgraph.graph.models import Direction, RelationshipType
from ctxgraph.ui.console import Console

console = Console()

MAX_DEPTH = 5
OUTPUT_FORMATS = ("markdown", "json")


def _setup_logging(debug: bool) -> None:
    """Send ctxgraph logs to stderr through Rich when debugging."""
    logger = logging.getLogger("ctxgraph")
    for handler in list(logger.handlers):
        if isinstance(handler, RichHandler):
            logger.removeHandler(handler)
    if not debug:
        logger.setLevel(logging.NOTSET)
        return
    handler = RichHandler(console=console.err, show_path=False, rich_tracebacks=True)
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)


def _get_project_root(path: str | None = None) -> Path:
    """Find the project root or error."""
    if path:
        root = Path(path).resolve()
        if not root.exists():
            console.error(f"Path does not exist: {path}")
            sys.exit(1)
        return root

    root = find_project_root()
    if root is None:
        console.error(
            "No ctxgraph project found. Run 'ctxgraph init' first, "
            "or specify a path with --path."
        )
        sys.exit(1)
    return root


def _load_settings(
    path: str | None, workspace: str | None, db: str | None
) -> tuple[ProjectConfig, Path, str]:
    """Work out config, database path and workspace name for a command.

    ``--db`` wins over any configured workspace; the project config (if one
    is found) still supplies defaults.
    """
    root = _get_project_root(path) if path or not db else find_project_root()
    try:
        config = load_config(root) if root else ProjectConfig()
        name = workspace or config.default_workspace
        if db:
            return config, Path(db).expanduser().resolve(), name
        return config, resolve_workspace(root, config, workspace), name
    except CtxGraphError as e:
        console.error(str(e))
        sys.exit(1)


def _open_store(db_path: Path, in_memory: bool = False):
    from ctxgraph.graph.memory import MemoryNodeStore
    from ctxgraph.graph.store import SqliteNodeStore

    store = SqliteNodeStore(db_path)
    if not in_memory:
        return store
    with store:
        return MemoryNodeStore(store.load_graph())


@click.group()
@click.version_option(version=__version__, prog_name="ctxgraph")
@click.option(
    "--debug", is_flag=True, envvar="CTXGRAPH_DEBUG",
    help="Verbose logging and diagnostics on stderr.",
)
@click.pass_context
def main(ctx: click.Context, debug: bool):
    """ctxgraph - budgeted context assembly from your knowledge graph."""
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    _setup_logging(debug)


@main.command()
@click.option("--path", "-p", default=None, help="Path to the project root.")
@click.option("--db", default=None, help="Index database for the workspace.")
@click.option("--workspace", "-w", default="default", help="Workspace alias.")
def init(path: str | None, db: str | None, workspace: str):
    """Create .ctxgraph/config.json and register a workspace."""
    root = Path(path or ".").resolve()
    if not root.exists():
        console.error(f"Path does not exist: {root}")
        sys.exit(1)

    try:
        config = load_config(root)
    except CtxGraphError as e:
        console.error(str(e))
        sys.exit(1)

    config.name = config.name or root.name
    if db:
        config.workspaces[workspace] = WorkspaceConfig(db_path=str(Path(db).expanduser()))
    elif workspace not in config.workspaces:
        config.workspaces[workspace] = WorkspaceConfig()
    if len(config.workspaces) == 1 or config.default_workspace not in config.workspaces:
        config.default_workspace = workspace

    save_config(root, config)
    console.success(f"Initialized ctxgraph in {root}")


@main.command()
@click.argument("query")
@click.option("--depth", "-d", default=None, type=int, help="Traversal depth (1-5).")
@click.option(
    "--max-tokens", "-t", default=None, type=int,
    help="Token budget (at least header reserve + minimum per node, 250 by default).",
)
@click.option("--lens", "-l", default=None, help="Lens: " + ", ".join(t.value for t in LensType))
@click.option(
    "--format", "output_format", default="markdown",
    help="Output format: markdown or json.",
)
@click.option(
    "--include-fields/--no-include-fields", default=True,
    help="Attach field values to nodes.",
)
@click.option("--workspace", "-w", default=None, help="Workspace alias from config.")
@click.option("--db", default=None, help="Index database (overrides --workspace).")
@click.option("--in-memory", is_flag=True, help="Load the index into memory first.")
@click.option("--strict", is_flag=True, help="Fail on the first skipped sub-operation.")
@click.option("--path", "-p", default=None, help="Path to the project root.")
@click.pass_context
def context(
    ctx: click.Context,
    query: str,
    depth: int | None,
    max_tokens: int | None,
    lens: str | None,
    output_format: str,
    include_fields: bool,
    workspace: str | None,
    db: str | None,
    in_memory: bool,
    strict: bool,
    path: str | None,
):
    """Assemble budgeted context for a query or node id.

    Examples:

        ctxgraph context "quarterly planning"

        ctxgraph context "launch checklist" --lens planning --max-tokens 2000

        ctxgraph context abc123def --format json
    """
    from ctxgraph.context.assembler import ContextAssembler

    config, db_path, workspace_name = _load_settings(path, workspace, db)
    defaults = config.context

    depth = defaults.depth if depth is None else depth
    max_tokens = defaults.max_tokens if max_tokens is None else max_tokens
    lens = lens or defaults.lens

    if not 1 <= depth <= MAX_DEPTH:
        console.error(f"--depth must be between 1 and {MAX_DEPTH}, got {depth}")
        sys.exit(1)
    # The header reserve plus one node's minimum share
    min_tokens = defaults.header_reserve + defaults.min_per_node
    if max_tokens < min_tokens:
        console.error(f"--max-tokens must be at least {min_tokens}, got {max_tokens}")
        sys.exit(1)
    valid_lenses = [t.value for t in LensType]
    if lens not in valid_lenses:
        console.error(f"Unknown lens '{lens}'. Must be one of: {', '.join(valid_lenses)}")
        sys.exit(1)
    if output_format not in OUTPUT_FORMATS:
        console.error(
            f"Unknown format '{output_format}'. Must be one of: {', '.join(OUTPUT_FORMATS)}"
        )
        sys.exit(1)

    try:
        with _open_store(db_path, in_memory) as store:
            doc = ContextAssembler.from_config(store, config, workspace_name).assemble(
                query,
                depth=depth,
                max_tokens=max_tokens,
                include_fields=include_fields,
                lens=lens,
                strict=strict,
            )
    except CtxGraphError as e:
        console.error(str(e))
        sys.exit(1)

    if output_format == "json":
        click.echo(doc.to_json())
    else:
        click.echo(doc.render_markdown())

    if not doc.nodes:
        console.warning("No matching nodes found")
        return

    for warning in doc.meta.warnings:
        console.warning(warning)
    if ctx.obj.get("debug"):
        console.show_diagnostics(doc.diagnostics)


@main.command()
@click.argument("node_id")
@click.option(
    "--direction", default=Direction.BOTH.value,
    type=click.Choice([d.value for d in Direction]), help="Edge direction to follow.",
)
@click.option(
    "--type", "types", multiple=True,
    type=click.Choice([t.value for t in RelationshipType]),
    help="Relationship type to follow (repeatable; default all).",
)
@click.option("--depth", "-d", default=1, type=int, help="Traversal depth (1-5).")
@click.option("--limit", default=50, type=int, help="Maximum related nodes.")
@click.option("--workspace", "-w", default=None, help="Workspace alias from config.")
@click.option("--db", default=None, help="Index database (overrides --workspace).")
@click.option("--path", "-p", default=None, help="Path to the project root.")
def related(
    node_id: str,
    direction: str,
    types: tuple[str, ...],
    depth: int,
    limit: int,
    workspace: str | None,
    db: str | None,
    path: str | None,
):
    """Show nodes related to NODE_ID as a tree."""
    from ctxgraph.graph.models import TraversalQuery
    from ctxgraph.graph.traversal import GraphTraversal

    if not 1 <= depth <= MAX_DEPTH:
        console.error(f"--depth must be between 1 and {MAX_DEPTH}, got {depth}")
        sys.exit(1)
    if limit < 1:
        console.error(f"--limit must be at least 1, got {limit}")
        sys.exit(1)

    _, db_path, _ = _load_settings(path, workspace, db)
    query = TraversalQuery(
        node_id=node_id,
        direction=Direction(direction),
        types=[RelationshipType(t) for t in types] or list(RelationshipType),
        max_depth=depth,
        limit=limit,
    )

    try:
        with _open_store(db_path) as store:
            result = GraphTraversal(store).traverse(query)
    except CtxGraphError as e:
        console.error(str(e))
        sys.exit(1)

    console.show_related(result)


@main.command()
@click.argument("text")
@click.option("--limit", "-n", default=10, type=int, help="Maximum results.")
@click.option("--workspace", "-w", default=None, help="Workspace alias from config.")
@click.option("--db", default=None, help="Index database (overrides --workspace).")
@click.option("--path", "-p", default=None, help="Path to the project root.")
def search(text: str, limit: int, workspace: str | None, db: str | None, path: str | None):
    """Search nodes by name."""
    if limit < 1:
        console.error(f"--limit must be at least 1, got {limit}")
        sys.exit(1)

    _, db_path, _ = _load_settings(path, workspace, db)
    try:
        with _open_store(db_path) as store:
            hits = store.search(text, limit=limit)
    except CtxGraphError as e:
        console.error(str(e))
        sys.exit(1)

    if not hits:
        console.warning(f"No matching nodes found for '{text}'")
        return

    console.show_search_results(hits)


@main.command()
@click.option("--workspace", "-w", default=None, help="Workspace alias from config.")
@click.option("--db", default=None, help="Index database (overrides --workspace).")
@click.option("--path", "-p", default=None, help="Path to the project root.")
def stats(workspace: str | None, db: str | None, path: str | None):
    """Show node and edge counts for the index."""
    _, db_path, _ = _load_settings(path, workspace, db)
    try:
        with _open_store(db_path) as store:
            data = store.stats()
    except CtxGraphError as e:
        console.error(str(e))
        sys.exit(1)

    console.show_stats(data)


@main.command()
@click.option("--path", "-p", default=None, help="Path to the project root.")
@click.option("--db", default=None, help="Serve this index database for every workspace.")
@click.option(
    "--transport", "-t",
    type=click.Choice(["stdio"]),
    default="stdio",
    help="Transport protocol (default: stdio).",
)
@click.option("--generate-config", type=click.Choice(["claude", "cursor"]),
              default=None, help="Print MCP client config and exit.")
def serve(path: str | None, db: str | None, transport: str, generate_config: str | None):
    """Start the MCP server so AI tools can request context.

    Setup for Claude Code:

        ctxgraph serve --generate-config claude >> ~/.claude/mcp_servers.json

    Setup for Cursor:

        ctxgraph serve --generate-config cursor >> .cursor/mcp.json

    Tools exposed: context, search, related.
    """
    from ctxgraph.mcp.server import MCPServer

    if generate_config:
        root_path = str(Path(path or ".").resolve())
        if generate_config == "claude":
            config = MCPServer.generate_claude_config(root_path)
        else:
            config = MCPServer.generate_cursor_config(root_path)
        click.echo(json.dumps(config, indent=2))
        return

    root = _get_project_root(path) if path or not db else find_project_root()
    db_path = Path(db).expanduser().resolve() if db else None
    server = MCPServer(root, db_path=db_path)

    if transport == "stdio":
        asyncio.run(server.run_stdio())


@main.command("config")
@click.argument("action", type=click.Choice(["set", "get", "show"]))
@click.argument("key", required=False)
@click.argument("value", required=False)
@click.option("--path", "-p", default=None, help="Path to the project root.")
def config_cmd(action: str, key: str | None, value: str | None, path: str | None):
    """Manage ctxgraph configuration."""
    root = _get_project_root(path)
    try:
        config = load_config(root)
    except CtxGraphError as e:
        console.error(str(e))
        sys.exit(1)

    if action == "show":
        console.console.print_json(json.dumps(config.model_dump(mode="json"), indent=2))
    elif action == "get":
        if not key:
            console.error("Usage: ctxgraph config get <key>")
            sys.exit(1)
        data = config.model_dump(mode="json")
        for part in key.split("."):
            if isinstance(data, dict) and part in data:
                data = data[part]
            else:
                console.error(f"Unknown key: {key}")
                sys.exit(1)
        click.echo(f"{key} = {data}")
    elif action == "set":
        if not key or value is None:
            console.error("Usage: ctxgraph config set <key> <value>")
            sys.exit(1)
        # Try to parse as JSON for non-string values
        try:
            parsed_value = json.loads(value)
        except json.JSONDecodeError:
            parsed_value = value

        try:
            config = set_config_value(config, key, parsed_value)
        except KeyError:
            console.error(f"Unknown config key: {key}")
            sys.exit(1)
        except PydanticValidationError as e:
            console.error(f"Invalid value for {key}: {e.errors()[0]['msg']}")
            sys.exit(1)
        save_config(root, config)
        console.success(f"Set {key} = {parsed_value}")


if __name__ == "__main__":
    main()
