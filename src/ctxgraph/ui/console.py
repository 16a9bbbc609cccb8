"""Rich-powered console output for ctxgraph."""

from __future__ import annotations

from rich.console import Console as RichConsole
from rich.markup import escape
from rich.table import Table
from rich.tree import Tree

from ctxgraph.context.models import Skipped
from ctxgraph.graph.models import SearchHit, TraversalResult


class Console:
    """Terminal output for ctxgraph using Rich.

    Tables and trees go to stdout; status messages go to stderr so that
    piped documents stay clean.
    """

    def __init__(self) -> None:
        self.console = RichConsole()
        self.err = RichConsole(stderr=True)

    def success(self, message: str) -> None:
        self.err.print(f"[green]✓[/green] {message}")

    def error(self, message: str) -> None:
        self.err.print(f"[red]✗[/red] {message}")

    def warning(self, message: str) -> None:
        self.err.print(f"[yellow]![/yellow] {message}")

    def info(self, message: str) -> None:
        self.err.print(f"[blue]i[/blue] {message}")

    def show_stats(self, stats: dict) -> None:
        """Display graph statistics in a table."""
        table = Table(title="Knowledge Graph Statistics", border_style="cyan")
        table.add_column("Metric", style="bold")
        table.add_column("Count", justify="right", style="cyan")

        table.add_row("Nodes", str(stats.get("nodes", 0)))
        table.add_row("Edges", str(stats.get("edges", 0)))
        table.add_row("Tagged Nodes", str(stats.get("tagged_nodes", 0)))
        table.add_row("Components", str(stats.get("components", 0)))

        edge_types = stats.get("edge_types", {})
        if edge_types:
            table.add_section()
            for kind, count in sorted(edge_types.items(), key=lambda x: (-x[1], x[0])):
                table.add_row(f"  {kind} edges", str(count))

        self.console.print(table)

    def show_search_results(self, hits: list[SearchHit]) -> None:
        """Display search hits, best first."""
        for hit in hits:
            tags = ""
            if hit.tags:
                tags = f" [magenta]{escape(' '.join('#' + t for t in hit.tags))}[/magenta]"
            self.console.print(
                f"  [bold]{escape(hit.name)}[/bold]{tags} [dim]({hit.id})[/dim]",
                highlight=False,
            )
            if hit.breadcrumb:
                self.console.print(f"    [dim]{escape(' > '.join(hit.breadcrumb))}[/dim]")

    def show_related(self, result: TraversalResult) -> None:
        """Display a traversal result as a tree rooted at the source node."""
        source = result.source_node
        tree = Tree(f"[bold cyan]{escape(source.name)}[/bold cyan] [dim]({source.id})[/dim]")
        branches: dict[str, Tree] = {source.id: tree}

        for related in result.related:
            rel = related.relationship
            parent_id = rel.path[-2] if len(rel.path) >= 2 else source.id
            parent = branches.get(parent_id, tree)
            branches[related.id] = parent.add(
                f"[bold]{escape(related.name)}[/bold] [dim]({related.id})[/dim] "
                f"[cyan]{rel.type.value}/{rel.direction.value}[/cyan] "
                f"[dim]d={rel.distance}[/dim]"
            )

        self.console.print(tree)
        if result.truncated:
            self.warning(f"Result truncated at {result.count} nodes")

    def show_diagnostics(self, skipped: list[Skipped]) -> None:
        """Display sub-operations skipped during assembly."""
        if not skipped:
            self.info("No skipped operations")
            return

        table = Table(title="Skipped Operations", border_style="yellow")
        table.add_column("Phase", style="bold")
        table.add_column("Node", style="cyan")
        table.add_column("Reason")
        for item in skipped:
            table.add_row(item.phase, escape(item.node_id), escape(item.reason))
        self.err.print(table)
