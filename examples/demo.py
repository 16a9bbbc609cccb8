#!/usr/bin/env python3
"""Demo: Using ctxgraph as a Python library.

Builds a small in-memory knowledge graph, explores it, and assembles a
token-budgeted context document from it.
"""

import networkx as nx

from ctxgraph.context import ContextAssembler
from ctxgraph.graph import GraphTraversal, MemoryNodeStore
from ctxgraph.graph.models import Direction, TraversalQuery

DAY_MS = 86_400_000
NOW_MS = 1_767_225_600_000  # 2026-01-01


def build_graph() -> nx.MultiDiGraph:
    graph = nx.MultiDiGraph()
    graph.add_node(
        "launch01", name="Product Launch", tags=["project"],
        description="Everything needed to ship v2.", created=NOW_MS - 3 * DAY_MS,
        fields=[("status", "active"), ("due", "2026-03-01")],
    )
    graph.add_node(
        "check001", name="Launch Checklist", tags=["task"],
        description="Docs, release notes, announcement.", created=NOW_MS - DAY_MS,
        fields=[("status", "open")],
    )
    graph.add_node(
        "notes001", name="Kickoff Meeting Notes", tags=["meeting"],
        description="Agreed on a March date.", created=NOW_MS - 40 * DAY_MS,
    )
    graph.add_node("person01", name="Dana", tags=["person"])
    graph.add_edge("launch01", "check001", type="child")
    graph.add_edge("launch01", "notes001", type="child")
    graph.add_edge("notes001", "person01", type="reference")
    return graph


def main():
    store = MemoryNodeStore(build_graph())

    # 1. Search
    print("--- Searching 'launch' ---")
    for hit in store.search("launch"):
        print(f"  {hit.name} ({hit.id}) tags={hit.tags}")

    # 2. Raw traversal
    print("\n--- Related to 'launch01' (depth 2) ---")
    result = GraphTraversal(store).traverse(
        TraversalQuery(node_id="launch01", direction=Direction.BOTH, max_depth=2)
    )
    for related in result.related:
        rel = related.relationship
        print(f"  {'  ' * rel.distance}{related.name} via {rel.type.value}/{rel.direction.value}")

    # 3. Budgeted context
    print("\n--- Context for 'Product Launch' (planning lens) ---")
    assembler = ContextAssembler(store, workspace="demo")
    doc = assembler.assemble("Product Launch", lens="planning", max_tokens=600)
    print(doc.render_markdown())


if __name__ == "__main__":
    main()
