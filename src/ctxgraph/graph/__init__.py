"""Knowledge graph access: node stores and bounded traversal."""

from ctxgraph.graph.memory import MemoryNodeStore
from ctxgraph.graph.store import NodeStore, SqliteNodeStore
from ctxgraph.graph.traversal import GraphTraversal

__all__ = ["NodeStore", "SqliteNodeStore", "MemoryNodeStore", "GraphTraversal"]
