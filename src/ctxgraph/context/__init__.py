"""Budgeted context assembly over a knowledge graph.

Assembles relevance-scored, token-budgeted context documents starting from
a query or a node id.

Usage:
    from ctxgraph.context import ContextAssembler
    from ctxgraph.graph import SqliteNodeStore

    assembler = ContextAssembler(SqliteNodeStore("index.db"))
    doc = assembler.assemble("quarterly planning", max_tokens=4000)
    print(doc.render_markdown())
"""

from ctxgraph.context.assembler import ContextAssembler
from ctxgraph.context.lens import LensRegistry
from ctxgraph.context.models import ContextDocument, ContextNode, LensConfig, LensType

__all__ = [
    "ContextAssembler",
    "ContextDocument",
    "ContextNode",
    "LensConfig",
    "LensRegistry",
    "LensType",
]
