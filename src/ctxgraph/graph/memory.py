"""In-memory node store over a NetworkX multigraph.

Node attributes: ``name``, ``tags``, ``description``, ``created`` and
``updated`` (epoch ms), ``fields`` (list of ``(field_name, value)`` pairs in
display order). Edge attribute: ``type`` (a relationship type value).
"""

from __future__ import annotations

import networkx as nx

from ctxgraph.exceptions import NodeNotFoundError
from ctxgraph.graph.models import (
    Direction,
    Edge,
    FieldValue,
    Node,
    NodeContent,
    RelationshipType,
    SearchHit,
)
from ctxgraph.graph.store import NodeStore, ms_to_datetime, render_node_markdown


class MemoryNodeStore(NodeStore):
    """Node store backed by an ``nx.MultiDiGraph``.

    Usage:
        store = MemoryNodeStore(SqliteNodeStore(db_path).load_graph())
        store.get_node("abc123")
    """

    kind = "memory"

    def __init__(self, graph: nx.MultiDiGraph | None = None) -> None:
        self.graph = graph if graph is not None else nx.MultiDiGraph()

    def _data(self, node_id: str) -> dict:
        if not self.graph.has_node(node_id):
            raise NodeNotFoundError(node_id)
        return self.graph.nodes[node_id]

    def _tags(self, node_id: str) -> list[str]:
        return sorted(set(self.graph.nodes[node_id].get("tags", [])))

    def search(
        self,
        text: str,
        limit: int = 10,
        created_after: int | None = None,
        created_before: int | None = None,
        updated_after: int | None = None,
        updated_before: int | None = None,
    ) -> list[SearchHit]:
        needle = text.lower()
        ranked: list[tuple[int, int, str]] = []

        for node_id, data in self.graph.nodes(data=True):
            name = data.get("name", "")
            lowered = name.lower()
            if needle not in lowered:
                continue
            created = data.get("created")
            updated = data.get("updated")
            if created_after is not None and (created is None or created < created_after):
                continue
            if created_before is not None and (created is None or created > created_before):
                continue
            if updated_after is not None and (updated is None or updated < updated_after):
                continue
            if updated_before is not None and (updated is None or updated > updated_before):
                continue

            if lowered == needle:
                bucket = 0
            elif lowered.startswith(needle):
                bucket = 1
            else:
                bucket = 2
            ranked.append((bucket, len(name), node_id))

        ranked.sort()
        return [
            SearchHit(
                id=node_id,
                name=self.graph.nodes[node_id].get("name", "") or "(unnamed)",
                tags=self._tags(node_id),
                rank=float(bucket),
            )
            for bucket, _, node_id in ranked[:limit]
        ]

    def get_node(self, node_id: str) -> Node:
        data = self._data(node_id)
        return Node(
            id=node_id,
            name=data.get("name", "") or "(unnamed)",
            tags=self._tags(node_id),
            created=ms_to_datetime(data.get("created")),
            updated=ms_to_datetime(data.get("updated")),
        )

    def _children(self, node_id: str) -> list[str]:
        children = {
            target
            for _, target, data in self.graph.out_edges(node_id, data=True)
            if data.get("type") == RelationshipType.CHILD.value
        }
        return sorted(children)

    def read_node(self, node_id: str, depth: int = 0) -> NodeContent:
        data = self._data(node_id)
        name = data.get("name", "") or "(unnamed)"
        tags = self._tags(node_id)
        children = self._children(node_id)
        content = NodeContent(
            id=node_id,
            name=name,
            tags=tags,
            markdown=render_node_markdown(
                name,
                tags,
                data.get("description", ""),
                [self.graph.nodes[c].get("name", "") or "(unnamed)" for c in children],
            ),
        )
        if depth > 0 and children:
            content.children = [self.read_node(c, depth - 1) for c in children]
        return content

    def edges(
        self,
        node_id: str,
        direction: Direction,
        types: set[RelationshipType],
    ) -> list[Edge]:
        self._data(node_id)
        wanted = {t.value for t in types}
        result: list[Edge] = []

        if direction in (Direction.OUT, Direction.BOTH):
            for source, target, data in self.graph.out_edges(node_id, data=True):
                if data.get("type") in wanted:
                    result.append(
                        Edge(source=source, target=target, type=RelationshipType(data["type"]))
                    )
        if direction in (Direction.IN, Direction.BOTH):
            for source, target, data in self.graph.in_edges(node_id, data=True):
                if data.get("type") in wanted:
                    result.append(
                        Edge(source=source, target=target, type=RelationshipType(data["type"]))
                    )
        return result

    def get_field_values(self, node_id: str) -> list[FieldValue]:
        data = self._data(node_id)
        # Stable sort keeps value order within a field
        pairs = sorted(data.get("fields", []), key=lambda pair: pair[0])
        return [FieldValue(field_name=name, value_text=value) for name, value in pairs]

    def get_created_timestamp(self, node_id: str) -> int | None:
        created = self._data(node_id).get("created")
        return int(created) if created is not None else None
