"""Bounded-depth graph traversal over a node store.

Level-by-level BFS from a single source node. Each discovered node records
the edge that discovered it and the path from the source, so distances are
true shortest hop counts under the active type/direction filter.

Ordering is fixed: the frontier is expanded in ascending node-id order and
each frontier node's candidates are visited by (neighbor id, direction,
type), "out" before "in". Two runs over an unchanged graph therefore
produce identical results, including which path wins a tie.
"""

from __future__ import annotations

import logging

from ctxgraph.graph.models import (
    Direction,
    RelatedNode,
    Relationship,
    RelationshipType,
    TraversalQuery,
    TraversalResult,
)
from ctxgraph.graph.store import NodeStore

logger = logging.getLogger("ctxgraph.graph")

_DIRECTION_ORDER = {Direction.OUT: 0, Direction.IN: 1}
_TYPE_ORDER = {t: i for i, t in enumerate(RelationshipType)}


class GraphTraversal:
    """Traversal engine.

    Usage:
        traversal = GraphTraversal(store)
        result = traversal.traverse(TraversalQuery(node_id="abc123", max_depth=2))
    """

    def __init__(self, store: NodeStore) -> None:
        self.store = store

    def traverse(self, query: TraversalQuery) -> TraversalResult:
        """Walk outward from ``query.node_id``.

        Raises:
            NodeNotFoundError: if the source node does not exist.
        """
        source = self.store.get_node(query.node_id)
        types = set(query.types)

        related: list[RelatedNode] = []
        paths: dict[str, list[str]] = {source.id: [source.id]}
        frontier = [source.id]
        truncated = False
        depth = 0

        while frontier and depth < query.max_depth and not truncated:
            depth += 1
            next_frontier: list[str] = []

            for node_id in sorted(frontier):
                for neighbor, rel_type, direction in self._candidates(
                    node_id, query.direction, types
                ):
                    if neighbor in paths:
                        continue
                    if len(related) >= query.limit:
                        truncated = True
                        break

                    path = paths[node_id] + [neighbor]
                    paths[neighbor] = path
                    node = self.store.get_node(neighbor)
                    related.append(
                        RelatedNode(
                            id=node.id,
                            name=node.name,
                            tags=node.tags,
                            relationship=Relationship(
                                type=rel_type,
                                direction=direction,
                                distance=depth,
                                path=path,
                            ),
                        )
                    )
                    next_frontier.append(neighbor)

                if truncated:
                    break

            frontier = next_frontier

        if truncated:
            logger.debug(
                "Traversal from %s truncated at %d nodes (depth %d)",
                source.id, len(related), depth,
            )

        return TraversalResult(source_node=source, related=related, truncated=truncated)

    def _candidates(
        self,
        node_id: str,
        direction: Direction,
        types: set[RelationshipType],
    ) -> list[tuple[str, RelationshipType, Direction]]:
        """Neighbors of ``node_id`` as (neighbor, type, direction), sorted."""
        candidates: set[tuple[str, RelationshipType, Direction]] = set()

        for edge in self.store.edges(node_id, direction, types):
            if edge.source == node_id and direction in (Direction.OUT, Direction.BOTH):
                candidates.add((edge.target, edge.type, Direction.OUT))
            if edge.target == node_id and direction in (Direction.IN, Direction.BOTH):
                candidates.add((edge.source, edge.type, Direction.IN))

        return sorted(
            candidates,
            key=lambda c: (c[0], _DIRECTION_ORDER[c[2]], _TYPE_ORDER[c[1]]),
        )
