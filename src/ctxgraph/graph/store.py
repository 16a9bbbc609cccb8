"""Read-only access to the node index.

``NodeStore`` is the interface the traversal engine and the context
assembler depend on. ``SqliteNodeStore`` reads the SQLite index produced by
the export/sync tooling; see ``INDEX_SCHEMA`` for the tables it expects.
"""

from __future__ import annotations

import logging
import sqlite3
from abc import ABC, abstractmethod
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path

import networkx as nx

from ctxgraph.exceptions import BackendUnavailableError, GraphError, NodeNotFoundError
from ctxgraph.graph.models import (
    Direction,
    Edge,
    FieldValue,
    Node,
    NodeContent,
    RelationshipType,
    SearchHit,
)

logger = logging.getLogger("ctxgraph.graph")

INDEX_SCHEMA = """
    CREATE TABLE IF NOT EXISTS nodes (
        id TEXT PRIMARY KEY,
        name TEXT,
        description TEXT,
        created INTEGER,                 -- epoch ms
        updated INTEGER
    );

    CREATE TABLE IF NOT EXISTS "references" (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        from_node TEXT NOT NULL,
        to_node TEXT NOT NULL,
        reference_type TEXT NOT NULL     -- child, parent, inline_ref, field, ...
    );

    CREATE TABLE IF NOT EXISTS tag_applications (
        data_node_id TEXT,
        tag_id TEXT,
        tag_name TEXT
    );

    CREATE TABLE IF NOT EXISTS field_values (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        parent_id TEXT NOT NULL,
        field_name TEXT NOT NULL,
        value_text TEXT NOT NULL,
        value_order INTEGER DEFAULT 0
    );

    CREATE INDEX IF NOT EXISTS idx_nodes_name ON nodes(name);
    CREATE INDEX IF NOT EXISTS idx_refs_from ON "references"(from_node);
    CREATE INDEX IF NOT EXISTS idx_refs_to ON "references"(to_node);
    CREATE INDEX IF NOT EXISTS idx_tags_node ON tag_applications(data_node_id);
    CREATE INDEX IF NOT EXISTS idx_field_values_parent ON field_values(parent_id);
"""

# Raw reference types written by the indexer -> relationship types
_REFERENCE_TYPES: dict[str, RelationshipType] = {
    "child": RelationshipType.CHILD,
    "parent": RelationshipType.PARENT,
    "reference": RelationshipType.REFERENCE,
    "inline_ref": RelationshipType.REFERENCE,
    "field": RelationshipType.FIELD,
    "field_value": RelationshipType.FIELD,
}


def ms_to_datetime(value: int | float | None) -> datetime | None:
    """Convert an epoch-milliseconds timestamp to an aware UTC datetime."""
    if value is None:
        return None
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


def render_node_markdown(
    name: str, tags: list[str], description: str = "", children: list[str] | None = None
) -> str:
    """Render the short markdown body used as a node's content."""
    tag_str = f" #{' #'.join(tags)}" if tags else ""
    lines = [f"{name}{tag_str}"]
    if description:
        lines.append(description)
    for child in children or []:
        lines.append(f"- {child}")
    return "\n".join(lines)


class NodeStore(ABC):
    """Read-only node store interface."""

    kind: str = "unknown"

    @abstractmethod
    def search(
        self,
        text: str,
        limit: int = 10,
        created_after: int | None = None,
        created_before: int | None = None,
        updated_after: int | None = None,
        updated_before: int | None = None,
    ) -> list[SearchHit]:
        """Case-insensitive name search. Timestamps are epoch ms."""

    @abstractmethod
    def get_node(self, node_id: str) -> Node:
        """Get a node by id. Raises NodeNotFoundError."""

    @abstractmethod
    def read_node(self, node_id: str, depth: int = 0) -> NodeContent:
        """Read a node's content, recursing into children up to ``depth``."""

    @abstractmethod
    def edges(
        self,
        node_id: str,
        direction: Direction,
        types: set[RelationshipType],
    ) -> list[Edge]:
        """Edges touching ``node_id`` on the given side, restricted to ``types``."""

    @abstractmethod
    def get_field_values(self, node_id: str) -> list[FieldValue]:
        """Field values ordered by field name, then value order."""

    @abstractmethod
    def get_created_timestamp(self, node_id: str) -> int | None:
        """Creation time in epoch ms, or None when unknown."""

    def close(self) -> None:
        """Release any resources held by the store."""

    def __enter__(self) -> NodeStore:
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class SqliteNodeStore(NodeStore):
    """Node store backed by the local SQLite index (opened read-only)."""

    kind = "sqlite"

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        self._conn: sqlite3.Connection | None = None

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            if not self.db_path.exists():
                raise BackendUnavailableError(f"Index database not found: {self.db_path}")
            try:
                self._conn = sqlite3.connect(f"file:{self.db_path}?mode=ro", uri=True)
            except sqlite3.Error as e:
                raise BackendUnavailableError(
                    f"Cannot open index database {self.db_path}: {e}"
                ) from e
            self._conn.row_factory = sqlite3.Row
        return self._conn

    def _query(self, sql: str, params: tuple | list = ()) -> list[sqlite3.Row]:
        conn = self._get_conn()
        try:
            return conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise GraphError(f"Index query failed: {e}") from e

    def _tags(self, node_id: str) -> list[str]:
        rows = self._query(
            "SELECT DISTINCT tag_name FROM tag_applications "
            "WHERE data_node_id = ? AND tag_name IS NOT NULL ORDER BY tag_name",
            (node_id,),
        )
        return [row["tag_name"] for row in rows]

    def _node_row(self, node_id: str) -> sqlite3.Row:
        rows = self._query(
            "SELECT id, name, description, created, updated FROM nodes WHERE id = ?",
            (node_id,),
        )
        if not rows:
            raise NodeNotFoundError(node_id)
        return rows[0]

    # ------------------------------------------------------------------
    # NodeStore
    # ------------------------------------------------------------------

    def search(
        self,
        text: str,
        limit: int = 10,
        created_after: int | None = None,
        created_before: int | None = None,
        updated_after: int | None = None,
        updated_before: int | None = None,
    ) -> list[SearchHit]:
        escaped = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        conditions = ["name LIKE ? ESCAPE '\\'"]
        params: list = [f"%{escaped}%"]

        for column, op, value in (
            ("created", ">=", created_after),
            ("created", "<=", created_before),
            ("updated", ">=", updated_after),
            ("updated", "<=", updated_before),
        ):
            if value is not None:
                conditions.append(f"{column} {op} ?")
                params.append(value)

        where = " AND ".join(conditions)
        rows = self._query(
            f"""SELECT id, name,
                       CASE WHEN lower(name) = lower(?) THEN 0
                            WHEN name LIKE ? ESCAPE '\\' THEN 1
                            ELSE 2 END AS bucket
                FROM nodes
                WHERE {where}
                ORDER BY bucket, length(name), id
                LIMIT ?""",
            [text, f"{escaped}%"] + params + [limit],
        )
        return [
            SearchHit(
                id=row["id"],
                name=row["name"] or "(unnamed)",
                tags=self._tags(row["id"]),
                rank=float(row["bucket"]),
            )
            for row in rows
        ]

    def get_node(self, node_id: str) -> Node:
        row = self._node_row(node_id)
        return Node(
            id=row["id"],
            name=row["name"] or "(unnamed)",
            tags=self._tags(node_id),
            created=ms_to_datetime(row["created"]),
            updated=ms_to_datetime(row["updated"]),
        )

    def read_node(self, node_id: str, depth: int = 0) -> NodeContent:
        row = self._node_row(node_id)
        name = row["name"] or "(unnamed)"
        tags = self._tags(node_id)
        child_rows = self._query(
            """SELECT n.id, n.name FROM "references" r
               JOIN nodes n ON n.id = r.to_node
               WHERE r.from_node = ? AND r.reference_type = 'child'
               ORDER BY n.id""",
            (node_id,),
        )
        content = NodeContent(
            id=node_id,
            name=name,
            tags=tags,
            markdown=render_node_markdown(
                name,
                tags,
                row["description"] or "",
                [r["name"] or "(unnamed)" for r in child_rows],
            ),
        )
        if depth > 0 and child_rows:
            content.children = [self.read_node(r["id"], depth - 1) for r in child_rows]
        return content

    def edges(
        self,
        node_id: str,
        direction: Direction,
        types: set[RelationshipType],
    ) -> list[Edge]:
        if direction == Direction.BOTH:
            return self.edges(node_id, Direction.OUT, types) + self.edges(
                node_id, Direction.IN, types
            )

        # Only edges whose far end is a known node
        if direction == Direction.OUT:
            sql = """SELECT r.from_node, r.to_node, r.reference_type FROM "references" r
                     JOIN nodes n ON n.id = r.to_node
                     WHERE r.from_node = ?"""
        else:
            sql = """SELECT r.from_node, r.to_node, r.reference_type FROM "references" r
                     JOIN nodes n ON n.id = r.from_node
                     WHERE r.to_node = ?"""

        result: list[Edge] = []
        for row in self._query(sql, (node_id,)):
            rel_type = _REFERENCE_TYPES.get(row["reference_type"])
            if rel_type is None or rel_type not in types:
                continue
            result.append(Edge(source=row["from_node"], target=row["to_node"], type=rel_type))
        return result

    def get_field_values(self, node_id: str) -> list[FieldValue]:
        rows = self._query(
            """SELECT field_name, value_text FROM field_values
               WHERE parent_id = ?
               ORDER BY field_name, value_order""",
            (node_id,),
        )
        return [
            FieldValue(field_name=row["field_name"], value_text=row["value_text"])
            for row in rows
        ]

    def get_created_timestamp(self, node_id: str) -> int | None:
        rows = self._query("SELECT created FROM nodes WHERE id = ?", (node_id,))
        if not rows or rows[0]["created"] is None:
            return None
        return int(rows[0]["created"])

    # ------------------------------------------------------------------
    # Whole-graph views
    # ------------------------------------------------------------------

    def load_graph(self) -> nx.MultiDiGraph:
        """Load the whole index into a NetworkX multigraph."""
        graph = nx.MultiDiGraph()

        for row in self._query("SELECT id, name, description, created, updated FROM nodes"):
            graph.add_node(
                row["id"],
                name=row["name"] or "(unnamed)",
                description=row["description"] or "",
                created=row["created"],
                updated=row["updated"],
                tags=[],
                fields=[],
            )

        for row in self._query(
            "SELECT data_node_id, tag_name FROM tag_applications ORDER BY tag_name"
        ):
            if graph.has_node(row["data_node_id"]) and row["tag_name"]:
                tags = graph.nodes[row["data_node_id"]]["tags"]
                if row["tag_name"] not in tags:
                    tags.append(row["tag_name"])

        for row in self._query(
            "SELECT parent_id, field_name, value_text FROM field_values "
            "ORDER BY field_name, value_order"
        ):
            if graph.has_node(row["parent_id"]):
                graph.nodes[row["parent_id"]]["fields"].append(
                    (row["field_name"], row["value_text"])
                )

        for row in self._query(
            'SELECT from_node, to_node, reference_type FROM "references" ORDER BY id'
        ):
            rel_type = _REFERENCE_TYPES.get(row["reference_type"])
            if rel_type is None:
                continue
            if graph.has_node(row["from_node"]) and graph.has_node(row["to_node"]):
                graph.add_edge(row["from_node"], row["to_node"], type=rel_type.value)

        logger.debug(
            "Loaded graph from %s: %d nodes, %d edges",
            self.db_path, graph.number_of_nodes(), graph.number_of_edges(),
        )
        return graph

    def stats(self) -> dict:
        """Node/edge counts for the index."""
        graph = self.load_graph()
        edge_types = Counter(data["type"] for _, _, data in graph.edges(data=True))
        tagged = sum(1 for _, data in graph.nodes(data=True) if data["tags"])
        return {
            "nodes": graph.number_of_nodes(),
            "edges": graph.number_of_edges(),
            "tagged_nodes": tagged,
            "components": (
                nx.number_weakly_connected_components(graph)
                if graph.number_of_nodes()
                else 0
            ),
            "edge_types": dict(edge_types),
        }

    def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None
