"""Shared test fixtures for ctxgraph."""

from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from pathlib import Path

import networkx as nx
import pytest

from ctxgraph.config import CTXGRAPH_DIR, DEFAULT_DB_FILE
from ctxgraph.graph.memory import MemoryNodeStore
from ctxgraph.graph.store import INDEX_SCHEMA, SqliteNodeStore

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)
NOW_MS = int(NOW.timestamp() * 1000)
DAY_MS = 86_400_000


def make_graph(nodes: dict[str, dict], edges: list[tuple[str, str, str]]) -> nx.MultiDiGraph:
    """Build a MemoryNodeStore graph from ``{id: attrs}`` and ``(src, dst, type)``."""
    graph = nx.MultiDiGraph()
    for node_id, attrs in nodes.items():
        data = {"name": node_id, "tags": [], "fields": []}
        data.update(attrs)
        graph.add_node(node_id, **data)
    for source, target, rel_type in edges:
        graph.add_edge(source, target, type=rel_type)
    return graph


@pytest.fixture
def graph_factory():
    """Build ad-hoc graphs: ``graph_factory({id: attrs}, [(src, dst, type)])``."""
    return make_graph


@pytest.fixture
def now_ms() -> int:
    """Reference time of the sample index, in epoch ms."""
    return NOW_MS


@pytest.fixture
def tree_graph() -> nx.MultiDiGraph:
    """S has children C1 and C2; C1 has child G1."""
    return make_graph(
        {
            "seed0001": {"name": "Seed"},
            "child001": {"name": "Child One"},
            "child002": {"name": "Child Two"},
            "grand001": {"name": "Grandchild"},
        },
        [
            ("seed0001", "child001", "child"),
            ("seed0001", "child002", "child"),
            ("child001", "grand001", "child"),
        ],
    )


@pytest.fixture
def tree_store(tree_graph: nx.MultiDiGraph) -> MemoryNodeStore:
    return MemoryNodeStore(tree_graph)


def write_index(db_path: Path) -> Path:
    """Write a small project-planning index to ``db_path``."""
    conn = sqlite3.connect(db_path)
    conn.executescript(INDEX_SCHEMA)
    conn.executemany(
        "INSERT INTO nodes (id, name, description, created, updated) VALUES (?, ?, ?, ?, ?)",
        [
            ("proj0001", "Product Launch", "Ship v2 in March.", NOW_MS - 2 * DAY_MS, NOW_MS),
            ("task0001", "Launch Checklist", "Docs and release notes.", NOW_MS - DAY_MS, None),
            ("meet0001", "Kickoff Meeting", "Agreed on the date.", NOW_MS - 60 * DAY_MS, None),
            ("pers0001", "Dana", None, None, None),
            ("budg0001", "Launch", "Budget for the launch.", NOW_MS - 5 * DAY_MS, None),
        ],
    )
    conn.executemany(
        'INSERT INTO "references" (from_node, to_node, reference_type) VALUES (?, ?, ?)',
        [
            ("proj0001", "task0001", "child"),
            ("proj0001", "meet0001", "child"),
            ("meet0001", "pers0001", "inline_ref"),
            ("task0001", "ghost001", "reference"),  # dangling
            ("proj0001", "budg0001", "field_value"),
        ],
    )
    conn.executemany(
        "INSERT INTO tag_applications (data_node_id, tag_id, tag_name) VALUES (?, ?, ?)",
        [
            ("proj0001", "t1", "project"),
            ("proj0001", "t1", "project"),  # duplicate application
            ("task0001", "t2", "task"),
            ("meet0001", "t3", "meeting"),
            ("pers0001", "t4", "person"),
        ],
    )
    conn.executemany(
        "INSERT INTO field_values (parent_id, field_name, value_text, value_order) "
        "VALUES (?, ?, ?, ?)",
        [
            ("proj0001", "status", "active", 0),
            ("proj0001", "owner", "Lee", 1),
            ("proj0001", "owner", "Dana", 0),
            ("task0001", "Status", "open", 0),
        ],
    )
    conn.commit()
    conn.close()
    return db_path


@pytest.fixture
def index_db(tmp_path: Path) -> Path:
    """A populated SQLite index outside any project."""
    return write_index(tmp_path / "index.db")


@pytest.fixture
def sqlite_store(index_db: Path):
    store = SqliteNodeStore(index_db)
    yield store
    store.close()


@pytest.fixture
def tmp_project(tmp_path: Path) -> Path:
    """A project directory with .ctxgraph/ and the index in its default place."""
    project = tmp_path / "project"
    cg_dir = project / CTXGRAPH_DIR
    cg_dir.mkdir(parents=True)
    write_index(cg_dir / DEFAULT_DB_FILE)
    return project
