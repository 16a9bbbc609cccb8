"""Data models for nodes, edges and graph traversal."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, field_validator

from ctxgraph.exceptions import ValidationError


class RelationshipType(str, Enum):
    """Types of directed links between nodes."""

    CHILD = "child"
    PARENT = "parent"
    REFERENCE = "reference"
    FIELD = "field"


class Direction(str, Enum):
    """Which side of an edge the traversal is allowed to walk from."""

    OUT = "out"
    IN = "in"
    BOTH = "both"


ALL_RELATIONSHIP_TYPES: tuple[RelationshipType, ...] = tuple(RelationshipType)


class Node(BaseModel):
    """A node in the knowledge graph."""

    id: str
    name: str
    tags: list[str] = Field(default_factory=list)
    created: datetime | None = None
    updated: datetime | None = None


class Edge(BaseModel):
    """A typed, directed link. Only produced transiently during traversal."""

    source: str
    target: str
    type: RelationshipType


class SearchHit(BaseModel):
    """A single search result from the node store."""

    id: str
    name: str
    tags: list[str] = Field(default_factory=list)
    rank: float | None = None
    breadcrumb: list[str] | None = None


class NodeContent(BaseModel):
    """Readable content of a node, optionally with children."""

    id: str
    name: str
    markdown: str
    tags: list[str] = Field(default_factory=list)
    children: list[NodeContent] | None = None


class FieldValue(BaseModel):
    """One value of a named field attached to a node."""

    field_name: str
    value_text: str


class TraversalQuery(BaseModel):
    """Parameters for a bounded-depth traversal from a single node."""

    node_id: str
    direction: Direction = Direction.BOTH
    types: list[RelationshipType] = Field(
        default_factory=lambda: list(ALL_RELATIONSHIP_TYPES)
    )
    max_depth: int = 1
    limit: int = 50

    @field_validator("max_depth", "limit")
    @classmethod
    def _at_least_one(cls, value: int, info) -> int:
        # Not a ValueError, so pydantic lets it through unwrapped
        if value < 1:
            raise ValidationError(f"{info.field_name} must be >= 1, got {value}")
        return value


class Relationship(BaseModel):
    """How a related node was discovered."""

    type: RelationshipType
    direction: Direction  # out or in, never both
    distance: int
    path: list[str] = Field(default_factory=list)  # source id ... this id


class RelatedNode(BaseModel):
    """A node reached by traversal, with its discovering relationship."""

    id: str
    name: str
    tags: list[str] = Field(default_factory=list)
    relationship: Relationship


class TraversalResult(BaseModel):
    """Outcome of a single traversal."""

    source_node: Node
    related: list[RelatedNode] = Field(default_factory=list)
    truncated: bool = False

    @property
    def count(self) -> int:
        return len(self.related)
