"""Data models for budgeted context assembly."""

from __future__ import annotations

import math
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from ctxgraph.graph.models import Direction, RelationshipType


class LensType(str, Enum):
    """Named traversal presets."""

    GENERAL = "general"
    WRITING = "writing"
    CODING = "coding"
    PLANNING = "planning"
    MEETING_PREP = "meeting-prep"


class LensConfig(BaseModel):
    """Traversal and field-inclusion preset for one use case."""

    name: str
    priority_types: list[RelationshipType]
    max_depth: int
    include_fields: list[str] | None = None  # None = all fields
    boost_tags: list[str] = Field(default_factory=list)


class PathStep(BaseModel):
    """One hop on the path from a seed to a context node."""

    node_id: str
    type: RelationshipType
    direction: Direction


class ScoreComponents(BaseModel):
    graph_distance: float
    semantic_sim: float | None = None
    recency: float


class RelevanceScore(BaseModel):
    """Relevance of a node, with the components it was built from."""

    total: float
    components: ScoreComponents


class ContextNode(BaseModel):
    """A node in the assembled context."""

    id: str
    name: str
    content: str = ""
    tags: list[str] = Field(default_factory=list)
    fields: dict[str, str | list[str]] | None = None
    score: float = 0.0
    distance: int = 0  # hops from the nearest seed
    path: list[PathStep] = Field(default_factory=list)
    created: datetime | None = None
    token_estimate: int = 0
    summarized: bool = False  # content truncated to fit the budget


class OverflowSummary(BaseModel):
    """A node dropped for budget reasons, kept for transparency."""

    id: str
    name: str
    tags: list[str] = Field(default_factory=list)
    score: float = 0.0


class TokenBudget(BaseModel):
    max_tokens: int = 4000
    header_reserve: int = 200
    min_per_node: int = 50


class TokenUsage(BaseModel):
    budget: int
    used: int = 0
    utilization: float = 0.0
    nodes_included: int = 0
    nodes_summarized: int = 0
    nodes_overflowed: int = 0


class Skipped(BaseModel):
    """A sub-operation that failed and was skipped during assembly."""

    phase: str  # "traverse", "fields", "content", "created"
    node_id: str
    reason: str


class ContextMeta(BaseModel):
    query: str
    workspace: str
    lens: str
    tokens: TokenUsage
    assembled_at: datetime
    backend: str
    embeddings_available: bool = False
    partial: bool = False  # a phase deadline cut work short
    warnings: list[str] = Field(default_factory=list)


class ContextDocument(BaseModel):
    """The assembled context: included nodes, overflow, and metadata."""

    meta: ContextMeta
    nodes: list[ContextNode] = Field(default_factory=list)
    overflow: list[OverflowSummary] = Field(default_factory=list)
    # Debug-only; never serialized
    diagnostics: list[Skipped] = Field(default_factory=list, exclude=True)

    def to_json(self) -> str:
        return self.model_dump_json(indent=2)

    def render_markdown(self) -> str:
        """Render the document as hierarchical markdown for LLM consumption."""
        meta = self.meta
        tokens = meta.tokens
        lines: list[str] = [
            f"# Context: {meta.query}",
            "",
            f"> Assembled {meta.assembled_at.isoformat()} | Lens: {meta.lens} "
            f"| Backend: {meta.backend}",
            f"> Tokens: {tokens.used}/{tokens.budget} ({round(tokens.utilization * 100)}%) "
            f"| Nodes: {tokens.nodes_included} included, "
            f"{tokens.nodes_summarized} summarized, {tokens.nodes_overflowed} overflowed",
        ]
        if not meta.embeddings_available:
            lines.append("> Note: Embeddings not available, using distance + recency scoring only")
        for warning in meta.warnings:
            lines.append(f"> Warning: {warning}")
        lines.append("")

        for node in self.nodes:
            tag_str = f" [{', '.join(node.tags)}]" if node.tags else ""
            lines.append(f"## {node.name}{tag_str}")
            lines.append(f"*Score: {node.score:.2f} | Distance: {node.distance}*")
            lines.append("")
            if node.content:
                lines.append(node.content)
                lines.append("")
            if node.fields:
                lines.append("**Fields:**")
                for key, value in node.fields.items():
                    val = ", ".join(value) if isinstance(value, list) else value
                    lines.append(f"- **{key}**: {val}")
                lines.append("")

        if self.overflow:
            lines.extend(["---", "", "## Also Related", ""])
            for item in self.overflow:
                tag_str = f" [{', '.join(item.tags)}]" if item.tags else ""
                lines.append(f"- {item.name}{tag_str} *(score: {item.score:.2f})*")
            lines.append("")

        return "\n".join(lines).strip()


class TokenEstimator:
    """Estimate token counts for text."""

    # Rough heuristic: 1 token ≈ 4 characters
    CHARS_PER_TOKEN = 4

    @classmethod
    def estimate(cls, text: str) -> int:
        """Estimate token count for a string (0 for empty text)."""
        if not text:
            return 0
        return math.ceil(len(text) / cls.CHARS_PER_TOKEN)

    @classmethod
    def chars_for(cls, tokens: int) -> int:
        """Largest character count that still estimates to ``tokens``."""
        return max(0, tokens) * cls.CHARS_PER_TOKEN
