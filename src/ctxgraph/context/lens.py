"""Graph lenses: per-use-case traversal and field presets.

Each lens names the relationship types worth following, how deep to go,
which fields to keep, and which tags deserve a relevance boost.
"""

from __future__ import annotations

from collections.abc import Mapping

from ctxgraph.context.models import ContextNode, LensConfig, LensType
from ctxgraph.exceptions import ValidationError
from ctxgraph.graph.models import RelationshipType

LENS_BOOST = 0.1

DEFAULT_LENSES: dict[str, LensConfig] = {
    LensType.GENERAL.value: LensConfig(
        name=LensType.GENERAL.value,
        priority_types=[
            RelationshipType.CHILD,
            RelationshipType.PARENT,
            RelationshipType.REFERENCE,
            RelationshipType.FIELD,
        ],
        max_depth=3,
    ),
    LensType.WRITING.value: LensConfig(
        name=LensType.WRITING.value,
        priority_types=[RelationshipType.CHILD, RelationshipType.REFERENCE],
        boost_tags=["note", "draft", "writing", "article"],
        max_depth=2,
    ),
    LensType.CODING.value: LensConfig(
        name=LensType.CODING.value,
        priority_types=[RelationshipType.REFERENCE, RelationshipType.FIELD],
        boost_tags=["spec", "architecture", "code", "decision"],
        include_fields=["status", "priority", "assignee"],
        max_depth=3,
    ),
    LensType.PLANNING.value: LensConfig(
        name=LensType.PLANNING.value,
        priority_types=[RelationshipType.CHILD, RelationshipType.FIELD],
        boost_tags=["goal", "milestone", "task", "project"],
        include_fields=["due", "status", "blocked-by"],
        max_depth=4,
    ),
    LensType.MEETING_PREP.value: LensConfig(
        name=LensType.MEETING_PREP.value,
        priority_types=[RelationshipType.REFERENCE, RelationshipType.CHILD],
        boost_tags=["person", "meeting", "action", "agenda"],
        include_fields=["attendees", "date", "status"],
        max_depth=2,
    ),
}


class LensRegistry:
    """Lookup table of lens presets, with optional per-project overrides.

    Usage:
        lenses = LensRegistry(overrides=config.lenses)
        lens = lenses.get("coding")
    """

    def __init__(self, overrides: Mapping[str, LensConfig] | None = None) -> None:
        self._lenses = dict(DEFAULT_LENSES)
        for name, lens in (overrides or {}).items():
            if name not in self._lenses:
                raise ValidationError(
                    f"Unknown lens '{name}'. Must be one of: {', '.join(self.names())}"
                )
            self._lenses[name] = lens.model_copy(update={"name": name})

    def names(self) -> list[str]:
        return [lens.value for lens in LensType]

    def get(self, name: str | LensType) -> LensConfig:
        key = name.value if isinstance(name, LensType) else name
        lens = self._lenses.get(key)
        if lens is None:
            raise ValidationError(
                f"Unknown lens '{key}'. Must be one of: {', '.join(self.names())}"
            )
        return lens


def apply_lens_boosts(nodes: list[ContextNode], lens: LensConfig) -> list[ContextNode]:
    """Add a small score boost to nodes carrying one of the lens's tags."""
    if not lens.boost_tags:
        return nodes

    boost = {tag.lower() for tag in lens.boost_tags}
    boosted = []
    for node in nodes:
        if any(tag.lower() in boost for tag in node.tags):
            node = node.model_copy(update={"score": min(1.0, node.score + LENS_BOOST)})
        boosted.append(node)
    return boosted
