"""Relevance scoring for context nodes.

Combines graph distance, optional semantic similarity, and recency:

    with embeddings:     0.40 * distance + 0.35 * semantic + 0.25 * recency
    without embeddings:  0.60 * distance + 0.40 * recency

where distance = 1 / (hops + 1) and recency = exp(-age_days / 30).
"""

from __future__ import annotations

import math
from datetime import datetime, timezone

from ctxgraph.context.models import RelevanceScore, ScoreComponents
from ctxgraph.exceptions import ValidationError

WEIGHTS_WITH_EMBEDDINGS: dict[str, float] = {
    "distance": 0.4,
    "semantic": 0.35,
    "recency": 0.25,
}

WEIGHTS_WITHOUT_EMBEDDINGS: dict[str, float] = {
    "distance": 0.6,
    "recency": 0.4,
}

RECENCY_DECAY_DAYS = 30.0
NEUTRAL_RECENCY = 0.5

Timestamp = datetime | int | float | str


def score_node(
    distance: int,
    semantic_sim: float | None = None,
    created: Timestamp | None = None,
    *,
    embeddings_available: bool = False,
    now: datetime | None = None,
) -> RelevanceScore:
    """Score a node by distance, semantic similarity, and recency.

    Args:
        distance: Hops from the nearest seed (0 = seed itself).
        semantic_sim: Similarity to the query in [0, 1], if computed.
        created: Creation time as a datetime, epoch ms, or ISO-8601 string.
        embeddings_available: Whether semantic_sim may be used at all.
        now: Reference time for recency (defaults to the current time).

    Returns:
        RelevanceScore with ``total`` clamped to [0, 1].
    """
    if isinstance(distance, bool) or not isinstance(distance, int) or distance < 0:
        raise ValidationError(f"distance must be a non-negative integer, got {distance!r}")

    distance_score = 1 / (distance + 1)
    recency = recency_score(created, now=now)

    if embeddings_available and semantic_sim is not None:
        w = WEIGHTS_WITH_EMBEDDINGS
        total = (
            w["distance"] * distance_score
            + w["semantic"] * semantic_sim
            + w["recency"] * recency
        )
        components = ScoreComponents(
            graph_distance=distance_score, semantic_sim=semantic_sim, recency=recency
        )
    else:
        w = WEIGHTS_WITHOUT_EMBEDDINGS
        total = w["distance"] * distance_score + w["recency"] * recency
        components = ScoreComponents(graph_distance=distance_score, recency=recency)

    return RelevanceScore(total=min(1.0, max(0.0, total)), components=components)


def recency_score(created: Timestamp | None, now: datetime | None = None) -> float:
    """Exponential decay with age; 0.5 when the timestamp is missing or bad."""
    when = _to_datetime(created)
    if when is None:
        return NEUTRAL_RECENCY

    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    age_days = max(0.0, (now - when).total_seconds() / 86400)
    return math.exp(-age_days / RECENCY_DECAY_DAYS)


def _to_datetime(value: Timestamp | None) -> datetime | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None
