"""Context assembly pipeline.

    Resolve -> Traverse -> Enrich -> Score -> Budget -> Format

1. Resolve: turn the query into seed nodes (direct id lookup or search).
2. Traverse: bounded BFS from every seed, merged by minimum distance.
3. Enrich: field values, content and creation time per node, best effort.
4. Score: distance + recency (+ lens tag boosts), sorted best first.
5. Budget: greedy selection under the token ceiling.
6. Format: the returned ContextDocument renders itself.

Nothing is cached between calls; every ``assemble`` builds its state from
scratch and discards it.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, TypeVar

from ctxgraph.context.budget import prune_to_fit_budget
from ctxgraph.context.lens import LensRegistry, apply_lens_boosts
from ctxgraph.context.models import (
    ContextDocument,
    ContextMeta,
    ContextNode,
    LensConfig,
    PathStep,
    Skipped,
    TokenBudget,
    TokenUsage,
)
from ctxgraph.context.resolve import NodeIdQuery, classify_query
from ctxgraph.context.scoring import score_node
from ctxgraph.exceptions import (
    CtxGraphError,
    NodeNotFoundError,
    PartialFailure,
    ValidationError,
)
from ctxgraph.graph.models import Direction, FieldValue, SearchHit, TraversalQuery
from ctxgraph.graph.store import NodeStore, ms_to_datetime
from ctxgraph.graph.traversal import GraphTraversal

if TYPE_CHECKING:
    from ctxgraph.config import ProjectConfig

logger = logging.getLogger("ctxgraph.context")

T = TypeVar("T")

# Hard cap on traversal depth regardless of request or lens
MAX_DEPTH = 5


@dataclass
class _Collected:
    """A node gathered during traversal, before enrichment."""

    id: str
    name: str
    tags: list[str]
    distance: int
    path: list[PathStep] = field(default_factory=list)


@dataclass
class _RunState:
    """Per-call diagnostics: skipped sub-operations and deadline warnings."""

    strict: bool = False
    skipped: list[Skipped] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    partial: bool = False

    def record(self, phase: str, node_id: str, error: Exception) -> None:
        if self.strict:
            raise PartialFailure(phase, node_id, str(error)) from error
        logger.debug("Skipped %s for %s: %s", phase, node_id, error)
        self.skipped.append(Skipped(phase=phase, node_id=node_id, reason=str(error)))

    def timed_out(self, phase: str, done: int, total: int) -> None:
        message = f"{phase} phase timed out after {done} of {total}"
        logger.warning(message)
        self.warnings.append(message)
        self.partial = True


class ContextAssembler:
    """Assembles relevance-ranked, token-budgeted context from a node store.

    Usage:
        assembler = ContextAssembler(SqliteNodeStore(db_path), workspace="main")
        doc = assembler.assemble("quarterly planning", lens="planning")
        print(doc.render_markdown())
    """

    def __init__(
        self,
        store: NodeStore,
        lenses: LensRegistry | None = None,
        *,
        workspace: str = "default",
        header_reserve: int = 200,
        min_per_node: int = 50,
        search_limit: int = 5,
        per_seed_limit: int = 100,
        phase_timeout: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.lenses = lenses or LensRegistry()
        self.workspace = workspace
        self.header_reserve = header_reserve
        self.min_per_node = min_per_node
        self.search_limit = search_limit
        self.per_seed_limit = per_seed_limit
        self.phase_timeout = phase_timeout
        self.clock = clock
        self.traversal = GraphTraversal(store)

    @classmethod
    def from_config(
        cls, store: NodeStore, config: ProjectConfig, workspace: str
    ) -> ContextAssembler:
        """Build an assembler from project lens overrides and context defaults."""
        defaults = config.context
        return cls(
            store,
            LensRegistry(config.lenses),
            workspace=workspace,
            header_reserve=defaults.header_reserve,
            min_per_node=defaults.min_per_node,
            search_limit=defaults.search_limit,
            per_seed_limit=defaults.per_seed_limit,
            phase_timeout=defaults.phase_timeout,
        )

    # -------------------------------------------------------------------
    # Main entry point
    # -------------------------------------------------------------------

    def assemble(
        self,
        query: str,
        depth: int = 2,
        max_tokens: int = 4000,
        include_fields: bool = True,
        lens: str = "general",
        strict: bool = False,
    ) -> ContextDocument:
        """Assemble a context document for a query or node id.

        Args:
            query: Free text, or a node id to start from directly.
            depth: Requested traversal depth (capped by the lens and at 5).
            max_tokens: Total token budget for the document.
            include_fields: Whether to attach field values to nodes.
            lens: Name of the lens preset to use.
            strict: Raise PartialFailure instead of skipping failed
                per-seed or per-node sub-operations.

        Returns:
            A ContextDocument. An unmatched query yields an empty document,
            not an error.

        Raises:
            ValidationError: on a non-positive depth, a budget smaller than
                the header reserve plus one node's minimum, or an unknown lens.
            BackendUnavailableError: if the store cannot be searched at all.
        """
        if depth < 1:
            raise ValidationError(f"depth must be >= 1, got {depth}")
        min_tokens = max(1, self.header_reserve + self.min_per_node)
        if max_tokens < min_tokens:
            raise ValidationError(f"max_tokens must be >= {min_tokens}, got {max_tokens}")

        lens_config = self.lenses.get(lens)
        effective_depth = min(depth, lens_config.max_depth, MAX_DEPTH)
        state = _RunState(strict=strict)

        # Phase 1: Resolve
        seeds, resolved_query = self._resolve(query)
        if not seeds:
            logger.debug("No seed nodes for query %r", query)
            return self._empty_document(resolved_query, lens_config.name, max_tokens)

        # Phase 2: Traverse
        collected = self._traverse(seeds, lens_config, effective_depth, state)

        # Phase 3: Enrich
        nodes = self._enrich(collected, lens_config, include_fields, state)

        # Phase 4: Score
        nodes = self._score(nodes, lens_config)

        # Phase 5: Budget
        budget = TokenBudget(
            max_tokens=max_tokens,
            header_reserve=self.header_reserve,
            min_per_node=self.min_per_node,
        )
        result = prune_to_fit_budget(nodes, budget)

        logger.debug(
            "Assembled %d nodes (%d overflow) for %r from %d seeds",
            len(result.included), len(result.overflow), resolved_query, len(seeds),
        )

        # Phase 6: Format (rendering lives on the document)
        return ContextDocument(
            meta=ContextMeta(
                query=resolved_query,
                workspace=self.workspace,
                lens=lens_config.name,
                tokens=result.usage,
                assembled_at=datetime.now(timezone.utc),
                backend=self.store.kind,
                embeddings_available=False,
                partial=state.partial,
                warnings=state.warnings,
            ),
            nodes=result.included,
            overflow=result.overflow,
            diagnostics=state.skipped,
        )

    # -------------------------------------------------------------------
    # Phase 1: Resolve
    # -------------------------------------------------------------------

    def _resolve(self, query: str) -> tuple[list[SearchHit], str]:
        """Find seed nodes. Returns (seeds, resolved query text)."""
        ref = classify_query(query)

        if isinstance(ref, NodeIdQuery):
            try:
                node = self.store.get_node(ref.value)
            except NodeNotFoundError:
                logger.debug("%r is not a node id, falling back to search", ref.value)
            else:
                return [SearchHit(id=node.id, name=node.name, tags=node.tags)], node.name

        hits = self.store.search(ref.value, limit=self.search_limit)
        seen: set[str] = set()
        seeds = []
        for hit in hits:
            if hit.id not in seen:
                seen.add(hit.id)
                seeds.append(hit)
        return seeds, ref.value

    # -------------------------------------------------------------------
    # Phase 2: Traverse
    # -------------------------------------------------------------------

    def _traverse(
        self,
        seeds: list[SearchHit],
        lens: LensConfig,
        depth: int,
        state: _RunState,
    ) -> dict[str, _Collected]:
        """Traverse from every seed and merge by minimum distance.

        Seeds sit at distance 0 no matter what. On equal distance the node
        found first (earlier seed, then traversal order) keeps its path.
        """
        collected: dict[str, _Collected] = {
            seed.id: _Collected(id=seed.id, name=seed.name, tags=list(seed.tags), distance=0)
            for seed in seeds
        }
        deadline = self._deadline()

        for done, seed in enumerate(seeds):
            if self._expired(deadline):
                state.timed_out("traverse", done, len(seeds))
                break
            query = TraversalQuery(
                node_id=seed.id,
                direction=Direction.BOTH,
                types=lens.priority_types,
                max_depth=depth,
                limit=self.per_seed_limit,
            )
            try:
                result = self.traversal.traverse(query)
            except CtxGraphError as e:
                state.record("traverse", seed.id, e)
                continue

            by_id = {related.id: related for related in result.related}
            for related in result.related:
                distance = related.relationship.distance
                existing = collected.get(related.id)
                if existing is not None and existing.distance <= distance:
                    continue
                # Every hop after the seed is itself a related node whose
                # discovering edge is that hop
                path = [
                    PathStep(
                        node_id=node_id,
                        type=by_id[node_id].relationship.type,
                        direction=by_id[node_id].relationship.direction,
                    )
                    for node_id in related.relationship.path[1:]
                ]
                collected[related.id] = _Collected(
                    id=related.id,
                    name=related.name,
                    tags=list(related.tags),
                    distance=distance,
                    path=path,
                )

        return collected

    # -------------------------------------------------------------------
    # Phase 3: Enrich
    # -------------------------------------------------------------------

    def _enrich(
        self,
        collected: dict[str, _Collected],
        lens: LensConfig,
        include_fields: bool,
        state: _RunState,
    ) -> list[ContextNode]:
        """Attach fields, content and creation time. Each fetch may fail alone."""
        nodes: list[ContextNode] = []
        deadline = self._deadline()
        expired = False

        for done, entry in enumerate(collected.values()):
            node = ContextNode(
                id=entry.id,
                name=entry.name,
                tags=entry.tags,
                distance=entry.distance,
                path=entry.path,
            )
            if not expired and self._expired(deadline):
                state.timed_out("enrich", done, len(collected))
                expired = True
            if expired:
                nodes.append(node)
                continue

            node_id = entry.id
            if include_fields:
                values = self._attempt(
                    state, "fields", node_id, lambda: self.store.get_field_values(node_id)
                )
                if values:
                    node.fields = merge_field_values(values, lens.include_fields)

            content = self._attempt(
                state, "content", node_id, lambda: self.store.read_node(node_id, 0)
            )
            if content is not None:
                node.content = content.markdown or ""

            created = self._attempt(
                state, "created", node_id, lambda: self.store.get_created_timestamp(node_id)
            )
            if created is not None:
                node.created = ms_to_datetime(created)

            nodes.append(node)

        return nodes

    def _attempt(
        self, state: _RunState, phase: str, node_id: str, fetch: Callable[[], T]
    ) -> T | None:
        try:
            return fetch()
        except CtxGraphError as e:
            state.record(phase, node_id, e)
            return None

    # -------------------------------------------------------------------
    # Phase 4: Score
    # -------------------------------------------------------------------

    def _score(self, nodes: list[ContextNode], lens: LensConfig) -> list[ContextNode]:
        """Score by distance + recency, apply lens boosts, sort best first."""
        now = datetime.now(timezone.utc)
        for node in nodes:
            score = score_node(
                node.distance, None, node.created, embeddings_available=False, now=now
            )
            node.score = score.total

        nodes = apply_lens_boosts(nodes, lens)
        nodes.sort(key=lambda n: (-n.score, n.distance, n.id))
        return nodes

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------

    def _deadline(self) -> float | None:
        if self.phase_timeout is None:
            return None
        return self.clock() + self.phase_timeout

    def _expired(self, deadline: float | None) -> bool:
        return deadline is not None and self.clock() >= deadline

    def _empty_document(self, query: str, lens: str, max_tokens: int) -> ContextDocument:
        return ContextDocument(
            meta=ContextMeta(
                query=query,
                workspace=self.workspace,
                lens=lens,
                tokens=TokenUsage(budget=max_tokens),
                assembled_at=datetime.now(timezone.utc),
                backend=self.store.kind,
                embeddings_available=False,
            ),
        )


def merge_field_values(
    values: list[FieldValue], allowed: list[str] | None = None
) -> dict[str, str | list[str]] | None:
    """Group field values by name; repeated names become ordered lists.

    ``allowed`` is a case-insensitive allow-list of field names.
    """
    allow = {name.lower() for name in allowed} if allowed is not None else None
    fields: dict[str, str | list[str]] = {}

    for fv in values:
        if allow is not None and fv.field_name.lower() not in allow:
            continue
        existing = fields.get(fv.field_name)
        if existing is None:
            fields[fv.field_name] = fv.value_text
        elif isinstance(existing, list):
            existing.append(fv.value_text)
        else:
            fields[fv.field_name] = [existing, fv.value_text]

    return fields or None
