"""Token budgeting for assembled context.

Greedy, score-ordered selection under a token ceiling:

  1. Seeds (distance 0) are pinned first, whatever their score.
  2. Remaining nodes are taken in score order while at least
     ``min_per_node`` tokens remain; a node that does not fit whole is
     truncated to the remaining budget and marked ``summarized``, unless
     that would leave it under ``min_per_node``, in which case it
     overflows and the pass moves on.
  3. Everything after the stop point goes to ``overflow``.

Truncation is a plain character cut of the node's content. It is stable
across runs, which keeps rendered output diffable.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from ctxgraph.context.models import (
    ContextNode,
    OverflowSummary,
    TokenBudget,
    TokenEstimator,
    TokenUsage,
)

DEFAULT_BUDGET = TokenBudget(max_tokens=4000, header_reserve=200, min_per_node=50)

TRUNCATION_MARKER = " …[truncated]"


@dataclass
class BudgetResult:
    """Outcome of pruning: what made it in, what did not, and the cost."""

    included: list[ContextNode] = field(default_factory=list)
    overflow: list[OverflowSummary] = field(default_factory=list)
    usage: TokenUsage | None = None


def node_text(node: ContextNode) -> str:
    """Text representation of a node used for token counting."""
    text = f"## {node.name}"
    if node.tags:
        text += f" [{', '.join(node.tags)}]"
    text += "\n"
    if node.content:
        text += node.content + "\n"
    if node.fields:
        for key, value in node.fields.items():
            text += _field_line(key, value)
    return text


def _field_line(key: str, value: str | list[str]) -> str:
    val = ", ".join(value) if isinstance(value, list) else value
    return f"- **{key}**: {val}\n"


def node_cost(node: ContextNode) -> int:
    """Estimated token cost c(v) of a node."""
    return TokenEstimator.estimate(node_text(node))


def truncate_node(node: ContextNode, tokens: int) -> ContextNode:
    """Cut a node down so that it costs at most ``tokens``.

    Content is cut first. When the header and fields alone do not fit, the
    content is dropped and field lines are kept in order while they fit,
    with the first one that does not fit cut short. The result may still
    cost more than ``tokens`` for very long names, or much less when a
    field name alone is too long; callers check.
    """
    max_chars = TokenEstimator.chars_for(tokens)
    overhead = len(node_text(node.model_copy(update={"content": ""})))
    # +1 for the newline after the content
    room = max_chars - overhead - len(TRUNCATION_MARKER) - 1

    if node.content and room > 0:
        content = node.content[:room].rstrip() + TRUNCATION_MARKER
        return node.model_copy(update={"content": content, "summarized": True})

    fields = _cut_fields(node, max_chars)
    return node.model_copy(update={"content": "", "fields": fields, "summarized": True})


def _cut_fields(node: ContextNode, max_chars: int) -> dict[str, str | list[str]] | None:
    used = len(node_text(node.model_copy(update={"content": "", "fields": None})))
    kept: dict[str, str | list[str]] = {}

    for key, value in (node.fields or {}).items():
        line = _field_line(key, value)
        if used + len(line) <= max_chars:
            kept[key] = value
            used += len(line)
            continue
        text = ", ".join(value) if isinstance(value, list) else value
        room = max_chars - used - len(_field_line(key, "")) - len(TRUNCATION_MARKER)
        if room > 0:
            kept[key] = text[:room].rstrip() + TRUNCATION_MARKER
        break

    return kept or None


def _overflow_entry(node: ContextNode) -> OverflowSummary:
    return OverflowSummary(id=node.id, name=node.name, tags=node.tags, score=node.score)


def prune_to_fit_budget(
    nodes: list[ContextNode],
    budget: TokenBudget = DEFAULT_BUDGET,
) -> BudgetResult:
    """Select nodes to fit within ``budget``.

    Args:
        nodes: Scored nodes sorted by relevance, highest first.
        budget: Token ceiling, header reserve and per-node minimum.

    Returns:
        BudgetResult with included nodes (still score-ordered, with
        ``token_estimate`` set), overflow summaries and usage statistics.
    """
    available = budget.max_tokens - budget.header_reserve
    remaining = available
    chosen: list[tuple[int, ContextNode]] = []
    overflow: list[OverflowSummary] = []

    # Phase A: pin seeds
    for index, node in enumerate(nodes):
        if node.distance != 0:
            continue
        cost = node_cost(node)
        if cost <= remaining:
            allocated = node.model_copy(update={"token_estimate": cost})
        else:
            target = max(remaining, min(cost, budget.min_per_node))
            allocated = truncate_node(node, target)
            allocated.token_estimate = node_cost(allocated)
        chosen.append((index, allocated))
        remaining -= allocated.token_estimate

    # Phase B: greedy fill in score order
    rest = [(i, n) for i, n in enumerate(nodes) if n.distance != 0]
    for position, (index, node) in enumerate(rest):
        if remaining < budget.min_per_node:
            overflow.extend(_overflow_entry(n) for _, n in rest[position:])
            break

        cost = node_cost(node)
        if cost <= remaining:
            allocated = node.model_copy(update={"token_estimate": cost})
        else:
            allocated = truncate_node(node, remaining)
            allocated.token_estimate = node_cost(allocated)
            # Too big even as a stub, or cut below its fair share
            floor = min(cost, budget.min_per_node)
            if not floor <= allocated.token_estimate <= remaining:
                overflow.append(_overflow_entry(node))
                continue

        chosen.append((index, allocated))
        remaining -= allocated.token_estimate

    chosen.sort(key=lambda pair: pair[0])
    included = [node for _, node in chosen]
    spent = sum(node.token_estimate for node in included)
    used = spent + budget.header_reserve

    return BudgetResult(
        included=included,
        overflow=overflow,
        usage=TokenUsage(
            budget=budget.max_tokens,
            used=used,
            utilization=used / budget.max_tokens if budget.max_tokens else 0.0,
            nodes_included=len(included),
            nodes_summarized=sum(1 for node in included if node.summarized),
            nodes_overflowed=len(overflow),
        ),
    )
