"""Tests for token budgeting."""

from __future__ import annotations

import pytest

from ctxgraph.context.budget import (
    TRUNCATION_MARKER,
    node_cost,
    node_text,
    prune_to_fit_budget,
    truncate_node,
)
from ctxgraph.context.models import ContextNode, TokenBudget, TokenEstimator


def make_node(name: str, chars: int, distance: int = 1, score: float = 0.5, **kw) -> ContextNode:
    return ContextNode(id=name, name=name, content="x" * chars, distance=distance, score=score, **kw)


def scored_nodes(count: int, chars: int) -> list[ContextNode]:
    """``count`` nodes named n0..n{count-1}, highest score first."""
    return [make_node(f"n{i}", chars, score=0.9 - i * 0.01) for i in range(count)]


class TestTokenEstimator:
    def test_empty(self):
        assert TokenEstimator.estimate("") == 0

    def test_rounds_up(self):
        assert TokenEstimator.estimate("abcde") == 2
        assert TokenEstimator.estimate("abcd") == 1


class TestNodeText:
    def test_layout(self):
        node = ContextNode(
            id="a", name="Alpha", content="Body", tags=["x", "y"],
            fields={"status": "open", "owner": ["Dana", "Lee"]},
        )
        assert node_text(node) == (
            "## Alpha [x, y]\nBody\n- **status**: open\n- **owner**: Dana, Lee\n"
        )

    def test_cost(self):
        # "## n0\n" + 1993 chars + "\n" = 2000 chars
        assert node_cost(make_node("n0", 1993)) == 500


class TestTruncateNode:
    def test_fits_target(self):
        truncated = truncate_node(make_node("n0", 1993), 300)
        assert node_cost(truncated) <= 300
        assert truncated.content.endswith(TRUNCATION_MARKER)
        assert truncated.summarized

    def test_stable(self):
        node = make_node("n0", 1993)
        assert truncate_node(node, 120) == truncate_node(node, 120)

    def test_falls_back_to_stub(self):
        node = make_node("n0", 400, fields={"status": "open"})
        stub = truncate_node(node, 2)
        assert stub.content == ""
        assert stub.fields is None
        assert stub.summarized

    def test_field_lines_cut_in_order(self):
        fields = {f"f{i}": "v" * 40 for i in range(6)}
        node = ContextNode(id="b", name="b", fields=fields)
        truncated = truncate_node(node, 51)
        assert node_cost(truncated) <= 51
        assert list(truncated.fields) == ["f0", "f1", "f2", "f3"]
        assert truncated.fields["f2"] == "v" * 40
        assert truncated.fields["f3"].endswith(TRUNCATION_MARKER)

    def test_original_untouched(self):
        node = make_node("n0", 1993)
        truncate_node(node, 50)
        assert not node.summarized
        assert len(node.content) == 1993


class TestPruneToFitBudget:
    def test_ten_nodes_of_five_hundred(self):
        budget = TokenBudget(max_tokens=2000, header_reserve=200, min_per_node=100)
        result = prune_to_fit_budget(scored_nodes(10, 1993), budget)

        assert [n.id for n in result.included] == ["n0", "n1", "n2", "n3"]
        assert [n.token_estimate for n in result.included[:3]] == [500, 500, 500]
        assert not any(n.summarized for n in result.included[:3])

        fourth = result.included[3]
        assert fourth.summarized
        assert fourth.token_estimate == 300

        assert [o.id for o in result.overflow] == ["n4", "n5", "n6", "n7", "n8", "n9"]
        assert result.usage.used == 2000
        assert result.usage.utilization == pytest.approx(1.0)
        assert result.usage.nodes_included == 4
        assert result.usage.nodes_summarized == 1
        assert result.usage.nodes_overflowed == 6

    @pytest.mark.parametrize("max_tokens", [300, 700, 1500, 4000])
    def test_conservation(self, max_tokens):
        budget = TokenBudget(max_tokens=max_tokens, header_reserve=200, min_per_node=50)
        nodes = [make_node(f"n{i}", 150 * (i + 1), score=1 - i * 0.05) for i in range(8)]
        result = prune_to_fit_budget(nodes, budget)
        spent = sum(n.token_estimate for n in result.included)
        assert spent <= max_tokens - budget.header_reserve
        assert result.usage.used == spent + budget.header_reserve

    def test_completeness(self):
        nodes = scored_nodes(10, 1993)
        result = prune_to_fit_budget(
            nodes, TokenBudget(max_tokens=2000, header_reserve=200, min_per_node=100)
        )
        seen = [n.id for n in result.included] + [o.id for o in result.overflow]
        assert sorted(seen) == sorted(n.id for n in nodes)

    def test_everything_fits(self):
        result = prune_to_fit_budget(scored_nodes(3, 10))
        assert len(result.included) == 3
        assert result.overflow == []
        assert result.usage.nodes_summarized == 0

    def test_empty(self):
        result = prune_to_fit_budget([])
        assert result.included == []
        assert result.overflow == []
        assert result.usage.nodes_included == 0

    def test_overflow_keeps_score(self):
        budget = TokenBudget(max_tokens=2000, header_reserve=200, min_per_node=100)
        result = prune_to_fit_budget(scored_nodes(10, 1993), budget)
        assert result.overflow[0].score == pytest.approx(0.86)


class TestSeedPinning:
    def test_low_scoring_seed_is_kept(self):
        budget = TokenBudget(max_tokens=1000, header_reserve=200, min_per_node=50)
        nodes = [
            make_node("big", 3193, score=0.9),  # 800 tokens, fills everything
            make_node("seed", 393, distance=0, score=0.1),
        ]
        result = prune_to_fit_budget(nodes, budget)
        ids = [n.id for n in result.included]
        assert "seed" in ids
        # Included nodes stay in score order
        assert ids == ["big", "seed"]
        assert result.included[0].summarized

    def test_oversized_seed_truncated(self):
        budget = TokenBudget(max_tokens=400, header_reserve=200, min_per_node=50)
        nodes = [make_node("seed", 4000, distance=0), make_node("other", 10)]
        result = prune_to_fit_budget(nodes, budget)
        assert [n.id for n in result.included] == ["seed"]
        assert result.included[0].summarized
        assert result.included[0].token_estimate <= 200
        assert [o.id for o in result.overflow] == ["other"]

    def test_seeds_get_a_floor(self):
        # Only 50 tokens available; both seeds still make it in
        budget = TokenBudget(max_tokens=250, header_reserve=200, min_per_node=50)
        nodes = [
            make_node("seed1", 4000, distance=0, score=0.9),
            make_node("seed2", 4000, distance=0, score=0.8),
        ]
        result = prune_to_fit_budget(nodes, budget)
        assert [n.id for n in result.included] == ["seed1", "seed2"]
        assert all(n.token_estimate <= 50 for n in result.included)
        assert all(n.summarized for n in result.included)


class TestUnfittable:
    def test_node_too_large_even_as_stub_is_skipped(self):
        budget = TokenBudget(max_tokens=400, header_reserve=200, min_per_node=50)
        long_name = "N" * 1000
        nodes = [
            ContextNode(id="long", name=long_name, content="body", score=0.9, distance=1),
            make_node("small", 10, score=0.5),
        ]
        result = prune_to_fit_budget(nodes, budget)
        assert [n.id for n in result.included] == ["small"]
        assert [o.id for o in result.overflow] == ["long"]

    def test_field_heavy_node_keeps_its_share(self):
        budget = TokenBudget(max_tokens=400, header_reserve=200, min_per_node=50)
        nodes = [
            make_node("a", 589, score=0.9),  # 149 tokens, leaves 51
            ContextNode(
                id="b", name="b", score=0.8, distance=1,
                fields={f"f{i}": "v" * 40 for i in range(6)},
            ),
        ]
        result = prune_to_fit_budget(nodes, budget)
        assert [n.id for n in result.included] == ["a", "b"]
        costs = {n.id: node_cost(n) for n in nodes}
        for node in result.included:
            assert node.token_estimate >= min(costs[node.id], budget.min_per_node)
        assert result.included[1].fields

    def test_node_that_cannot_reach_minimum_overflows(self):
        budget = TokenBudget(max_tokens=400, header_reserve=200, min_per_node=50)
        nodes = [
            make_node("a", 589, score=0.9),
            ContextNode(id="b", name="b", score=0.8, distance=1, fields={"k" * 300: "v"}),
            make_node("c", 20, score=0.7),
        ]
        result = prune_to_fit_budget(nodes, budget)
        assert [n.id for n in result.included] == ["a", "c"]
        assert [o.id for o in result.overflow] == ["b"]
