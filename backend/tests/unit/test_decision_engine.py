"""
Unit tests for decision engine.

WHAT: Test offer ranking and final decision assembly
WHY: Verify the winner, tie-breakers and explanation are deterministic
HOW: Build scored pools with known score vectors
"""

import pytest

from procurement.models.domain import Offer, ScoredOffer, ScoreVector
from procurement.services.decision_engine import (
    build_final_decision,
    dimension_key_points,
    generate_decision_reason,
    rank_offers,
)


def scored(supplier_id, weighted, total, **dims):
    vector = {"price": 50, "quality": 50, "lead_time": 50, "cash_flow": 50, "risk": 50, **dims}
    return ScoredOffer(
        supplier_id=supplier_id,
        supplier_name=supplier_id.title(),
        offer=Offer(total_cost=total, items=[], lead_time_days=30, payment_terms="Net-30"),
        scores=ScoreVector(weighted=weighted, **vector),
        cash_flow_cost=-10.0,
    )


@pytest.mark.unit
@pytest.mark.scoring
class TestRanking:
    """Ordering rules."""

    def test_highest_weighted_first(self):
        pool = [scored("alpha", 60, 5000), scored("beta", 80, 5200)]
        assert [s.supplier_id for s in rank_offers(pool)] == ["beta", "alpha"]

    def test_tie_goes_to_lower_cost(self):
        pool = [scored("alpha", 70, 5200), scored("beta", 70, 5000)]
        assert rank_offers(pool)[0].supplier_id == "beta"

    def test_full_tie_keeps_pool_order(self):
        pool = [scored("alpha", 70, 5000), scored("beta", 70, 5000)]
        assert [s.supplier_id for s in rank_offers(pool)] == ["alpha", "beta"]


@pytest.mark.unit
@pytest.mark.scoring
class TestExplanations:
    """Reason strings and per-dimension key points."""

    def test_reason_lists_strengths(self):
        reason = generate_decision_reason(scored("alpha", 85, 4800, price=100, risk=90))
        assert reason.startswith("Selected Alpha")
        assert "$4,800.00 total" in reason
        assert "Score: 85/100" in reason
        assert "strong on price (100), risk (90)" in reason

    def test_reason_without_strengths(self):
        assert "strong on" not in generate_decision_reason(scored("alpha", 50, 4800))

    def test_key_points_per_dimension(self):
        pool = [scored("alpha", 60, 5000, price=100), scored("beta", 70, 5200, quality=90)]
        points = {p.dimension: p for p in dimension_key_points(pool)}
        assert set(points) == {"price", "quality", "lead_time", "cash_flow", "risk"}
        assert points["price"].winner == "Alpha"
        assert points["quality"].winner == "Beta"
        assert "no clear leader" in points["risk"].verdict


@pytest.mark.unit
@pytest.mark.scoring
class TestFinalDecision:
    """Decision assembly."""

    def test_empty_pool_returns_none(self):
        assert build_final_decision([]) is None

    def test_single_offer(self):
        decision = build_final_decision([scored("alpha", 70, 5000)])
        assert decision.recommendation.primary_supplier_id == "alpha"
        assert decision.tradeoffs == "Only one offer was available."

    def test_full_allocation_to_winner(self):
        decision = build_final_decision([scored("alpha", 60, 5000), scored("beta", 80, 5200)], mode="quality")
        rec = decision.recommendation
        assert rec.primary_supplier_name == "Beta"
        assert rec.split_order is False
        assert len(rec.allocations) == 1
        assert rec.allocations[0].allocation_pct == 100.0
        assert rec.allocations[0].agreed_cost == 5200
        assert [s.supplier_id for s in decision.comparison] == ["beta", "alpha"]
        assert "quality priorities" in decision.summary
        assert "Alpha scored 60/100 (20 points behind), at $200.00 less than Beta." == decision.tradeoffs

    def test_decision_wire_format(self):
        wire = build_final_decision([scored("alpha", 70, 5000)]).to_wire()
        assert wire["recommendation"]["primarySupplierId"] == "alpha"
        assert "keyPoints" in wire
