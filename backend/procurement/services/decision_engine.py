"""
Decision engine for the final supplier recommendation.

WHAT: Select the best scored offer and explain the choice
WHY: The negotiation needs a deterministic decision even without an LLM decision step
HOW: Rank by weighted score with cost as tie-breaker, summarize per-dimension winners
"""

from ..models.domain import (
    FinalDecision,
    FinalRecommendation,
    KeyPoint,
    ScoredOffer,
    SupplierAllocation,
)
from ..utils.logger import get_logger

logger = get_logger(__name__)

DIMENSION_LABELS = {
    "price": "Price",
    "quality": "Quality",
    "lead_time": "Lead time",
    "cash_flow": "Cash flow",
    "risk": "Risk",
}

CLOSE_DECISION_MARGIN = 5


def rank_offers(scored: list[ScoredOffer]) -> list[ScoredOffer]:
    """
    Order offers best first.

    Highest weighted score wins; ties go to the lower total cost, then to the
    earlier position in the pool.
    """
    indexed = list(enumerate(scored))
    indexed.sort(key=lambda pair: (-pair[1].scores.weighted, pair[1].offer.total_cost, pair[0]))
    return [entry for _, entry in indexed]


def dimension_key_points(scored: list[ScoredOffer]) -> list[KeyPoint]:
    """One KeyPoint per dimension naming the supplier that scored highest on it."""
    points = []
    for dimension, label in DIMENSION_LABELS.items():
        best = max(scored, key=lambda s: getattr(s.scores, dimension))
        value = getattr(best.scores, dimension)
        tied = [s for s in scored if getattr(s.scores, dimension) == value]
        if len(tied) > 1:
            verdict = f"{label}: no clear leader ({len(tied)} suppliers at {value}/100)"
        else:
            verdict = f"{label}: {best.supplier_name} leads with {value}/100"
        points.append(KeyPoint(dimension=dimension, verdict=verdict, winner=best.supplier_name))
    return points


def generate_decision_reason(best: ScoredOffer) -> str:
    """
    Human-readable explanation for the selected offer.

    Args:
        best: The selected scored offer

    Returns:
        Decision reason string
    """
    offer = best.offer
    parts = [
        f"Selected {best.supplier_name}",
        f"${offer.total_cost:,.2f} total, {offer.lead_time_days}-day lead time, terms {offer.payment_terms or 'n/a'}",
        f"Score: {best.scores.weighted}/100",
    ]

    strengths = [
        f"{DIMENSION_LABELS[dim].lower()} ({getattr(best.scores, dim)})"
        for dim in DIMENSION_LABELS
        if getattr(best.scores, dim) >= 80
    ]
    if strengths:
        parts.append(f"[strong on {', '.join(strengths)}]")

    return " - ".join(parts)


def build_final_decision(scored: list[ScoredOffer], mode: str = "balanced") -> FinalDecision | None:
    """
    Build a FinalDecision from the last scored pool.

    Args:
        scored: Scored offers of the final round
        mode: Scoring mode the pool was scored under

    Returns:
        FinalDecision, or None when there is nothing to choose from
    """
    if not scored:
        logger.warning("No scored offers, cannot build a decision")
        return None

    ranked = rank_offers(scored)
    best = ranked[0]

    tradeoffs = "Only one offer was available."
    if len(ranked) > 1:
        runner_up = ranked[1]
        margin = best.scores.weighted - runner_up.scores.weighted
        cost_delta = runner_up.offer.total_cost - best.offer.total_cost
        tradeoffs = (
            f"{runner_up.supplier_name} scored {runner_up.scores.weighted}/100 "
            f"({margin} points behind), at ${abs(cost_delta):,.2f} "
            f"{'more' if cost_delta >= 0 else 'less'} than {best.supplier_name}."
        )
        if margin < CLOSE_DECISION_MARGIN:
            logger.info(
                f"Close decision: {best.supplier_name} ({best.scores.weighted}) "
                f"vs {runner_up.supplier_name} ({runner_up.scores.weighted})"
            )

    reason = generate_decision_reason(best)
    logger.info(f"Decision ({mode}): {reason}")

    return FinalDecision(
        recommendation=FinalRecommendation(
            primary_supplier_id=best.supplier_id,
            primary_supplier_name=best.supplier_name,
            split_order=False,
            allocations=[SupplierAllocation(
                supplier_id=best.supplier_id,
                supplier_name=best.supplier_name,
                allocation_pct=100.0,
                agreed_cost=best.offer.total_cost,
                lead_time_days=best.offer.lead_time_days,
                payment_terms=best.offer.payment_terms,
            )],
        ),
        comparison=ranked,
        summary=f"Award the order to {best.supplier_name} ({mode} priorities).",
        key_points=dimension_key_points(scored),
        reasoning=reason,
        tradeoffs=tradeoffs,
    )
