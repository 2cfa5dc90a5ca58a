"""
Pool-relative offer scoring.

WHAT: Five 0-100 sub-scores per offer plus a mode-weighted composite
WHY: Absolute dollar figures mean nothing across rounds; rank against the live pool
HOW: Min/max normalization over the current offers, recomputed whenever the pool changes
"""

import math

from ..core.config import settings, SCORE_DIMENSIONS
from ..models.domain import Offer, SupplierProfile, ScoreVector, ScoringEntry, ScoredOffer
from ..utils.logger import get_logger
from .cash_flow import cash_flow_cost

logger = get_logger(__name__)

EQUAL_POOL_SCORE = 75


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def normalize(value: float, minimum: float, maximum: float, invert: bool) -> int:
    """
    Scale value into [0, 100] relative to the pool range.

    Args:
        value: Raw value for this offer
        minimum: Smallest value in the pool
        maximum: Largest value in the pool
        invert: True when lower raw values are better

    Returns:
        Integer score; exactly 75 when the whole pool is equal
    """
    if maximum == minimum:
        return EQUAL_POOL_SCORE
    ratio = (value - minimum) / (maximum - minimum)
    score = (1 - ratio) * 100 if invert else ratio * 100
    return max(0, min(100, _round_half_up(score)))


def get_scoring_weights(mode: str, custom_weights: dict[str, float] | None = None) -> dict[str, float]:
    """
    Resolve the weight table for a scoring mode.

    Unknown modes fall back to "balanced". "custom" uses caller-supplied
    weights when given (missing dimensions count as 0).
    """
    table = settings.SCORING_WEIGHTS
    if mode == "custom" and custom_weights:
        return {dim: float(custom_weights.get(dim, 0.0)) for dim in SCORE_DIMENSIONS}
    if mode not in table:
        logger.warning(f"Unknown scoring mode '{mode}', using balanced weights")
        return table["balanced"]
    return table[mode]


def risk_score(profile: SupplierProfile) -> int:
    """Quality/lead-time reliability heuristic, independent of the pool."""
    quality_factor = profile.quality_rating / 5
    lead_factor = 1 - (profile.lead_time_days - settings.RISK_IDEAL_LEAD_TIME_DAYS) / settings.RISK_LEAD_TIME_SPAN_DAYS
    lead_factor = max(0.0, min(1.0, lead_factor))
    return _round_half_up((quality_factor * 0.6 + lead_factor * 0.4) * 100)


def score_offer(
    offer: Offer,
    profile: SupplierProfile,
    all_offers: list[Offer],
    all_profiles: list[SupplierProfile],
    mode: str = "balanced",
    *,
    custom_weights: dict[str, float] | None = None,
    annual_rate: float | None = None
) -> ScoreVector:
    """
    Score one offer against the pool it is being compared with.

    Args:
        offer: Offer being scored (should be part of all_offers)
        profile: Its supplier's profile
        all_offers: Every offer in the current pool
        all_profiles: Profiles aligned with all_offers (kept for API symmetry)
        mode: Weighting mode
        custom_weights: Weights used when mode is "custom"
        annual_rate: Cost of capital for cash-flow scoring

    Returns:
        ScoreVector; never raises for degenerate pools
    """
    pool = all_offers or [offer]

    costs = [o.total_cost for o in pool]
    leads = [o.lead_time_days for o in pool]
    cash_flows = [cash_flow_cost(o.total_cost, o.payment_terms, o.lead_time_days, annual_rate) for o in pool]
    offer_cash_flow = cash_flow_cost(offer.total_cost, offer.payment_terms, offer.lead_time_days, annual_rate)

    subscores = {
        "price": normalize(offer.total_cost, min(costs), max(costs), invert=True),
        "quality": _round_half_up(profile.quality_rating / 5 * 100),
        "lead_time": normalize(offer.lead_time_days, min(leads), max(leads), invert=True),
        "cash_flow": normalize(offer_cash_flow, min(cash_flows), max(cash_flows), invert=True),
        "risk": risk_score(profile),
    }

    weights = get_scoring_weights(mode, custom_weights)
    weighted = _round_half_up(sum(subscores[dim] * weights[dim] for dim in SCORE_DIMENSIONS))

    return ScoreVector(weighted=weighted, **subscores)


def score_all_offers(
    entries: list[ScoringEntry],
    mode: str = "balanced",
    *,
    supplier_names: dict[str, str] | None = None,
    custom_weights: dict[str, float] | None = None,
    annual_rate: float | None = None
) -> list[ScoredOffer]:
    """
    Score every entry in a pool, preserving input order.

    Args:
        entries: Offers with their profiles
        mode: Weighting mode
        supplier_names: Optional display-name override keyed by supplier id
        custom_weights: Weights used when mode is "custom"
        annual_rate: Cost of capital for cash-flow scoring

    Returns:
        One ScoredOffer per entry
    """
    all_offers = [entry.offer for entry in entries]
    all_profiles = [entry.profile for entry in entries]
    names = supplier_names or {}

    scored = []
    for entry in entries:
        scores = score_offer(
            entry.offer,
            entry.profile,
            all_offers,
            all_profiles,
            mode,
            custom_weights=custom_weights,
            annual_rate=annual_rate,
        )
        scored.append(ScoredOffer(
            supplier_id=entry.supplier_id,
            supplier_name=names.get(entry.supplier_id, entry.profile.name),
            supplier_code=entry.profile.code,
            is_simulated=entry.profile.is_simulated,
            round_number=entry.round_number,
            offer=entry.offer,
            scores=scores,
            cash_flow_cost=round(
                cash_flow_cost(entry.offer.total_cost, entry.offer.payment_terms, entry.offer.lead_time_days, annual_rate),
                2,
            ),
        ))

    logger.debug(f"Scored {len(scored)} offers in '{mode}' mode")
    return scored
