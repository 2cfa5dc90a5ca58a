"""
Offer utility endpoints.

WHAT: Offer extraction, pool scoring and cash-flow cost over HTTP
WHY: Tooling and the UI reuse the core algorithms without running a negotiation
HOW: FastAPI handlers validating WireModel requests and delegating to services
"""

from fastapi import APIRouter

from ....core.config import settings, SCORE_DIMENSIONS
from ....models.api_schemas import (
    ExtractOfferRequest,
    ScoreOffersRequest,
    CashFlowRequest,
    CashFlowResponse,
)
from ....services.cash_flow import cash_flow_cost
from ....services.offer_extractor import extract_offer
from ....services.scoring import score_all_offers
from ....utils.exceptions import ValidationError
from ....utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()


@router.post("/offers/extract")
async def extract_offer_endpoint(request: ExtractOfferRequest):
    """
    Extract a structured offer from a supplier message.

    Never fails for LLM problems: the extractor falls back to the baseline offer.
    """
    offer = await extract_offer(
        request.message,
        request.profile,
        request.baseline,
        negotiation_id=request.negotiation_id,
    )
    return offer.to_wire()


@router.post("/offers/score")
async def score_offers_endpoint(request: ScoreOffersRequest):
    """
    Score a pool of offers.

    Raises:
        ValidationError: Custom weights that are unknown, negative, or do not sum to 1
    """
    if request.mode == "custom" and request.custom_weights:
        unknown = sorted(set(request.custom_weights) - set(SCORE_DIMENSIONS))
        errors = [{"field": f"customWeights.{name}", "message": "Unknown dimension"} for name in unknown]
        errors += [
            {"field": f"customWeights.{name}", "message": "Weight must be non-negative"}
            for name, value in request.custom_weights.items()
            if value < 0
        ]
        total = sum(request.custom_weights.values())
        if abs(total - 1.0) > 1e-6:
            errors.append({"field": "customWeights", "message": f"Weights sum to {total}, expected 1.0"})
        if errors:
            raise ValidationError("Invalid custom weights", field_errors=errors)

    scored = score_all_offers(
        request.entries,
        request.mode,
        custom_weights=request.custom_weights,
    )
    return [entry.to_wire() for entry in scored]


@router.post("/cash-flow")
async def cash_flow_endpoint(request: CashFlowRequest):
    """Cost of capital for a total, payment terms and lead time."""
    rate = settings.CASH_FLOW_ANNUAL_RATE if request.annual_rate is None else request.annual_rate
    cost = cash_flow_cost(request.total_cost, request.payment_terms, request.lead_time_days, rate)
    return CashFlowResponse(cash_flow_cost=round(cost, 2), annual_rate=rate).to_wire()
