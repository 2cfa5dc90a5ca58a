"""
Negotiation snapshot endpoints.

WHAT: Status, full state and decision queries for a negotiation
WHY: Observers resume from a snapshot instead of replaying the stream
HOW: Thin FastAPI handlers over the negotiation store; domain errors map to 404/409
"""

from fastapi import APIRouter

from ....core.negotiation_store import negotiation_store
from ....utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()


@router.get("/negotiations/by-quotation/{quotation_id}")
async def get_negotiation_by_quotation(quotation_id: str):
    """
    Status of the latest negotiation started for a quotation.

    Raises:
        QuotationNotFoundError: No negotiation for this quotation
    """
    return negotiation_store.find_by_quotation(quotation_id).to_wire()


@router.get("/negotiations/{negotiation_id}/status")
async def get_negotiation_status(negotiation_id: str):
    """
    Persisted status of a negotiation.

    Returns:
        NegotiationSummary (negotiationId, quotationId, status, mode, hasDecision, ...)
    """
    return negotiation_store.get_summary(negotiation_id).to_wire()


@router.get("/negotiations/{negotiation_id}/decision")
async def get_negotiation_decision(negotiation_id: str):
    """
    Persisted final decision.

    Raises:
        NegotiationNotFoundError: Unknown id (404)
        DecisionNotReadyError: Negotiation not completed yet (409)
    """
    return negotiation_store.get_decision(negotiation_id).to_wire()


@router.get("/negotiations/{negotiation_id}")
async def get_negotiation_state(negotiation_id: str):
    """
    Full NegotiationState rebuilt from the persisted event log.

    Mid-negotiation this is what an observer loads before attaching to the stream.
    """
    state = negotiation_store.load_state(negotiation_id)
    logger.debug(
        f"Snapshot for {negotiation_id}: status={state.status}, "
        f"{len(state.suppliers)} suppliers, {len(state.offers_snapshots)} snapshots"
    )
    return state.to_wire()
