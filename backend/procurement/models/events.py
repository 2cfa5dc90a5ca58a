"""
Negotiation event models.

WHAT: Tagged union of every event a negotiation emits
WHY: Driver, store, SSE transport and state machine share one wire contract
HOW: Pydantic models discriminated on a literal "type" field, parsed via TypeAdapter
"""

from typing import Annotated, Literal, Union

from pydantic import Field, TypeAdapter, ValidationError

from .domain import (
    WireModel,
    Phase,
    MessageRole,
    Offer,
    ScoredOffer,
    CurveballAnalysis,
    FinalDecision,
)
from ..utils.logger import get_logger

logger = get_logger(__name__)


class NegotiationStartedEvent(WireModel):
    type: Literal["negotiation_started"] = "negotiation_started"
    negotiation_id: str
    quotation_id: str | None = None
    mode: str | None = None
    supplier_count: int | None = None


class SupplierStartedEvent(WireModel):
    type: Literal["supplier_started"] = "supplier_started"
    supplier_id: str
    supplier_name: str
    supplier_code: str = ""
    quality_rating: float = 0.0
    is_simulated: bool = True


class SupplierWaitingEvent(WireModel):
    type: Literal["supplier_waiting"] = "supplier_waiting"
    supplier_id: str
    reason: str | None = None


class RoundStartEvent(WireModel):
    type: Literal["round_start"] = "round_start"
    supplier_id: str
    round_number: int
    phase: Phase = "initial"


class RoundEndEvent(WireModel):
    type: Literal["round_end"] = "round_end"
    supplier_id: str
    round_number: int
    phase: Phase = "initial"


class ContextBuiltEvent(WireModel):
    type: Literal["context_built"] = "context_built"
    supplier_id: str | None = None
    round_number: int | None = None


class PillarStartedEvent(WireModel):
    type: Literal["pillar_started"] = "pillar_started"
    supplier_id: str
    pillar: str
    round_number: int | None = None


class PillarCompleteEvent(WireModel):
    type: Literal["pillar_complete"] = "pillar_complete"
    supplier_id: str
    pillar: str
    round_number: int | None = None
    summary: str | None = None


class MessageEvent(WireModel):
    type: Literal["message"] = "message"
    supplier_id: str
    message_id: str | None = None
    role: MessageRole
    content: str
    round_number: int
    phase: Phase = "initial"


class OfferExtractedEvent(WireModel):
    type: Literal["offer_extracted"] = "offer_extracted"
    supplier_id: str
    round_number: int
    offer: Offer
    phase: Phase | None = None


class OffersSnapshotEvent(WireModel):
    type: Literal["offers_snapshot"] = "offers_snapshot"
    round_number: int
    phase: Phase = "initial"
    offers: list[ScoredOffer] = Field(default_factory=list)


class RoundAnalysisEvent(WireModel):
    type: Literal["round_analysis"] = "round_analysis"
    round_number: int
    summary: str
    supplier_id: str | None = None
    phase: Phase = "initial"


class CurveballDetectedEvent(WireModel):
    type: Literal["curveball_detected"] = "curveball_detected"
    supplier_id: str
    description: str
    round_number: int | None = None


class CurveballAnalysisEvent(WireModel):
    type: Literal["curveball_analysis"] = "curveball_analysis"
    analysis: CurveballAnalysis
    supplier_id: str | None = None


class SupplierCompleteEvent(WireModel):
    type: Literal["supplier_complete"] = "supplier_complete"
    supplier_id: str


class NegotiationCompleteEvent(WireModel):
    type: Literal["negotiation_complete"] = "negotiation_complete"
    negotiation_id: str | None = None


class GeneratingDecisionEvent(WireModel):
    type: Literal["generating_decision"] = "generating_decision"


class DecisionEvent(WireModel):
    type: Literal["decision"] = "decision"
    decision: FinalDecision


class ErrorEvent(WireModel):
    type: Literal["error"] = "error"
    message: str
    error: str | None = None


class ConnectedEvent(WireModel):
    """Transport-level greeting sent when a stream opens."""
    type: Literal["connected"] = "connected"
    negotiation_id: str | None = None


class HeartbeatEvent(WireModel):
    type: Literal["heartbeat"] = "heartbeat"


NegotiationEvent = Annotated[
    Union[
        NegotiationStartedEvent,
        SupplierStartedEvent,
        SupplierWaitingEvent,
        RoundStartEvent,
        RoundEndEvent,
        ContextBuiltEvent,
        PillarStartedEvent,
        PillarCompleteEvent,
        MessageEvent,
        OfferExtractedEvent,
        OffersSnapshotEvent,
        RoundAnalysisEvent,
        CurveballDetectedEvent,
        CurveballAnalysisEvent,
        SupplierCompleteEvent,
        NegotiationCompleteEvent,
        GeneratingDecisionEvent,
        DecisionEvent,
        ErrorEvent,
        ConnectedEvent,
        HeartbeatEvent,
    ],
    Field(discriminator="type"),
]

_event_adapter: TypeAdapter = TypeAdapter(NegotiationEvent)


def parse_event(payload: dict) -> NegotiationEvent | None:
    """
    Parse a JSON object into a typed event.

    Unknown event types and malformed payloads are logged and return None so a
    skewed or duplicated transport can never crash a consumer.
    """
    try:
        return _event_adapter.validate_python(payload)
    except ValidationError as e:
        logger.warning(f"Ignoring unparseable event {payload.get('type') if isinstance(payload, dict) else payload!r}: {e.error_count()} errors")
        return None
