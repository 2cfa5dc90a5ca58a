"""
API request/response schemas.

WHAT: Pydantic models for the HTTP snapshot and utility endpoints
WHY: Typed, documented contracts for observers and tooling
HOW: WireModel subclasses so responses use the same camelCase keys as events
"""

from datetime import datetime
from typing import Literal

from pydantic import Field

from .domain import (
    WireModel,
    QuotationItem,
    SupplierProfile,
    ScoringEntry,
)

PersistedStatus = Literal["pending", "negotiating", "curveball", "completed", "failed"]


class NegotiationSummary(WireModel):
    """Status answer of the snapshot/query interface."""

    negotiation_id: str
    quotation_id: str
    status: PersistedStatus
    mode: str
    has_decision: bool = False
    event_count: int = 0
    updated_at: datetime | None = None


class ExtractOfferRequest(WireModel):
    message: str = Field(min_length=1)
    profile: SupplierProfile
    baseline: list[QuotationItem] = Field(default_factory=list)
    negotiation_id: str | None = None


class ScoreOffersRequest(WireModel):
    entries: list[ScoringEntry] = Field(min_length=1)
    mode: str = "balanced"
    custom_weights: dict[str, float] | None = None


class CashFlowRequest(WireModel):
    total_cost: float
    payment_terms: str = ""
    lead_time_days: int = Field(ge=0)
    annual_rate: float | None = Field(default=None, ge=0.0)


class CashFlowResponse(WireModel):
    cash_flow_cost: float
    annual_rate: float
