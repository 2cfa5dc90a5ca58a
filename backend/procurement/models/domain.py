"""
Procurement negotiation domain models.

WHAT: Baseline items, supplier profiles, offers, scores and the negotiation aggregate
WHY: One typed vocabulary shared by extractor, scorer, state machine and API
HOW: Pydantic v2 models serialized with camelCase aliases on the wire
"""

import math
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from ..utils.logger import get_logger

logger = get_logger(__name__)

PriceLevel = Literal["cheapest", "mid", "expensive"]
Phase = Literal["initial", "post_curveball"]
MessageRole = Literal["brand_agent", "supplier_agent"]
SupplierStatus = Literal["waiting", "negotiating", "complete"]
GlobalStatus = Literal["connecting", "negotiating", "generating_decision", "complete", "error"]
Dimension = Literal["price", "quality", "lead_time", "cash_flow", "risk"]


class WireModel(BaseModel):
    """Base model: snake_case in Python, camelCase on the wire, either accepted on input."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        """JSON-ready dict with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)


# ============================================================================
# Inputs owned by the negotiation session
# ============================================================================

class QuotationTier(WireModel):
    """One quantity break from the uploaded quotation."""

    quantity: int = Field(ge=0)
    unit_price: float
    total_price: float


class QuotationItem(WireModel):
    """Baseline line item every offer is compared against."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    sku: str
    description: str = ""
    quantity: int = Field(ge=0)
    unit_price: float = Field(ge=0.0)
    total_price: float | None = None
    tiers: tuple[QuotationTier, ...] = ()

    @model_validator(mode="before")
    @classmethod
    def fill_total_price(cls, data):
        """Default totalPrice to quantity x unitPrice."""
        if not isinstance(data, dict):
            return data
        if data.get("total_price", data.get("totalPrice")) is not None:
            return data
        quantity = data.get("quantity")
        unit_price = data.get("unit_price", data.get("unitPrice"))
        try:
            return {**data, "total_price": float(quantity) * float(unit_price)}
        except (TypeError, ValueError):
            return data


class SupplierProfile(WireModel):
    """Negotiation participant; read-only once the negotiation starts."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    name: str
    code: str = ""
    quality_rating: float = Field(ge=0.0, le=5.0)
    price_level: PriceLevel = "mid"
    lead_time_days: int = Field(ge=0)
    payment_terms: str = ""
    is_simulated: bool = True


# ============================================================================
# Offers
# ============================================================================

class VolumeTier(WireModel):
    """Quantity-dependent unit price; max_qty None means unbounded."""

    min_qty: float
    max_qty: float | None = None
    unit_price: float

    def covers(self, quantity: float) -> bool:
        return self.min_qty <= quantity and (self.max_qty is None or quantity <= self.max_qty)


class OfferItem(WireModel):
    """Per-SKU pricing inside an offer, quoted at the baseline quantity."""

    sku: str
    unit_price: float
    quantity: float
    volume_tiers: list[VolumeTier] | None = None

    @property
    def is_valid(self) -> bool:
        return bool(self.sku.strip()) and self.quantity > 0 and self.unit_price > 0

    @property
    def line_total(self) -> float:
        return self.unit_price * self.quantity


class Offer(WireModel):
    """A supplier's structured terms for one round. Never mutated once built."""

    total_cost: float = Field(allow_inf_nan=False)
    items: list[OfferItem] = Field(default_factory=list)
    lead_time_days: int = Field(ge=0)
    payment_terms: str = ""
    concessions: list[str] = Field(default_factory=list)
    conditions: list[str] = Field(default_factory=list)

    @field_validator("lead_time_days", mode="before")
    @classmethod
    def round_lead_time(cls, v):
        """Models and humans both say things like 24.5 days."""
        if isinstance(v, float):
            if not math.isfinite(v):
                raise ValueError("lead time must be a finite number of days")
            return max(0, int(round(v)))
        return v

    @property
    def valid_items(self) -> list[OfferItem]:
        return [item for item in self.items if item.is_valid]


# ============================================================================
# Scoring
# ============================================================================

class ScoreVector(WireModel):
    """Five pool-relative sub-scores in [0, 100] and the mode-weighted composite."""

    price: int
    quality: int
    lead_time: int
    cash_flow: int
    risk: int
    weighted: int


class ScoringEntry(WireModel):
    """One offer in a pool being compared."""

    supplier_id: str
    offer: Offer
    profile: SupplierProfile
    round_number: int = 0


class ScoredOffer(WireModel):
    """Scoring output for one pool entry."""

    supplier_id: str
    supplier_name: str
    supplier_code: str = ""
    is_simulated: bool = True
    round_number: int = 0
    offer: Offer
    scores: ScoreVector
    cash_flow_cost: float


# ============================================================================
# Negotiation state
# ============================================================================

class Message(WireModel):
    """One turn of negotiation text."""

    id: str
    role: MessageRole
    content: str
    round_number: int
    phase: Phase = "initial"


class NegotiationRound(WireModel):
    """Append-only record of one (supplier, round); closed once it carries an offer."""

    round_number: int
    supplier_id: str
    phase: Phase = "initial"
    offer: Offer | None = None
    messages: list[Message] = Field(default_factory=list)


class SupplierNegotiationState(WireModel):
    """Everything an observer knows about one supplier, derived from events."""

    supplier_id: str
    supplier_name: str
    supplier_code: str = ""
    quality_rating: float = 0.0
    is_simulated: bool = True
    status: SupplierStatus = "waiting"
    current_round: int = 0
    rounds: list[NegotiationRound] = Field(default_factory=list)
    messages: list[Message] = Field(default_factory=list)


class CurveballStrategy(WireModel):
    name: str
    description: str = ""
    estimated_cost: float | None = None
    pros: list[str] = Field(default_factory=list)
    cons: list[str] = Field(default_factory=list)


class CurveballAnalysis(WireModel):
    """Re-analysis produced after a curveball."""

    impact: str = ""
    strategies: list[CurveballStrategy] = Field(default_factory=list)
    recommendation: str = ""


class CurveballInfo(WireModel):
    supplier_id: str | None = None
    round_number: int | None = None
    description: str
    analysis: CurveballAnalysis | None = None


class RoundAnalysis(WireModel):
    round_number: int
    summary: str
    supplier_id: str | None = None
    phase: Phase = "initial"


class OffersSnapshot(WireModel):
    """Scored pool after a round, kept for historical display."""

    round_number: int
    phase: Phase = "initial"
    offers: list[ScoredOffer] = Field(default_factory=list)


class PillarActivity(WireModel):
    """Progress marker for one analysis pillar working on a supplier."""

    supplier_id: str
    pillar: str
    round_number: int | None = None
    status: Literal["running", "complete"] = "running"
    summary: str | None = None


class SupplierAllocation(WireModel):
    supplier_id: str
    supplier_name: str
    allocation_pct: float
    agreed_cost: float
    lead_time_days: int
    payment_terms: str = ""


class FinalRecommendation(WireModel):
    primary_supplier_id: str
    primary_supplier_name: str
    split_order: bool = False
    allocations: list[SupplierAllocation] = Field(default_factory=list)


class KeyPoint(WireModel):
    dimension: Dimension
    verdict: str
    winner: str


class FinalDecision(WireModel):
    """Outcome of the decision step."""

    recommendation: FinalRecommendation
    comparison: list[ScoredOffer] = Field(default_factory=list)
    summary: str = ""
    key_points: list[KeyPoint] = Field(default_factory=list)
    reasoning: str = ""
    tradeoffs: str = ""


class NegotiationState(WireModel):
    """Sole source of truth for any observer of a negotiation."""

    negotiation_id: str | None = None
    status: GlobalStatus = "connecting"
    suppliers: list[SupplierNegotiationState] = Field(default_factory=list)
    curveball: CurveballInfo | None = None
    offers_snapshots: list[OffersSnapshot] = Field(default_factory=list)
    round_analyses: list[RoundAnalysis] = Field(default_factory=list)
    pillar_activity: list[PillarActivity] = Field(default_factory=list)
    decision: FinalDecision | None = None
    error_message: str | None = None
    retry_count: int = 0

    def get_supplier(self, supplier_id: str) -> SupplierNegotiationState | None:
        for supplier in self.suppliers:
            if supplier.supplier_id == supplier_id:
                return supplier
        return None


def deduplicate_items(items: list[QuotationItem]) -> list[QuotationItem]:
    """
    Collapse quotation rows that share a SKU into one baseline item.

    Uploaded quotations often list the same SKU once per quantity break. The
    smallest-quantity row becomes the baseline; every row is kept as a tier.
    SKUs compare case-insensitively and first-seen order is preserved.

    Args:
        items: Raw quotation rows

    Returns:
        One item per SKU, carrying tiers when more than one row existed
    """
    groups: dict[str, list[QuotationItem]] = {}
    for item in items:
        groups.setdefault(item.sku.strip().lower(), []).append(item)

    result = []
    for rows in groups.values():
        if len(rows) == 1:
            result.append(rows[0])
            continue
        ordered = sorted(rows, key=lambda row: row.quantity)
        primary = ordered[0]
        tiers = tuple(
            QuotationTier(quantity=row.quantity, unit_price=row.unit_price, total_price=row.total_price)
            for row in ordered
        )
        result.append(primary.model_copy(update={"tiers": tiers}))
        logger.debug(f"Merged {len(rows)} rows for SKU {primary.sku} into tiers")
    return result
