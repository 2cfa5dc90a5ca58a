"""
Offer extraction from supplier negotiation messages.

WHAT: Turn a supplier's free-text reply into a numerically consistent Offer
WHY: LLM arithmetic and item lists cannot be trusted; downstream scoring needs exact totals
HOW: Structured-output call (retry once, then baseline fallback) followed by a deterministic
     reconciliation pass: quantity pinning, tier check, total rebuild, backfill, band clip, outlier log
"""

import math
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, Field, field_validator

from ..core.config import settings
from ..llm.structured import StructuredOutputService
from ..llm.usage import UsageSink, ConcurrencyLimiter
from ..models.domain import Offer, OfferItem, QuotationItem, SupplierProfile, VolumeTier
from ..utils.logger import get_logger

logger = get_logger(__name__)

MAX_ATTEMPTS = 2


# ============================================================================
# Configuration
# ============================================================================

@dataclass(frozen=True)
class PriceBands:
    """Allowed offer total as multiples of the baseline total, per price level."""

    ranges: dict[str, tuple[float, float]]

    @classmethod
    def from_settings(cls) -> "PriceBands":
        return cls(ranges=dict(settings.PRICE_RANGES))

    def for_profile(self, profile: SupplierProfile) -> tuple[float, float]:
        if profile.price_level in self.ranges:
            return self.ranges[profile.price_level]
        return self.ranges.get("mid", (0.0, float("inf")))


@dataclass
class ExtractorConfig:
    """
    Everything one negotiation's extractions share.

    Built once per negotiation and passed explicitly, so limiter and usage
    sink never leak across negotiations.
    """

    service: StructuredOutputService
    limiter: ConcurrencyLimiter = field(default_factory=lambda: ConcurrencyLimiter(settings.EXTRACTION_CONCURRENCY))
    price_bands: PriceBands = field(default_factory=PriceBands.from_settings)
    usage_sink: UsageSink | None = None
    model: str | None = field(default_factory=lambda: settings.EXTRACTION_MODEL)
    temperature: float = field(default_factory=lambda: settings.EXTRACTION_TEMPERATURE)
    max_tokens: int = field(default_factory=lambda: settings.EXTRACTION_MAX_TOKENS)
    item_tolerance: float = field(default_factory=lambda: settings.ITEM_PRICE_TOLERANCE)
    override_log_threshold: float = field(default_factory=lambda: settings.TOTAL_OVERRIDE_LOG_THRESHOLD)

    @classmethod
    def from_settings(cls, usage_sink: UsageSink | None = None) -> "ExtractorConfig":
        """Config backed by the configured provider singleton."""
        from ..llm.provider_factory import get_provider
        from ..llm.structured import LLMStructuredService

        return cls(service=LLMStructuredService(get_provider()), usage_sink=usage_sink)


# ============================================================================
# Candidate schema (what the model is asked to return)
# ============================================================================

def _finite_or(v: Any, default: Any) -> Any:
    """Models occasionally emit NaN or Infinity, which JSON parsing and pydantic both accept."""
    if isinstance(v, float) and not math.isfinite(v):
        return default
    return v


class CandidateTier(BaseModel):
    minQty: float = Field(description="Minimum quantity for this tier (inclusive)")
    maxQty: float | None = Field(default=None, description="Maximum quantity (inclusive), null if unbounded")
    unitPrice: float = Field(description="Unit price at this quantity tier")

    @field_validator("minQty", "unitPrice", mode="after")
    @classmethod
    def finite_bounds(cls, v: float) -> float:
        return _finite_or(v, 0.0)

    @field_validator("maxQty", mode="after")
    @classmethod
    def finite_max(cls, v: float | None) -> float | None:
        return _finite_or(v, None)


class CandidateItem(BaseModel):
    sku: str = Field(default="", description="Product SKU")
    unitPrice: float = Field(default=0.0, description="Price per unit at the baseline quantity")
    quantity: float = Field(default=0.0, description="Baseline quantity for this item")
    volumeTiers: list[CandidateTier] | None = Field(
        default=None,
        description="Quantity-dependent pricing, including the baseline quantity tier",
    )

    @field_validator("unitPrice", "quantity", mode="after")
    @classmethod
    def finite_numbers(cls, v: float) -> float:
        return _finite_or(v, 0.0)


class OfferCandidate(BaseModel):
    """Loose offer shape accepted from the structured-output service."""

    totalCost: float = Field(default=0.0, description="Sum of unitPrice x quantity over all items")
    items: list[CandidateItem] = Field(default_factory=list, description="Per-item pricing breakdown")
    leadTimeDays: float | None = Field(default=None, description="Delivery lead time in days")
    paymentTerms: str | None = Field(default=None, description="Payment terms, e.g. 'Net-30', '40/60', '33/33/33'")
    concessions: list[str] = Field(default_factory=list, description="Discounts, free services, warranties")
    conditions: list[str] = Field(default_factory=list, description="Requirements attached to the offer")

    @field_validator("totalCost", mode="after")
    @classmethod
    def finite_total(cls, v: float) -> float:
        # Non-finite totals fall through to the baseline branch of reconciliation
        return _finite_or(v, 0.0)

    @field_validator("leadTimeDays", mode="after")
    @classmethod
    def finite_lead_time(cls, v: float | None) -> float | None:
        return _finite_or(v, None)

    @field_validator("concessions", "conditions", mode="before")
    @classmethod
    def coerce_string_list(cls, v: Any) -> list[str]:
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return [str(entry) for entry in v if entry is not None]


# ============================================================================
# Prompt
# ============================================================================

def _baseline_total(baseline: list[QuotationItem]) -> float:
    return sum(item.total_price or 0.0 for item in baseline)


def build_extraction_prompt(message: str, profile: SupplierProfile, baseline: list[QuotationItem]) -> str:
    """Extraction prompt with supplier defaults and baseline quotation as context."""
    baseline_total = _baseline_total(baseline)

    lines = []
    for item in baseline:
        label = f"{item.sku} - {item.description}" if item.description else item.sku
        line = (
            f"  - {label} (qty {item.quantity}): baseline unit price ${item.unit_price:,.2f}, "
            f"baseline total ${item.total_price:,.2f}"
        )
        for tier in item.tiers:
            if tier.quantity == item.quantity:
                continue
            line += f"\n      Volume tier: qty {tier.quantity:,} at ${tier.unit_price:,.2f}/unit"
        lines.append(line)
    items_block = "\n".join(lines) or "  (no baseline items)"

    return f"""Extract the structured offer from a supplier's negotiation message.

SUPPLIER:
  Name: {profile.name} ({profile.code})
  Default lead time: {profile.lead_time_days} days
  Default payment terms: {profile.payment_terms or "not specified"}

BASELINE QUOTATION:
{items_block}
  Baseline total: ${baseline_total:,.2f}

SUPPLIER MESSAGE:
{message}

RULES:
1. totalCost is the sum of unitPrice x quantity over all items. If only a percentage discount is
   mentioned, apply it to the baseline total. If only a dollar total is mentioned, use it. Never 0.
2. items: one entry per SKU with the unit price at the BASELINE quantity. Always use baseline quantities,
   even if the supplier proposes different ones.
3. leadTimeDays and paymentTerms: use the supplier's stated values, otherwise the defaults above.
4. concessions: discounts, free shipping, warranties, expedited QA. Not volume pricing.
5. conditions: requirements attached to the offer (minimum order, upfront payment, ...).
6. volumeTiers: only when the supplier quotes quantity-dependent prices. Each tier is
   {{minQty, maxQty (null if unbounded), unitPrice}} and the baseline quantity tier must be included."""


# ============================================================================
# Deterministic reconciliation
# ============================================================================

def build_fallback_offer(profile: SupplierProfile, baseline: list[QuotationItem]) -> Offer:
    """Offer made purely of baseline prices and the supplier's default terms."""
    return Offer(
        total_cost=_baseline_total(baseline),
        items=[
            OfferItem(sku=item.sku, unit_price=item.unit_price, quantity=item.quantity)
            for item in baseline
        ],
        lead_time_days=profile.lead_time_days,
        payment_terms=profile.payment_terms,
        concessions=[],
        conditions=[],
    )


def resolve_tier_price(tiers: list[VolumeTier], quantity: float) -> float | None:
    """
    Unit price of the first tier covering quantity, or None.

    Overlapping or gapped tier lists are tolerated; declaration order decides.
    """
    for tier in tiers:
        if tier.covers(quantity) and tier.unit_price > 0:
            return tier.unit_price
    return None


def _check_tiers(sku: str, tiers: list[VolumeTier]) -> None:
    ordered = sorted(tiers, key=lambda t: t.min_qty)
    for previous, current in zip(ordered, ordered[1:]):
        if previous.max_qty is None or current.min_qty <= previous.max_qty:
            logger.warning(f"Overlapping volume tiers for {sku}: {previous.min_qty}-{previous.max_qty} / {current.min_qty}")
        elif current.min_qty > previous.max_qty + 1:
            logger.info(f"Gap in volume tiers for {sku}: {previous.max_qty} -> {current.min_qty}")


def _normalize_item(candidate: CandidateItem, baseline_item: QuotationItem | None) -> OfferItem:
    sku = candidate.sku.strip()
    tiers = [
        VolumeTier(min_qty=t.minQty, max_qty=t.maxQty, unit_price=t.unitPrice)
        for t in candidate.volumeTiers or []
    ] or None

    if baseline_item is None:
        logger.warning(f"SKU {sku!r} is not in the baseline quotation, possibly hallucinated")
        return OfferItem(sku=sku, unit_price=candidate.unitPrice, quantity=candidate.quantity, volume_tiers=tiers)

    sku = baseline_item.sku
    quantity = baseline_item.quantity
    if candidate.quantity != quantity:
        logger.info(f"Pinned {sku} quantity {candidate.quantity} to baseline {quantity}")

    unit_price = candidate.unitPrice
    if tiers:
        _check_tiers(sku, tiers)
        tier_price = resolve_tier_price(tiers, quantity)
        if tier_price is not None and abs(tier_price - unit_price) > 1e-9:
            logger.info(f"{sku} unit price {unit_price} replaced by baseline-quantity tier price {tier_price}")
            unit_price = tier_price

    return OfferItem(sku=sku, unit_price=unit_price, quantity=quantity, volume_tiers=tiers)


def _scale_items(items: list[OfferItem], factor: float) -> list[OfferItem]:
    return [item.model_copy(update={"unit_price": item.unit_price * factor}) for item in items]


def reconcile_offer(
    candidate: OfferCandidate,
    profile: SupplierProfile,
    baseline: list[QuotationItem],
    *,
    price_bands: PriceBands | None = None,
    item_tolerance: float | None = None,
    override_log_threshold: float | None = None
) -> Offer:
    """
    Turn a raw candidate into an Offer whose numbers are internally consistent.

    After this pass:
        - every item is valid (non-empty sku, quantity > 0, unit price > 0)
        - every baseline SKU is present, at the baseline quantity
        - total_cost == sum(unit_price x quantity) over the items
        - total_cost lies inside the supplier's price band (when a baseline exists)

    Args:
        candidate: Output of the structured-output service
        profile: Supplier defaults and price level
        baseline: Baseline quotation items
        price_bands: Band multipliers per price level
        item_tolerance: Extra width of the per-item outlier band
        override_log_threshold: Log when the rebuilt total differs by more than this

    Returns:
        Reconciled Offer
    """
    bands = price_bands or PriceBands.from_settings()
    tolerance = settings.ITEM_PRICE_TOLERANCE if item_tolerance is None else item_tolerance
    threshold = settings.TOTAL_OVERRIDE_LOG_THRESHOLD if override_log_threshold is None else override_log_threshold

    baseline_by_sku = {item.sku.strip().lower(): item for item in baseline}
    baseline_total = _baseline_total(baseline)

    # Pin quantities, apply tiers, drop items that cannot be priced
    items: list[OfferItem] = []
    for raw in candidate.items:
        item = _normalize_item(raw, baseline_by_sku.get(raw.sku.strip().lower()))
        if item.is_valid:
            items.append(item)
        else:
            logger.info(f"Dropped unusable item {raw.sku!r} (qty={raw.quantity}, price={raw.unitPrice})")

    # Deterministic total: never trust the proposed number when items exist
    if items:
        total = sum(item.line_total for item in items)
        if abs(total - candidate.totalCost) > threshold:
            logger.warning(
                f"{profile.name}: proposed total ${candidate.totalCost:,.2f} overridden by item sum ${total:,.2f}"
            )
    elif not math.isfinite(candidate.totalCost) or candidate.totalCost <= 1:
        total = baseline_total
        logger.warning(f"{profile.name}: no usable items or total, using baseline total ${baseline_total:,.2f}")
    else:
        total = candidate.totalCost

    # Backfill baseline SKUs the supplier did not price
    present = {item.sku.strip().lower() for item in items}
    missing = [item for item in baseline if item.sku.strip().lower() not in present]
    if missing:
        backfill = [OfferItem(sku=b.sku, unit_price=b.unit_price, quantity=b.quantity) for b in missing]
        backfill_total = sum(item.line_total for item in backfill)
        if items:
            total += backfill_total
        elif backfill_total > 0:
            # Only a headline total was given; spread it over the baseline mix
            backfill = _scale_items(backfill, total / backfill_total)
        logger.info(f"{profile.name}: backfilled {len(backfill)} baseline SKUs")
        items.extend(backfill)

    # Range validation against the supplier's price level
    low, high = bands.for_profile(profile)
    if baseline_total > 0:
        min_cost, max_cost = baseline_total * low, baseline_total * high
        clipped = min(max(total, min_cost), max_cost)
        if clipped != total:
            logger.warning(
                f"{profile.name}: total ${total:,.2f} outside {profile.price_level} band "
                f"[${min_cost:,.2f}, ${max_cost:,.2f}], clipped to ${clipped:,.2f}"
            )
            items_total = sum(item.line_total for item in items if item.is_valid)
            if items_total > 0:
                items = _scale_items(items, clipped / items_total)
            total = clipped

    # Per-item outliers are reported, never corrected
    for item in items:
        reference = baseline_by_sku.get(item.sku.strip().lower())
        if reference is None or reference.unit_price <= 0:
            continue
        ratio = item.unit_price / reference.unit_price
        if ratio < low * (1 - tolerance) or ratio > high * (1 + tolerance):
            logger.warning(
                f"{profile.name}: {item.sku} unit price ${item.unit_price:,.2f} is {ratio:.2f}x baseline, "
                f"outside {low * (1 - tolerance):.2f}-{high * (1 + tolerance):.2f}"
            )

    lead_time = candidate.leadTimeDays
    if lead_time is None or not math.isfinite(lead_time) or lead_time < 0:
        lead_time = profile.lead_time_days

    return Offer(
        total_cost=total,
        items=items,
        lead_time_days=lead_time,
        payment_terms=(candidate.paymentTerms or "").strip() or profile.payment_terms,
        concessions=[c for c in candidate.concessions if c.strip()],
        conditions=[c for c in candidate.conditions if c.strip()],
    )


# ============================================================================
# Entry point
# ============================================================================

async def extract_offer(
    message: str,
    profile: SupplierProfile,
    baseline: list[QuotationItem],
    *,
    config: ExtractorConfig | None = None,
    negotiation_id: str | None = None
) -> Offer:
    """
    Extract a structured offer from a supplier message.

    Never raises for upstream problems: a failed call is retried once with the
    same prompt, and a second failure yields the baseline fallback offer.

    Args:
        message: Supplier's free-text reply
        profile: Supplier profile (defaults and price level)
        baseline: Baseline quotation items
        config: Per-negotiation extractor config (built from settings when omitted)
        negotiation_id: Used for log context

    Returns:
        Offer
    """
    label = f"[{negotiation_id}] " if negotiation_id else ""
    prompt = build_extraction_prompt(message, profile, baseline)

    if config is None:
        try:
            config = ExtractorConfig.from_settings()
        except Exception as e:
            logger.error(f"{label}Extraction unavailable for {profile.name}: {e}, using baseline fallback")
            return build_fallback_offer(profile, baseline)

    for attempt in range(1, MAX_ATTEMPTS + 1):
        try:
            async with config.limiter:
                result = await config.service.generate_object(
                    prompt,
                    OfferCandidate,
                    model=config.model,
                    temperature=config.temperature,
                    max_tokens=config.max_tokens,
                )
        except Exception as e:
            logger.warning(f"{label}Extraction attempt {attempt}/{MAX_ATTEMPTS} failed for {profile.name}: {e}")
            continue

        if config.usage_sink is not None:
            try:
                config.usage_sink.track(result.model, result.input_tokens, result.output_tokens)
            except Exception as e:
                logger.warning(f"{label}Usage tracking failed for {profile.name}: {e}")

        try:
            offer = reconcile_offer(
                result.value,
                profile,
                baseline,
                price_bands=config.price_bands,
                item_tolerance=config.item_tolerance,
                override_log_threshold=config.override_log_threshold,
            )
        except Exception as e:
            logger.error(f"{label}Reconciliation failed for {profile.name}: {e}, using baseline fallback")
            return build_fallback_offer(profile, baseline)
        logger.info(
            f"{label}Extracted offer from {profile.name}: ${offer.total_cost:,.2f}, "
            f"{offer.lead_time_days}d, terms={offer.payment_terms!r}"
        )
        return offer

    logger.error(f"{label}Both extraction attempts failed for {profile.name}, using baseline fallback")
    return build_fallback_offer(profile, baseline)
