"""
Negotiation round driver.

WHAT: Runs offer/counter-offer rounds with every supplier and emits the event stream
WHY: Ties conversation generation, offer extraction, scoring and the decision step together
HOW: Async generator; suppliers run concurrently per round under a semaphore, their events are
     yielded in per-supplier order once the round settles
"""

import asyncio
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Literal, Protocol

from pydantic import Field

from ..core.config import settings
from ..models.domain import (
    WireModel,
    Phase,
    Message,
    Offer,
    QuotationItem,
    SupplierProfile,
    ScoredOffer,
    ScoringEntry,
    CurveballInfo,
    CurveballAnalysis,
    deduplicate_items,
)
from ..models.events import (
    NegotiationEvent,
    NegotiationStartedEvent,
    SupplierStartedEvent,
    RoundStartEvent,
    RoundEndEvent,
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
)
from ..utils.logger import get_logger
from .decision_engine import build_final_decision, rank_offers
from .event_bus import EventBus
from .offer_extractor import ExtractorConfig, extract_offer
from .scoring import score_all_offers

logger = get_logger(__name__)


class MessageRequest(WireModel):
    """
    Request for one brand-side negotiation message.

    kind tags how the text should be produced: "fast_rfq" for the opening
    request for quotation, "full_synthesis" for counter-offers that weigh the
    live pool. The state machine never sees this distinction.
    """

    kind: Literal["fast_rfq", "full_synthesis"]
    supplier: SupplierProfile
    round_number: int
    phase: Phase = "initial"
    baseline: list[QuotationItem] = Field(default_factory=list)
    history: list[Message] = Field(default_factory=list)
    pool: list[ScoredOffer] = Field(default_factory=list)
    curveball: str | None = None


class ConversationSource(Protocol):
    """Opaque text generation for both sides of a negotiation."""

    async def brand_message(self, request: MessageRequest) -> str:
        ...

    async def supplier_reply(self, request: MessageRequest, brand_message: str) -> str:
        ...


CurveballAnalyst = Callable[[CurveballInfo, list[ScoredOffer]], Awaitable[CurveballAnalysis]]


@dataclass
class CurveballPlan:
    """Disruption injected after the initial phase."""
    supplier_id: str
    description: str
    extra_rounds: int = 1


@dataclass
class _RoundResult:
    supplier_id: str
    events: list[NegotiationEvent]
    offer: Offer | None


class NegotiationRunner:
    """
    Orchestrator for multi-supplier negotiation rounds.

    One runner drives one negotiation. Extraction concurrency, price bands and
    usage accounting come from the ExtractorConfig passed in.
    """

    def __init__(
        self,
        source: ConversationSource,
        extractor_config: ExtractorConfig,
        *,
        max_rounds: int | None = None,
        mode: str | None = None,
        custom_weights: dict[str, float] | None = None,
        supplier_limit: int | None = None,
        curveball: CurveballPlan | None = None,
        curveball_analyst: CurveballAnalyst | None = None
    ):
        """
        Initialize runner.

        Args:
            source: Produces brand messages and supplier replies
            extractor_config: Per-negotiation extraction config
            max_rounds: Rounds in the initial phase
            mode: Scoring mode for snapshots and the decision
            custom_weights: Weights for "custom" mode
            supplier_limit: Max suppliers negotiating at the same time
            curveball: Optional disruption injected after the initial phase
            curveball_analyst: Optional re-analysis hook for the curveball
        """
        self.source = source
        self.extractor_config = extractor_config
        self.max_rounds = max_rounds or settings.MAX_NEGOTIATION_ROUNDS
        self.mode = mode or settings.DEFAULT_SCORING_MODE
        self.custom_weights = custom_weights
        self.semaphore = asyncio.Semaphore(supplier_limit or settings.PARALLEL_SUPPLIER_LIMIT)
        self.curveball = curveball
        self.curveball_analyst = curveball_analyst

        logger.info(
            f"NegotiationRunner initialized (rounds={self.max_rounds}, mode={self.mode}, "
            f"curveball={'yes' if curveball else 'no'})"
        )

    @staticmethod
    def order_suppliers(profiles: list[SupplierProfile]) -> list[SupplierProfile]:
        """Primary-source supplier first; any extra primary-source supplier is dropped."""
        primary = [p for p in profiles if not p.is_simulated]
        for extra in primary[1:]:
            logger.warning(f"Ignoring second primary-source supplier {extra.id} ({extra.name})")
        return primary[:1] + [p for p in profiles if p.is_simulated]

    async def run(
        self,
        negotiation_id: str,
        quotation_id: str,
        baseline: list[QuotationItem],
        profiles: list[SupplierProfile]
    ) -> AsyncIterator[NegotiationEvent]:
        """
        Run the negotiation to a decision.

        Args:
            negotiation_id: Negotiation being driven
            quotation_id: Quotation the baseline came from
            baseline: Baseline quotation rows (duplicate SKUs are merged)
            profiles: Participating suppliers

        Yields:
            NegotiationEvent in emission order
        """
        baseline = deduplicate_items(baseline)
        suppliers = self.order_suppliers(profiles)
        active = {p.id: p for p in suppliers}
        history: dict[str, list[Message]] = {p.id: [] for p in suppliers}
        latest: dict[str, tuple[Offer, int]] = {}
        last_pool: list[ScoredOffer] = []

        try:
            yield NegotiationStartedEvent(
                negotiation_id=negotiation_id,
                quotation_id=quotation_id,
                mode=self.mode,
                supplier_count=len(suppliers),
            )
            for profile in suppliers:
                yield SupplierStartedEvent(
                    supplier_id=profile.id,
                    supplier_name=profile.name,
                    supplier_code=profile.code,
                    quality_rating=profile.quality_rating,
                    is_simulated=profile.is_simulated,
                )

            schedule: list[tuple[int, Phase]] = [(n, "initial") for n in range(1, self.max_rounds + 1)]
            curveball_text: str | None = None

            for round_number, phase in schedule:
                async for event in self._run_round(
                    negotiation_id, round_number, phase, baseline, active, history, latest, last_pool, curveball_text
                ):
                    yield event
                if not active:
                    yield ErrorEvent(error="ALL_SUPPLIERS_FAILED", message="Every supplier failed to respond")
                    return
                last_pool = self._score_pool(latest, active)
                yield OffersSnapshotEvent(round_number=round_number, phase=phase, offers=last_pool)
                yield RoundAnalysisEvent(round_number=round_number, phase=phase, summary=self._summarize(round_number, last_pool))

            if self.curveball and self.curveball.supplier_id in active:
                curveball_text = self.curveball.description
                curveball_round = self.max_rounds
                yield CurveballDetectedEvent(
                    supplier_id=self.curveball.supplier_id,
                    description=curveball_text,
                    round_number=curveball_round,
                )
                if self.curveball_analyst is not None:
                    info = CurveballInfo(
                        supplier_id=self.curveball.supplier_id,
                        round_number=curveball_round,
                        description=curveball_text,
                    )
                    try:
                        analysis = await self.curveball_analyst(info, last_pool)
                        yield CurveballAnalysisEvent(analysis=analysis, supplier_id=self.curveball.supplier_id)
                    except Exception as e:
                        logger.error(f"[{negotiation_id}] Curveball analysis failed: {e}")

                for offset in range(1, self.curveball.extra_rounds + 1):
                    round_number = curveball_round + offset
                    async for event in self._run_round(
                        negotiation_id, round_number, "post_curveball", baseline, active, history, latest, last_pool, curveball_text
                    ):
                        yield event
                    if not active:
                        yield ErrorEvent(error="ALL_SUPPLIERS_FAILED", message="Every supplier failed to respond")
                        return
                    last_pool = self._score_pool(latest, active)
                    yield OffersSnapshotEvent(round_number=round_number, phase="post_curveball", offers=last_pool)
                    yield RoundAnalysisEvent(
                        round_number=round_number,
                        phase="post_curveball",
                        summary=self._summarize(round_number, last_pool),
                    )
            elif self.curveball:
                logger.warning(f"[{negotiation_id}] Curveball supplier {self.curveball.supplier_id} is not active, skipped")

            for supplier_id in active:
                yield SupplierCompleteEvent(supplier_id=supplier_id)
            yield NegotiationCompleteEvent(negotiation_id=negotiation_id)
            yield GeneratingDecisionEvent()

            decision = build_final_decision(last_pool, self.mode)
            if decision is None:
                yield ErrorEvent(error="NO_OFFERS", message="No offers available to decide on")
                return
            yield DecisionEvent(decision=decision)
            logger.info(f"[{negotiation_id}] Negotiation complete: {decision.recommendation.primary_supplier_name}")

        except Exception as e:
            logger.error(f"[{negotiation_id}] Unexpected error in negotiation runner: {e}", exc_info=True)
            yield ErrorEvent(error="RUNNER_ERROR", message=str(e))

    async def _run_round(
        self,
        negotiation_id: str,
        round_number: int,
        phase: Phase,
        baseline: list[QuotationItem],
        active: dict[str, SupplierProfile],
        history: dict[str, list[Message]],
        latest: dict[str, tuple[Offer, int]],
        pool: list[ScoredOffer],
        curveball: str | None
    ) -> AsyncIterator[NegotiationEvent]:
        profiles = list(active.values())
        results = await asyncio.gather(
            *[
                self._supplier_round(negotiation_id, profile, round_number, phase, baseline, history[profile.id], pool, curveball)
                for profile in profiles
            ],
            return_exceptions=True,
        )

        for profile, result in zip(profiles, results):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                logger.error(f"[{negotiation_id}] Supplier {profile.name} failed in round {round_number}: {result}")
                del active[profile.id]
                yield RoundEndEvent(supplier_id=profile.id, round_number=round_number, phase=phase)
                yield SupplierCompleteEvent(supplier_id=profile.id)
                continue

            for event in result.events:
                yield event
            if result.offer is not None:
                latest[profile.id] = (result.offer, round_number)

    async def _supplier_round(
        self,
        negotiation_id: str,
        profile: SupplierProfile,
        round_number: int,
        phase: Phase,
        baseline: list[QuotationItem],
        history: list[Message],
        pool: list[ScoredOffer],
        curveball: str | None
    ) -> _RoundResult:
        """One supplier's round, bounded by the supplier semaphore."""
        async with self.semaphore:
            events: list[NegotiationEvent] = [
                RoundStartEvent(supplier_id=profile.id, round_number=round_number, phase=phase)
            ]
            request = MessageRequest(
                kind="fast_rfq" if round_number == 1 and phase == "initial" else "full_synthesis",
                supplier=profile,
                round_number=round_number,
                phase=phase,
                baseline=baseline,
                history=list(history),
                pool=pool,
                curveball=curveball,
            )

            brand_text = await self.source.brand_message(request)
            brand = self._record(history, profile.id, "brand_agent", brand_text, round_number, phase)
            events.append(brand)

            reply_text = await self.source.supplier_reply(request, brand_text)
            reply = self._record(history, profile.id, "supplier_agent", reply_text, round_number, phase)
            events.append(reply)

            offer = await extract_offer(
                reply_text,
                profile,
                baseline,
                config=self.extractor_config,
                negotiation_id=negotiation_id,
            )
            events.append(OfferExtractedEvent(supplier_id=profile.id, round_number=round_number, offer=offer, phase=phase))
            events.append(RoundEndEvent(supplier_id=profile.id, round_number=round_number, phase=phase))
            return _RoundResult(supplier_id=profile.id, events=events, offer=offer)

    @staticmethod
    def _record(
        history: list[Message],
        supplier_id: str,
        role: str,
        content: str,
        round_number: int,
        phase: Phase
    ) -> MessageEvent:
        message = Message(
            id=f"{supplier_id}-r{round_number}-{phase}-{len(history) + 1}",
            role=role,
            content=content,
            round_number=round_number,
            phase=phase,
        )
        history.append(message)
        return MessageEvent(
            supplier_id=supplier_id,
            message_id=message.id,
            role=role,
            content=content,
            round_number=round_number,
            phase=phase,
        )

    def _score_pool(self, latest: dict[str, tuple[Offer, int]], active: dict[str, SupplierProfile]) -> list[ScoredOffer]:
        entries = [
            ScoringEntry(supplier_id=sid, offer=offer, profile=active[sid], round_number=round_number)
            for sid, (offer, round_number) in latest.items()
            if sid in active
        ]
        return score_all_offers(entries, self.mode, custom_weights=self.custom_weights)

    @staticmethod
    def _summarize(round_number: int, pool: list[ScoredOffer]) -> str:
        if not pool:
            return f"Round {round_number}: no offers on the table."
        leader = rank_offers(pool)[0]
        cheapest = min(pool, key=lambda s: s.offer.total_cost)
        return (
            f"Round {round_number}: {leader.supplier_name} leads at {leader.scores.weighted}/100; "
            f"lowest total ${cheapest.offer.total_cost:,.2f} from {cheapest.supplier_name}."
        )


async def drive_negotiation(
    runner: NegotiationRunner,
    negotiation_id: str,
    quotation_id: str,
    baseline: list[QuotationItem],
    profiles: list[SupplierProfile],
    *,
    store=None,
    bus: EventBus | None = None
) -> list[NegotiationEvent]:
    """
    Run a negotiation, persisting every event before publishing it live.

    Args:
        runner: Configured runner
        negotiation_id: Existing negotiation id in the store
        quotation_id: Quotation id
        baseline: Baseline quotation rows
        profiles: Participating suppliers
        store: NegotiationStore (defaults to the singleton)
        bus: EventBus (defaults to the singleton)

    Returns:
        Every emitted event, in order
    """
    from ..core.negotiation_store import negotiation_store
    from .event_bus import event_bus

    store = store or negotiation_store
    bus = bus or event_bus

    emitted = []
    async for event in runner.run(negotiation_id, quotation_id, baseline, profiles):
        store.append_event(negotiation_id, event)
        bus.publish(negotiation_id, event)
        emitted.append(event)
    return emitted
