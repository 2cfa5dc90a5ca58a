"""
Negotiation state machine.

WHAT: Fold of the ordered event stream into the canonical NegotiationState
WHY: Every observer (UI, API snapshot, report) must see the same state for the same events
HOW: Pure apply_event(state, event) -> new state; a small holder class adds listener callbacks
"""

from typing import Callable

from ..models.domain import (
    NegotiationState,
    SupplierNegotiationState,
    Message,
    NegotiationRound,
    OffersSnapshot,
    RoundAnalysis,
    CurveballInfo,
    PillarActivity,
)
from ..models.events import (
    NegotiationEvent,
    NegotiationStartedEvent,
    SupplierStartedEvent,
    SupplierWaitingEvent,
    RoundStartEvent,
    PillarStartedEvent,
    PillarCompleteEvent,
    MessageEvent,
    OfferExtractedEvent,
    OffersSnapshotEvent,
    RoundAnalysisEvent,
    CurveballDetectedEvent,
    CurveballAnalysisEvent,
    SupplierCompleteEvent,
    DecisionEvent,
    ErrorEvent,
    parse_event,
)
from ..utils.logger import get_logger

logger = get_logger(__name__)

StateListener = Callable[[NegotiationState], None]


# ============================================================================
# Per-event handlers. Each receives a shallow copy of the state and replaces,
# never mutates, any nested object or list it changes.
# ============================================================================

def _own_supplier(state: NegotiationState, supplier_id: str) -> SupplierNegotiationState | None:
    """Private copy of one supplier, swapped into the state's supplier list."""
    for index, supplier in enumerate(state.suppliers):
        if supplier.supplier_id == supplier_id:
            owned = supplier.model_copy()
            state.suppliers = [*state.suppliers[:index], owned, *state.suppliers[index + 1:]]
            return owned
    return None


def _on_negotiation_started(state: NegotiationState, event: NegotiationStartedEvent) -> None:
    state.negotiation_id = event.negotiation_id
    state.status = "negotiating"
    state.error_message = None


def _on_supplier_started(state: NegotiationState, event: SupplierStartedEvent) -> None:
    existing = _own_supplier(state, event.supplier_id)
    if existing is not None:
        existing.status = "negotiating"
        return

    if not event.is_simulated and any(not s.is_simulated for s in state.suppliers):
        logger.warning(
            f"Rejected second primary-source supplier {event.supplier_id} ({event.supplier_name})"
        )
        return

    supplier = SupplierNegotiationState(
        supplier_id=event.supplier_id,
        supplier_name=event.supplier_name,
        supplier_code=event.supplier_code,
        quality_rating=event.quality_rating,
        is_simulated=event.is_simulated,
        status="negotiating",
    )
    # The primary-source supplier always leads the list
    if event.is_simulated:
        state.suppliers = [*state.suppliers, supplier]
    else:
        state.suppliers = [supplier, *state.suppliers]


def _on_supplier_waiting(state: NegotiationState, event: SupplierWaitingEvent) -> None:
    supplier = _own_supplier(state, event.supplier_id)
    if supplier is not None:
        supplier.status = "waiting"


def _on_round_start(state: NegotiationState, event: RoundStartEvent) -> None:
    supplier = _own_supplier(state, event.supplier_id)
    if supplier is not None:
        supplier.current_round = event.round_number
        supplier.status = "negotiating"


def _on_supplier_complete(state: NegotiationState, event: SupplierCompleteEvent) -> None:
    supplier = _own_supplier(state, event.supplier_id)
    if supplier is not None:
        supplier.status = "complete"


def _current_phase(supplier: SupplierNegotiationState, round_number: int | None = None) -> str:
    for message in reversed(supplier.messages):
        if round_number is None or message.round_number == round_number:
            return message.phase
    return "initial"


def _on_message(state: NegotiationState, event: MessageEvent) -> None:
    supplier = _own_supplier(state, event.supplier_id)
    if supplier is None:
        return
    message_id = event.message_id or f"{event.supplier_id}-r{event.round_number}-{len(supplier.messages) + 1}"
    supplier.messages = [*supplier.messages, Message(
        id=message_id,
        role=event.role,
        content=event.content,
        round_number=event.round_number,
        phase=event.phase,
    )]


def _on_offer_extracted(state: NegotiationState, event: OfferExtractedEvent) -> None:
    supplier = _own_supplier(state, event.supplier_id)
    if supplier is None:
        return
    phase = event.phase or _current_phase(supplier, event.round_number)
    supplier.rounds = [*supplier.rounds, NegotiationRound(
        round_number=event.round_number,
        supplier_id=event.supplier_id,
        phase=phase,
        offer=event.offer,
        messages=[
            m for m in supplier.messages
            if m.round_number == event.round_number and m.phase == phase
        ],
    )]


def _on_offers_snapshot(state: NegotiationState, event: OffersSnapshotEvent) -> None:
    state.offers_snapshots = [*state.offers_snapshots, OffersSnapshot(
        round_number=event.round_number,
        phase=event.phase,
        offers=event.offers,
    )]


def _on_round_analysis(state: NegotiationState, event: RoundAnalysisEvent) -> None:
    state.round_analyses = [*state.round_analyses, RoundAnalysis(
        round_number=event.round_number,
        summary=event.summary,
        supplier_id=event.supplier_id,
        phase=event.phase,
    )]


def _on_pillar_started(state: NegotiationState, event: PillarStartedEvent) -> None:
    state.pillar_activity = [
        p for p in state.pillar_activity
        if not (p.pillar == event.pillar and p.supplier_id == event.supplier_id and p.round_number == event.round_number)
    ]
    state.pillar_activity.append(PillarActivity(
        supplier_id=event.supplier_id,
        pillar=event.pillar,
        round_number=event.round_number,
        status="running",
    ))


def _on_pillar_complete(state: NegotiationState, event: PillarCompleteEvent) -> None:
    activities = list(state.pillar_activity)
    for index, activity in enumerate(activities):
        if (activity.pillar == event.pillar and activity.supplier_id == event.supplier_id
                and activity.round_number == event.round_number):
            activities[index] = activity.model_copy(update={"status": "complete", "summary": event.summary})
            state.pillar_activity = activities
            return
    activities.append(PillarActivity(
        supplier_id=event.supplier_id,
        pillar=event.pillar,
        round_number=event.round_number,
        status="complete",
        summary=event.summary,
    ))
    state.pillar_activity = activities


def _on_curveball_detected(state: NegotiationState, event: CurveballDetectedEvent) -> None:
    previous_analysis = state.curveball.analysis if state.curveball else None
    state.curveball = CurveballInfo(
        supplier_id=event.supplier_id,
        round_number=event.round_number,
        description=event.description,
        analysis=previous_analysis,
    )

    supplier = _own_supplier(state, event.supplier_id)
    if supplier is None:
        return
    round_number = event.round_number if event.round_number is not None else supplier.current_round
    supplier.messages = [*supplier.messages, Message(
        id=f"curveball-{event.supplier_id}-{len(supplier.messages) + 1}",
        role="supplier_agent",
        content=f"[CURVEBALL] {event.description}",
        round_number=round_number,
        phase=_current_phase(supplier),
    )]


def _on_curveball_analysis(state: NegotiationState, event: CurveballAnalysisEvent) -> None:
    if state.curveball is not None:
        state.curveball = state.curveball.model_copy(update={"analysis": event.analysis})
    else:
        # Detection event was missed; keep the analysis anyway
        state.curveball = CurveballInfo(
            supplier_id=event.supplier_id,
            description="Curveball detected",
            analysis=event.analysis,
        )


def _on_decision_pending(state: NegotiationState, event: NegotiationEvent) -> None:
    if state.status != "complete":
        state.status = "generating_decision"


def _on_decision(state: NegotiationState, event: DecisionEvent) -> None:
    state.status = "complete"
    state.decision = event.decision
    state.error_message = None


def _on_error(state: NegotiationState, event: ErrorEvent) -> None:
    state.status = "error"
    state.error_message = event.message


_HANDLERS: dict[str, Callable[[NegotiationState, NegotiationEvent], None]] = {
    "negotiation_started": _on_negotiation_started,
    "supplier_started": _on_supplier_started,
    "supplier_waiting": _on_supplier_waiting,
    "round_start": _on_round_start,
    "supplier_complete": _on_supplier_complete,
    "message": _on_message,
    "offer_extracted": _on_offer_extracted,
    "offers_snapshot": _on_offers_snapshot,
    "round_analysis": _on_round_analysis,
    "pillar_started": _on_pillar_started,
    "pillar_complete": _on_pillar_complete,
    "curveball_detected": _on_curveball_detected,
    "curveball_analysis": _on_curveball_analysis,
    "negotiation_complete": _on_decision_pending,
    "generating_decision": _on_decision_pending,
    "decision": _on_decision,
    "error": _on_error,
}

# Accepted but carry no state: transport chatter and progress markers
PASSIVE_EVENTS = frozenset({"round_end", "context_built", "connected", "heartbeat"})


def apply_event(state: NegotiationState, event: NegotiationEvent | dict) -> NegotiationState:
    """
    Fold one event into the state.

    The input state is never mutated; parts the event does not touch are shared
    with the returned state. Unknown, malformed and passive events
    return the input state object unchanged.

    Args:
        state: Current state
        event: Typed event, or a raw JSON object from the transport

    Returns:
        The next state
    """
    if isinstance(event, dict):
        parsed = parse_event(event)
        if parsed is None:
            return state
        event = parsed

    handler = _HANDLERS.get(event.type)
    if handler is None:
        if event.type not in PASSIVE_EVENTS:
            logger.warning(f"No handler for event type {event.type}")
        return state

    next_state = state.model_copy()
    handler(next_state, event)
    return next_state


def fold_events(events: list[NegotiationEvent | dict], state: NegotiationState | None = None) -> NegotiationState:
    """Apply events in order, starting from an empty state unless one is given."""
    current = state or NegotiationState()
    for event in events:
        current = apply_event(current, event)
    return current


class NegotiationStateMachine:
    """
    Single-consumer holder for one negotiation's state.

    Listeners are called synchronously after each event that changed the
    state, always with a complete (never half-applied) state.
    """

    def __init__(self, state: NegotiationState | None = None):
        self._state = state or NegotiationState()
        self._listeners: list[StateListener] = []

    @property
    def state(self) -> NegotiationState:
        return self._state

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def apply(self, event: NegotiationEvent | dict) -> NegotiationState:
        next_state = apply_event(self._state, event)
        if next_state is not self._state:
            self._state = next_state
            self._notify()
        return self._state

    def replace(self, state: NegotiationState) -> NegotiationState:
        """Swap in an authoritative snapshot (used on connect and reconnect)."""
        self._state = state
        self._notify()
        return self._state

    def update(self, **changes) -> NegotiationState:
        """Apply client-side bookkeeping (status, error, retry counter) outside the event stream."""
        return self.replace(self._state.model_copy(update=changes))

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self._state)
            except Exception as e:
                logger.error(f"State listener failed: {e}")
