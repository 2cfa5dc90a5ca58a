"""
Negotiation record store.

WHAT: Persist negotiations and their ordered event log; answer snapshot queries
WHY: Observers reconnect by asking for status and state instead of replaying the stream
HOW: SQLAlchemy sessions, per-negotiation locks serializing sequence numbers, state rebuilt by folding events
"""

import threading
import weakref
from uuid import uuid4

from sqlalchemy import func
from sqlalchemy.orm import sessionmaker

from .database import get_db
from .models import Negotiation, NegotiationEventRecord, NegotiationStatus
from ..models.api_schemas import NegotiationSummary
from ..models.domain import FinalDecision, NegotiationState
from ..models.events import NegotiationEvent
from ..services.negotiation_state import fold_events
from ..utils.exceptions import (
    NegotiationNotFoundError,
    QuotationNotFoundError,
    DecisionNotReadyError,
)
from ..utils.logger import get_logger

logger = get_logger(__name__)


class NegotiationStore:
    """
    Record store keyed by negotiation id.

    Writes for one negotiation are serialized by a dedicated lock so event
    sequence numbers are gap-free and strictly increasing. Different
    negotiations never contend.
    """

    def __init__(self, session_factory: sessionmaker | None = None):
        self._session_factory = session_factory
        # Entries disappear once no writer holds or waits on the lock
        self._locks: weakref.WeakValueDictionary[str, threading.Lock] = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

    def _lock_for(self, negotiation_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(negotiation_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[negotiation_id] = lock
            return lock

    def _session(self):
        return get_db(self._session_factory)

    @staticmethod
    def _summary(negotiation: Negotiation, event_count: int) -> NegotiationSummary:
        return NegotiationSummary(
            negotiation_id=negotiation.id,
            quotation_id=negotiation.quotation_id,
            status=negotiation.status.value,
            mode=negotiation.mode,
            has_decision=negotiation.decision_data is not None,
            event_count=event_count,
            updated_at=negotiation.updated_at,
        )

    def _event_count(self, db, negotiation_id: str) -> int:
        return db.query(func.count(NegotiationEventRecord.id)).filter(
            NegotiationEventRecord.negotiation_id == negotiation_id
        ).scalar() or 0

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_negotiation(
        self,
        quotation_id: str,
        mode: str = "balanced",
        negotiation_id: str | None = None
    ) -> NegotiationSummary:
        """Create a pending negotiation for a quotation."""
        with self._session() as db:
            negotiation = Negotiation(
                id=negotiation_id or str(uuid4()),
                quotation_id=quotation_id,
                mode=mode,
                status=NegotiationStatus.PENDING,
            )
            db.add(negotiation)
            db.flush()
            logger.info(f"Created negotiation {negotiation.id} for quotation {quotation_id} (mode={mode})")
            return self._summary(negotiation, 0)

    def append_event(self, negotiation_id: str, event: NegotiationEvent) -> int:
        """
        Append an event and apply its effect on the persisted status.

        Returns:
            Sequence number assigned to the event (starting at 1)

        Raises:
            NegotiationNotFoundError: Unknown negotiation id
        """
        with self._lock_for(negotiation_id), self._session() as db:
            negotiation = db.get(Negotiation, negotiation_id)
            if negotiation is None:
                raise NegotiationNotFoundError(negotiation_id)

            last = db.query(func.max(NegotiationEventRecord.sequence_num)).filter(
                NegotiationEventRecord.negotiation_id == negotiation_id
            ).scalar() or 0
            sequence_num = last + 1

            db.add(NegotiationEventRecord(
                negotiation_id=negotiation_id,
                sequence_num=sequence_num,
                event_type=event.type,
                event_data=event.to_wire(),
            ))

            if event.type == "negotiation_started":
                negotiation.status = NegotiationStatus.NEGOTIATING
            elif event.type == "curveball_detected":
                negotiation.status = NegotiationStatus.CURVEBALL
                negotiation.curveball_description = event.description
            elif event.type == "decision":
                negotiation.status = NegotiationStatus.COMPLETED
                negotiation.decision_data = event.decision.to_wire()
            elif event.type == "error":
                negotiation.status = NegotiationStatus.FAILED
                negotiation.error_message = event.message

            return sequence_num

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_summary(self, negotiation_id: str) -> NegotiationSummary:
        """Status of a negotiation by id."""
        with self._session() as db:
            negotiation = db.get(Negotiation, negotiation_id)
            if negotiation is None:
                raise NegotiationNotFoundError(negotiation_id)
            return self._summary(negotiation, self._event_count(db, negotiation_id))

    def find_by_quotation(self, quotation_id: str) -> NegotiationSummary:
        """Status of the most recent negotiation for a quotation."""
        with self._session() as db:
            negotiation = (
                db.query(Negotiation)
                .filter(Negotiation.quotation_id == quotation_id)
                .order_by(Negotiation.created_at.desc())
                .first()
            )
            if negotiation is None:
                raise QuotationNotFoundError(quotation_id)
            return self._summary(negotiation, self._event_count(db, negotiation.id))

    def get_decision(self, negotiation_id: str) -> FinalDecision:
        """
        Persisted decision of a completed negotiation.

        Raises:
            NegotiationNotFoundError: Unknown id
            DecisionNotReadyError: Not completed yet
        """
        with self._session() as db:
            negotiation = db.get(Negotiation, negotiation_id)
            if negotiation is None:
                raise NegotiationNotFoundError(negotiation_id)
            if negotiation.status != NegotiationStatus.COMPLETED or negotiation.decision_data is None:
                raise DecisionNotReadyError(negotiation_id, negotiation.status.value)
            return FinalDecision.model_validate(negotiation.decision_data)

    def list_events(self, negotiation_id: str, after_sequence: int = 0) -> list[dict]:
        """Persisted event payloads in sequence order."""
        with self._session() as db:
            if db.get(Negotiation, negotiation_id) is None:
                raise NegotiationNotFoundError(negotiation_id)
            records = (
                db.query(NegotiationEventRecord)
                .filter(
                    NegotiationEventRecord.negotiation_id == negotiation_id,
                    NegotiationEventRecord.sequence_num > after_sequence,
                )
                .order_by(NegotiationEventRecord.sequence_num)
                .all()
            )
            return [record.event_data for record in records]

    def load_state(self, negotiation_id: str) -> NegotiationState:
        """Full NegotiationState rebuilt from the event log."""
        summary = self.get_summary(negotiation_id)
        state = fold_events(
            self.list_events(negotiation_id),
            NegotiationState(negotiation_id=negotiation_id),
        )
        if summary.status == "completed" and state.status != "complete":
            state = state.model_copy(update={
                "status": "complete",
                "decision": self.get_decision(negotiation_id),
            })
        elif summary.status in ("negotiating", "curveball") and state.status == "connecting":
            state = state.model_copy(update={"status": "negotiating"})
        return state


# Singleton instance
negotiation_store = NegotiationStore()
