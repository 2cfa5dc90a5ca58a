"""
ORM models for negotiation persistence.

WHAT: SQLAlchemy tables for negotiations and their ordered event log
WHY: Snapshot queries and reconnects are answered from persisted events
HOW: Declarative models with status enum, JSON payloads and a per-negotiation sequence constraint
"""

import enum
from datetime import datetime
from uuid import uuid4

from sqlalchemy import (
    Column, Integer, String, DateTime, Text, JSON,
    ForeignKey, UniqueConstraint, Index, Enum as SQLEnum
)
from sqlalchemy.orm import relationship

from .database import Base


class NegotiationStatus(str, enum.Enum):
    """Persisted lifecycle status of a negotiation."""
    PENDING = "pending"
    NEGOTIATING = "negotiating"
    CURVEBALL = "curveball"
    COMPLETED = "completed"
    FAILED = "failed"


IN_PROGRESS_STATUSES = frozenset({NegotiationStatus.PENDING, NegotiationStatus.NEGOTIATING, NegotiationStatus.CURVEBALL})


class Negotiation(Base):
    """
    One negotiation over a quotation.

    decision_data holds the FinalDecision wire payload once completed.
    """
    __tablename__ = "negotiations"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    quotation_id = Column(String(100), nullable=False)
    status = Column(SQLEnum(NegotiationStatus), nullable=False, default=NegotiationStatus.PENDING)
    mode = Column(String(20), nullable=False, default="balanced")
    curveball_description = Column(Text, nullable=True)
    decision_data = Column(JSON, nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    events = relationship(
        "NegotiationEventRecord",
        back_populates="negotiation",
        cascade="all, delete-orphan",
        order_by="NegotiationEventRecord.sequence_num",
    )

    __table_args__ = (
        Index("idx_negotiation_quotation", "quotation_id", "created_at"),
    )

    def __repr__(self):
        return f"<Negotiation(id={self.id}, quotation={self.quotation_id}, status={self.status})>"


class NegotiationEventRecord(Base):
    """Append-only event log entry, ordered by sequence_num within a negotiation."""
    __tablename__ = "negotiation_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    negotiation_id = Column(String(36), ForeignKey("negotiations.id", ondelete="CASCADE"), nullable=False)
    sequence_num = Column(Integer, nullable=False)
    event_type = Column(String(50), nullable=False)
    event_data = Column(JSON, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    negotiation = relationship("Negotiation", back_populates="events")

    __table_args__ = (
        UniqueConstraint("negotiation_id", "sequence_num", name="uq_event_sequence"),
        Index("idx_event_negotiation_seq", "negotiation_id", "sequence_num"),
    )

    def __repr__(self):
        return f"<NegotiationEventRecord(negotiation={self.negotiation_id}, seq={self.sequence_num}, type={self.event_type})>"
