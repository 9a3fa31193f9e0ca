"""RecoveryAttempt model: one scheduled contact inside a journey."""

from enum import Enum

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String

from app.core.database import Base
from app.models.shared import UUIDType, generate_uuid, utc_now


class AttemptStatus(str, Enum):
    SENT = "sent"
    PARTIAL = "partial"
    SKIPPED = "skipped"
    FAILED = "failed"
    PAID = "paid"


class RecoveryAttempt(Base):
    """Append-only. Rows change afterwards only when a payment link is paid."""

    __tablename__ = "recovery_attempts"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    journey_id = Column(
        UUIDType, ForeignKey("recovery_journeys.id", ondelete="CASCADE"), nullable=False, index=True
    )
    attempt_no = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default=AttemptStatus.SENT.value)
    channels = Column(JSON, nullable=False, default=list)
    discount_code = Column(String(40), nullable=True)
    discount_percent = Column(Integer, nullable=False, default=0)
    payment_link_id = Column(String(64), nullable=True, index=True)
    payment_link_url = Column(String(500), nullable=True)
    payload = Column(JSON, nullable=True)
    response = Column(JSON, nullable=True)
    error_message = Column(String(500), nullable=True)
    scheduled_at = Column(DateTime(timezone=True), nullable=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)
