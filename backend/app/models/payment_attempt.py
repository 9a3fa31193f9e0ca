"""PaymentAttempt model: one gateway order created for a checkout."""

from enum import Enum

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String

from app.core.database import Base
from app.models.shared import UUIDType, generate_uuid, utc_now


class PaymentAttemptStatus(str, Enum):
    """Payment attempt status enum."""

    CREATED = "created"
    ATTEMPTED = "attempted"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"
    EXPIRED = "expired"


class PaymentAttempt(Base):
    """Tracks a gateway order from creation to a single linked local order.

    ``local_order_id`` is written once, by a conditional update that requires
    it to still be null.
    """

    __tablename__ = "payment_attempts"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    user_id = Column(UUIDType, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    gateway_order_id = Column(String(64), nullable=False, unique=True, index=True)
    gateway_payment_id = Column(String(64), nullable=True, index=True)
    gateway_signature = Column(String(255), nullable=True)

    amount_subunits = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="INR")
    status = Column(String(20), nullable=False, default=PaymentAttemptStatus.CREATED.value)

    billing_address = Column(JSON, nullable=True)
    shipping_address = Column(JSON, nullable=True)
    notes = Column(JSON, nullable=True)

    local_order_id = Column(UUIDType, nullable=True)
    failure_reason = Column(String(500), nullable=True)
    verify_started_at = Column(DateTime(timezone=True), nullable=True)
    verified_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)
