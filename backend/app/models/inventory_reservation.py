"""InventoryReservation model: stock held for a payment attempt."""

from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String

from app.core.database import Base
from app.models.shared import UUIDType, generate_uuid, utc_now


class ReservationStatus(str, Enum):
    RESERVED = "reserved"
    CONSUMED = "consumed"
    RELEASED = "released"


class InventoryReservation(Base):
    __tablename__ = "inventory_reservations"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    attempt_id = Column(
        UUIDType, ForeignKey("payment_attempts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id = Column(UUIDType, nullable=False)
    product_id = Column(UUIDType, nullable=False)
    variant_id = Column(UUIDType, nullable=True)
    quantity = Column(Integer, nullable=False)
    # Whether stock was actually decremented (tracked quantity)
    tracked = Column(Boolean, nullable=False, default=False)
    status = Column(String(20), nullable=False, default=ReservationStatus.RESERVED.value)
    released_reason = Column(String(100), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)
