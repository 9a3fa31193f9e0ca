"""RecoveryDiscount model: a coupon issued by a recovery attempt."""

from enum import Enum

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String

from app.core.database import Base
from app.models.shared import UUIDType, generate_uuid, utc_now


class DiscountStatus(str, Enum):
    ACTIVE = "active"
    REDEEMED = "redeemed"
    INVALIDATED = "invalidated"


class RecoveryDiscount(Base):
    __tablename__ = "recovery_discounts"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    journey_id = Column(
        UUIDType, ForeignKey("recovery_journeys.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id = Column(UUIDType, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    attempt_no = Column(Integer, nullable=False)
    code = Column(String(40), nullable=False, unique=True, index=True)
    discount_type = Column(String(20), nullable=False, default="percent")
    discount_percent = Column(Integer, nullable=False, default=0)
    max_discount_subunits = Column(Integer, nullable=True)
    min_cart_subunits = Column(Integer, nullable=True)
    status = Column(String(20), nullable=False, default=DiscountStatus.ACTIVE.value)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    redeemed_order_id = Column(UUIDType, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)
