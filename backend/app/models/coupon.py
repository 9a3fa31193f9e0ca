"""Coupon models for admin-issued promotional discounts."""

from enum import Enum

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)

from app.core.database import Base
from app.models.shared import UUIDType, generate_uuid, utc_now


class CouponType(str, Enum):
    PERCENT = "percent"
    FIXED = "fixed"


class CouponScope(str, Enum):
    GENERIC = "generic"
    CUSTOMER = "customer"
    TIER = "tier"
    CATEGORY = "category"


class Coupon(Base):
    """Coupon model for promotional discounts.

    ``discount_value`` is a percentage for percent coupons and an amount in
    rupees for fixed coupons.
    """

    __tablename__ = "coupons"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    code = Column(String(64), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=True)
    description = Column(Text, nullable=True)

    discount_type = Column(String(20), nullable=False, default=CouponType.PERCENT.value)
    discount_value = Column(Numeric(12, 2), nullable=False, default=0)
    max_discount_subunits = Column(Integer, nullable=True)
    min_cart_subunits = Column(Integer, nullable=False, default=0)

    scope_type = Column(String(20), nullable=False, default=CouponScope.GENERIC.value)
    tier_scope = Column(String(20), nullable=True)
    category_scope = Column(JSON, nullable=True)

    usage_limit_total = Column(Integer, nullable=True)
    usage_limit_per_user = Column(Integer, nullable=False, default=1)

    starts_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class CouponUserTarget(Base):
    __tablename__ = "coupon_user_targets"
    __table_args__ = (UniqueConstraint("coupon_id", "user_id", name="uq_coupon_user_target"),)

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    coupon_id = Column(
        UUIDType, ForeignKey("coupons.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id = Column(UUIDType, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)


class CouponRedemption(Base):
    __tablename__ = "coupon_redemptions"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    coupon_id = Column(
        UUIDType, ForeignKey("coupons.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id = Column(UUIDType, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    order_id = Column(UUIDType, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now)
