"""Order models: orders, frozen line items and the status event log."""

from enum import Enum

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String

from app.core.database import Base
from app.models.shared import UUIDType, generate_uuid, utc_now


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    SHIPPED = "shipped"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class OrderPaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class Order(Base):
    """An order created exactly once per successful payment.

    Totals satisfy ``subtotal + shipping_fee - discount_total == total``.
    """

    __tablename__ = "orders"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    order_ref = Column(String(40), nullable=False, unique=True, index=True)
    user_id = Column(UUIDType, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=OrderStatus.CONFIRMED.value, index=True)
    payment_status = Column(String(20), nullable=False, default=OrderPaymentStatus.PENDING.value)

    subtotal_subunits = Column(Integer, nullable=False, default=0)
    shipping_fee_subunits = Column(Integer, nullable=False, default=0)
    discount_total_subunits = Column(Integer, nullable=False, default=0)
    total_subunits = Column(Integer, nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="INR")

    billing_address = Column(JSON, nullable=True)
    shipping_address = Column(JSON, nullable=True)

    coupon_code = Column(String(64), nullable=True)
    coupon_source = Column(String(20), nullable=True)
    coupon_discount_subunits = Column(Integer, nullable=False, default=0)
    loyalty_tier = Column(String(20), nullable=True)
    abandoned_journey_id = Column(UUIDType, nullable=True, index=True)

    payment_gateway = Column(String(20), nullable=True)
    gateway_order_id = Column(String(64), nullable=True, index=True)
    gateway_payment_id = Column(String(64), nullable=True, unique=True, index=True)
    payment_attempt_id = Column(UUIDType, nullable=True)
    settlement_id = Column(String(64), nullable=True, index=True)
    settlement_snapshot = Column(JSON, nullable=True)

    refund_id = Column(String(64), nullable=True)
    refund_status = Column(String(20), nullable=True)
    refund_amount_subunits = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utc_now, index=True)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    order_id = Column(
        UUIDType, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_id = Column(UUIDType, nullable=False)
    variant_id = Column(UUIDType, nullable=True)
    title = Column(String(255), nullable=False)
    variant_title = Column(String(255), nullable=True)
    quantity = Column(Integer, nullable=False)
    price_subunits = Column(Integer, nullable=False)
    line_total_subunits = Column(Integer, nullable=False)
    image_url = Column(String(500), nullable=True)
    sku = Column(String(100), nullable=True)
    item_snapshot = Column(JSON, nullable=True)
    position = Column(Integer, nullable=False, default=0)


class OrderStatusEvent(Base):
    __tablename__ = "order_status_events"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    order_id = Column(
        UUIDType, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    status = Column(String(20), nullable=False)
    note = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now)
