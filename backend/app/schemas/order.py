"""Order schemas."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.models.order import OrderStatus


class OrderItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    product_id: UUID
    variant_id: UUID | None = None
    title: str
    variant_title: str | None = None
    quantity: int
    price_subunits: int
    line_total_subunits: int
    image_url: str | None = None
    sku: str | None = None


class OrderStatusEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    status: str
    note: str | None = None
    created_at: datetime | None = None


class OrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_ref: str
    user_id: UUID
    status: str
    payment_status: str
    subtotal_subunits: int
    shipping_fee_subunits: int
    discount_total_subunits: int
    total_subunits: int
    currency: str
    billing_address: dict[str, Any] | None = None
    shipping_address: dict[str, Any] | None = None
    coupon_code: str | None = None
    coupon_source: str | None = None
    coupon_discount_subunits: int = 0
    loyalty_tier: str | None = None
    abandoned_journey_id: UUID | None = None
    gateway_order_id: str | None = None
    gateway_payment_id: str | None = None
    settlement_id: str | None = None
    refund_id: str | None = None
    refund_status: str | None = None
    refund_amount_subunits: int | None = None
    created_at: datetime | None = None


class OrderDetailResponse(OrderResponse):
    items: list[OrderItemResponse] = Field(default_factory=list)
    events: list[OrderStatusEventResponse] = Field(default_factory=list)
    settlement_snapshot: dict[str, Any] | None = None


class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    note: str | None = Field(default=None, max_length=255)


class OrderMetricsResponse(BaseModel):
    total_orders: int
    by_status: dict[str, int]
    revenue_subunits: int


class OrderListItem(OrderResponse):
    customer_name: str | None = None
    customer_email: str | None = None
    customer_mobile: str | None = None
