"""Checkout and payment schemas."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from app.schemas.order import OrderResponse


class Address(BaseModel):
    name: str | None = None
    mobile: str | None = None
    line1: str | None = None
    line2: str | None = None
    city: str | None = None
    state: str | None = None
    zip: str | None = None


class CheckoutSummaryResponse(BaseModel):
    item_count: int
    subtotal_subunits: int
    shipping_fee_subunits: int
    discount_subunits: int
    total_subunits: int
    currency: str
    coupon_code: str | None = None
    coupon_source: str | None = None
    loyalty_tier: str | None = None


class CreatePaymentOrderRequest(BaseModel):
    coupon_code: str | None = Field(default=None, max_length=64)
    billing_address: Address | None = None
    shipping_address: Address | None = None


class CreatePaymentOrderResponse(BaseModel):
    """What the client needs to open the gateway's checkout widget."""

    attempt_id: UUID
    key_id: str
    gateway_order_id: str
    amount_subunits: int
    currency: str
    expires_at: datetime | None = None
    summary: CheckoutSummaryResponse


class VerifyPaymentRequest(BaseModel):
    razorpay_order_id: str = Field(min_length=1, max_length=64)
    razorpay_payment_id: str = Field(min_length=1, max_length=64)
    razorpay_signature: str = Field(min_length=1, max_length=255)


class VerifyPaymentResponse(BaseModel):
    order: OrderResponse
    already_processed: bool = False


class RetryPaymentRequest(BaseModel):
    gateway_order_id: str | None = Field(default=None, max_length=64)


class WebhookAck(BaseModel):
    status: str
    note: str | None = None
    detail: dict[str, Any] | None = None


def address_dict(address: Address | None) -> dict[str, Any] | None:
    return address.model_dump(exclude_none=True) if address is not None else None
