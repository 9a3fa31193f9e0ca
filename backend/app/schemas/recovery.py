"""Abandoned cart recovery schemas."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class CampaignResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    enabled: bool
    inactivity_minutes: int
    max_attempts: int
    attempt_delays_minutes: list[int]
    discount_ladder_percent: list[int]
    max_discount_percent: int
    min_discount_cart_subunits: int
    recovery_window_hours: int
    send_email: bool
    send_whatsapp: bool
    send_payment_link: bool
    reminder_enable: bool


class CampaignUpdate(BaseModel):
    """Partial campaign update; omitted fields keep their current value."""

    enabled: bool | None = None
    inactivity_minutes: int | None = None
    max_attempts: int | None = None
    attempt_delays_minutes: list[int] | None = None
    discount_ladder_percent: list[int] | None = None
    max_discount_percent: int | None = None
    min_discount_cart_subunits: int | None = None
    recovery_window_hours: int | None = None
    send_email: bool | None = None
    send_whatsapp: bool | None = None
    send_payment_link: bool | None = None
    reminder_enable: bool | None = None


class ProcessRequest(BaseModel):
    limit: int = Field(default=30, ge=1, le=100)
    max_batches: int = Field(default=1, ge=1, le=100)


class ProcessSummary(BaseModel):
    due: int = 0
    processed: int = 0
    sent: int = 0
    skipped: int = 0
    failed: int = 0
    recovered: int = 0
    expired: int = 0
    cancelled: int = 0
    batches: int = 0
    campaign_disabled: bool = False
    failed_reasons: dict[str, int] = Field(default_factory=dict)


class MaintenanceSummary(BaseModel):
    candidates_checked: int = 0
    promoted: int = 0
    expired: int = 0
    cancelled: int = 0


class JourneyResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    status: str
    cart_item_count: int
    cart_total_subunits: int
    currency: str
    cart_snapshot: list[dict[str, Any]] = Field(default_factory=list)
    last_activity_at: datetime | None = None
    last_attempt_no: int
    next_attempt_at: datetime | None = None
    expires_at: datetime | None = None
    recovered_order_id: UUID | None = None
    recovered_at: datetime | None = None
    recovery_reason: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class JourneyListItem(JourneyResponse):
    customer_name: str | None = None
    customer_email: str | None = None
    customer_mobile: str | None = None
    last_attempt_at: datetime | None = None


class AttemptResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    attempt_no: int
    status: str
    channels: list[dict[str, Any]] = Field(default_factory=list)
    discount_code: str | None = None
    discount_percent: int
    payment_link_id: str | None = None
    payment_link_url: str | None = None
    error_message: str | None = None
    scheduled_at: datetime | None = None
    sent_at: datetime | None = None
    created_at: datetime | None = None


class DiscountResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    attempt_no: int
    code: str
    discount_type: str
    discount_percent: int
    max_discount_subunits: int | None = None
    min_cart_subunits: int | None = None
    status: str
    expires_at: datetime | None = None
    redeemed_order_id: UUID | None = None
    created_at: datetime | None = None


class JourneyTimelineResponse(BaseModel):
    journey: JourneyListItem
    attempts: list[AttemptResponse]
    discounts: list[DiscountResponse]


class DailyRecoveryPoint(BaseModel):
    date: str
    created: int
    recovered: int
    recovered_value_subunits: int


class RecoveryInsightsResponse(BaseModel):
    days: int
    journeys: dict[str, int]
    recovery_rate_percent: float
    recovered_value_subunits: int
    attempts: dict[str, float]
    daily: list[DailyRecoveryPoint]
