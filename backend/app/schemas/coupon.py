"""Coupon schemas."""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.models.coupon import CouponScope, CouponType


class CouponCreate(BaseModel):
    code: str | None = Field(default=None, min_length=3, max_length=64)
    name: str | None = Field(default=None, max_length=255)
    description: str | None = None
    discount_type: CouponType = CouponType.PERCENT
    discount_value: Decimal = Field(gt=0)
    max_discount_subunits: int | None = Field(default=None, ge=0)
    min_cart_subunits: int = Field(default=0, ge=0)
    scope_type: CouponScope = CouponScope.GENERIC
    tier_scope: str | None = None
    category_ids: list[str] = Field(default_factory=list)
    user_ids: list[UUID] = Field(default_factory=list)
    usage_limit_total: int | None = Field(default=None, ge=1)
    usage_limit_per_user: int = Field(default=1, ge=1)
    starts_at: datetime | None = None
    expires_at: datetime | None = None

    @model_validator(mode="after")
    def check_scope_and_window(self) -> "CouponCreate":
        if self.discount_type == CouponType.PERCENT and self.discount_value > 100:
            raise ValueError("Percent discount cannot exceed 100")
        if self.starts_at and self.expires_at and self.expires_at <= self.starts_at:
            raise ValueError("expires_at must be after starts_at")
        if self.scope_type == CouponScope.CUSTOMER and not self.user_ids:
            raise ValueError("Customer coupons need at least one user")
        if self.scope_type == CouponScope.TIER and not self.tier_scope:
            raise ValueError("Tier coupons need a tier_scope")
        if self.scope_type == CouponScope.CATEGORY and not self.category_ids:
            raise ValueError("Category coupons need at least one category")
        return self


class CouponResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    code: str
    name: str | None = None
    description: str | None = None
    discount_type: str
    discount_value: Decimal
    max_discount_subunits: int | None = None
    min_cart_subunits: int
    scope_type: str
    tier_scope: str | None = None
    category_scope: list[str] | None = None
    usage_limit_total: int | None = None
    usage_limit_per_user: int
    starts_at: datetime | None = None
    expires_at: datetime | None = None
    is_active: bool
    created_at: datetime
    updated_at: datetime


class CouponValidateRequest(BaseModel):
    code: str = Field(min_length=1, max_length=64)


class CouponValidateResponse(BaseModel):
    """A resolved discount for the caller's current cart."""

    code: str
    source: str
    discount_type: str
    discount_subunits: int
    subtotal_subunits: int
    discount_percent: Decimal | None = None
