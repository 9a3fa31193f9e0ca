"""Checkout totals recomputed from the live cart on every call."""

from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import ValidationFailure
from app.models.product import ProductStatus
from app.repositories.cart_repository import CartRepository, summarize_lines
from app.services.coupon_service import CouponService, ResolvedDiscount
from app.services.loyalty_service import LoyaltyService
from app.services.shipping_service import ShippingService, normalize_address


@dataclass
class CheckoutSummary:
    lines: list[dict[str, Any]]
    item_count: int
    subtotal_subunits: int
    total_weight_kg: float
    shipping_fee_subunits: int
    discount_subunits: int
    total_subunits: int
    currency: str
    loyalty_tier: str
    discount: ResolvedDiscount | None = None
    shipping_address: dict[str, Any] | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def coupon_code(self) -> str | None:
        return self.discount.code if self.discount is not None else None

    @property
    def coupon_source(self) -> str | None:
        return self.discount.source if self.discount is not None else None

    def fingerprint(self) -> dict[str, Any]:
        """Comparable shape of the cart and totals at one point in time."""
        return {
            "lines": [
                [
                    str(line["product_id"]),
                    line.get("variant_id"),
                    int(line["quantity"]),
                    int(line["price_subunits"]),
                ]
                for line in sorted(
                    self.lines, key=lambda line: (str(line["product_id"]), str(line.get("variant_id")))
                )
            ],
            "subtotal": self.subtotal_subunits,
            "shipping": self.shipping_fee_subunits,
            "discount": self.discount_subunits,
            "total": self.total_subunits,
            "coupon": self.coupon_code,
        }

    def to_response(self) -> dict[str, Any]:
        return {
            "item_count": self.item_count,
            "subtotal_subunits": self.subtotal_subunits,
            "shipping_fee_subunits": self.shipping_fee_subunits,
            "discount_subunits": self.discount_subunits,
            "total_subunits": self.total_subunits,
            "currency": self.currency,
            "coupon_code": self.coupon_code,
            "coupon_source": self.coupon_source,
            "loyalty_tier": self.loyalty_tier,
        }


def total_weight(lines: list[dict[str, Any]]) -> float:
    return sum(float(line.get("weight_kg") or 0) * int(line.get("quantity") or 0) for line in lines)


class CheckoutService:
    def __init__(self, db: Session):
        self.db = db
        self.cart_repo = CartRepository(db)
        self.coupons = CouponService(db)
        self.loyalty = LoyaltyService(db)
        self.shipping = ShippingService(db)

    def compute_summary(
        self,
        user_id: UUID,
        coupon_code: str | None = None,
        shipping_address: dict[str, Any] | None = None,
        lock: bool = False,
    ) -> CheckoutSummary:
        """Price the user's cart: subtotal, shipping, discount and total.

        Client-supplied amounts are never used. ``lock`` selects the cart rows
        FOR UPDATE for callers inside an order transaction.

        Raises:
            ValidationFailure: if the cart is empty, an item is no longer
                sold, or ``coupon_code`` does not apply.
        """
        lines = [line for line in self.cart_repo.get_lines(user_id, lock=lock) if line["quantity"] > 0]
        item_count, subtotal = summarize_lines(lines)
        if item_count <= 0:
            raise ValidationFailure("Cart is empty", reason="cart_empty")
        if any(line.get("product_status") != ProductStatus.ACTIVE.value for line in lines):
            raise ValidationFailure("Some items are no longer available", reason="item_unavailable")

        address = normalize_address(shipping_address)
        weight = total_weight(lines)
        shipping_fee = self.shipping.compute_fee(address, subtotal, weight)
        tier = self.loyalty.get_tier(user_id).name

        discount = None
        if coupon_code and str(coupon_code).strip():
            product_ids = [UUID(str(line["product_id"])) for line in lines]
            discount = self.coupons.resolve_redeemable_discount(
                coupon_code, user_id, subtotal, loyalty_tier=tier, product_ids=product_ids
            )
            if discount is None:
                raise ValidationFailure(
                    "Coupon is invalid or not applicable to this cart", reason="coupon_invalid"
                )
        discount_subunits = min(discount.discount_subunits, subtotal) if discount else 0

        return CheckoutSummary(
            lines=lines,
            item_count=item_count,
            subtotal_subunits=subtotal,
            total_weight_kg=weight,
            shipping_fee_subunits=shipping_fee,
            discount_subunits=discount_subunits,
            total_subunits=subtotal + shipping_fee - discount_subunits,
            currency=settings.DEFAULT_CURRENCY,
            loyalty_tier=tier,
            discount=discount,
            shipping_address=address,
        )
