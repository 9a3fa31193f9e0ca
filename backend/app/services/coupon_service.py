"""Coupon service: admin coupons and recovery discounts behind one resolver."""

import logging
import secrets
import string
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from app.core.errors import ConcurrencyConflict, ValidationFailure
from app.models.coupon import Coupon, CouponScope, CouponType
from app.models.shared import as_utc, utc_now
from app.repositories.coupon_repository import CouponRepository
from app.repositories.product_repository import ProductRepository
from app.repositories.recovery_discount_repository import RecoveryDiscountRepository
from app.schemas.coupon import CouponCreate

logger = logging.getLogger(__name__)

SOURCE_COUPON = "coupon"
SOURCE_ABANDONED = "abandoned"

CODE_ALPHABET = string.ascii_uppercase + string.digits


@dataclass
class ResolvedDiscount:
    """A redeemable discount, whichever table it came from.

    ``source`` is ``coupon`` for admin-issued coupons and ``abandoned`` for
    recovery discounts.
    """

    source: str
    id: UUID
    code: str
    discount_type: str
    discount_subunits: int
    percent: Decimal | None = None
    journey_id: UUID | None = None


def normalize_code(code: str | None) -> str:
    return str(code or "").strip().upper()


def percent_of(amount_subunits: int, percent: Decimal | int | float) -> int:
    value = Decimal(int(amount_subunits)) * Decimal(str(percent)) / 100
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def _within_window(starts_at: datetime | None, expires_at: datetime | None, now: datetime) -> bool:
    starts = as_utc(starts_at)
    expires = as_utc(expires_at)
    if starts is not None and now < starts:
        return False
    if expires is not None and now > expires:
        return False
    return True


class CouponService:
    def __init__(self, db: Session):
        self.db = db
        self.coupon_repo = CouponRepository(db)
        self.discount_repo = RecoveryDiscountRepository(db)
        self.product_repo = ProductRepository(db)

    def generate_code(self, prefix: str = "SSC") -> str:
        """Generate an unused ``SSC-XXXX-XXXX`` code."""
        for _ in range(10):
            first = "".join(secrets.choice(CODE_ALPHABET) for _ in range(4))
            second = "".join(secrets.choice(CODE_ALPHABET) for _ in range(4))
            code = f"{prefix}-{first}-{second}"
            if self.coupon_repo.get_by_code(code) is None and not self.discount_repo.code_exists(code):
                return code
        raise ValidationFailure("Could not generate a unique coupon code")

    def create_coupon(self, data: CouponCreate) -> Coupon:
        code = normalize_code(data.code) if data.code else self.generate_code()
        if self.coupon_repo.get_by_code(code) is not None or self.discount_repo.code_exists(code):
            raise ValidationFailure(f"Coupon code '{code}' already exists")
        coupon = self.coupon_repo.create(data, code=code)
        logger.info("Coupon %s created (%s %s)", coupon.code, coupon.discount_type, coupon.discount_value)
        return coupon

    def resolve_redeemable_discount(
        self,
        code: str | None,
        user_id: UUID,
        cart_total_subunits: int,
        loyalty_tier: str = "regular",
        product_ids: list[UUID] | None = None,
    ) -> ResolvedDiscount | None:
        """Resolve a code against admin coupons first, then recovery discounts.

        Returns None when the code does not apply to this user and cart.
        """
        normalized = normalize_code(code)
        if not normalized:
            return None
        coupon = self.coupon_repo.get_active_by_code(normalized)
        if coupon is not None:
            return self._resolve_coupon(
                coupon, user_id, cart_total_subunits, loyalty_tier, product_ids or []
            )
        return self._resolve_recovery_discount(normalized, user_id, cart_total_subunits)

    def _resolve_coupon(
        self,
        coupon: Coupon,
        user_id: UUID,
        cart_total: int,
        loyalty_tier: str,
        product_ids: list[UUID],
    ) -> ResolvedDiscount | None:
        now = utc_now()
        if not _within_window(coupon.starts_at, coupon.expires_at, now):  # type: ignore[arg-type]
            return None
        if cart_total < int(coupon.min_cart_subunits or 0):
            return None
        coupon_id: UUID = coupon.id  # type: ignore[assignment]
        if coupon.usage_limit_total is not None:
            if self.coupon_repo.count_redemptions(coupon_id) >= int(coupon.usage_limit_total):
                return None
        per_user = max(1, int(coupon.usage_limit_per_user or 1))
        if self.coupon_repo.count_redemptions(coupon_id, user_id) >= per_user:
            return None

        scope = str(coupon.scope_type or CouponScope.GENERIC.value).lower()
        if scope == CouponScope.CUSTOMER.value:
            if not self.coupon_repo.is_targeted_user(coupon_id, user_id):
                return None
        elif scope == CouponScope.TIER.value:
            tier_scope = str(coupon.tier_scope or "").lower()
            if tier_scope and tier_scope != (loyalty_tier or "regular").lower():
                return None
        elif scope == CouponScope.CATEGORY.value:
            categories = [str(c) for c in (coupon.category_scope or [])]
            if not self.product_repo.any_in_categories(list(set(product_ids)), categories):
                return None

        value = Decimal(str(coupon.discount_value or 0))
        if coupon.discount_type == CouponType.FIXED.value:
            discount = int((value * 100).quantize(Decimal(1), rounding=ROUND_HALF_UP))
            percent = None
        else:
            discount = percent_of(cart_total, value)
            percent = value
        if coupon.max_discount_subunits is not None:
            discount = min(discount, int(coupon.max_discount_subunits))
        discount = max(0, min(discount, cart_total))
        if discount <= 0:
            return None
        return ResolvedDiscount(
            source=SOURCE_COUPON,
            id=coupon_id,
            code=str(coupon.code),
            discount_type=str(coupon.discount_type),
            discount_subunits=discount,
            percent=percent,
        )

    def _resolve_recovery_discount(
        self, code: str, user_id: UUID, cart_total: int
    ) -> ResolvedDiscount | None:
        row = self.discount_repo.get_active_by_code(code, user_id)
        if row is None:
            return None
        expires_at = as_utc(row.expires_at)  # type: ignore[arg-type]
        if expires_at is not None and expires_at < utc_now():
            return None
        if row.min_cart_subunits is not None and cart_total < int(row.min_cart_subunits):
            return None
        percent = max(0, int(row.discount_percent or 0))
        discount = percent_of(cart_total, percent)
        if row.max_discount_subunits is not None:
            discount = min(discount, int(row.max_discount_subunits))
        discount = max(0, min(discount, cart_total))
        if discount <= 0:
            return None
        return ResolvedDiscount(
            source=SOURCE_ABANDONED,
            id=row.id,  # type: ignore[arg-type]
            code=str(row.code),
            discount_type=str(row.discount_type or CouponType.PERCENT.value),
            discount_subunits=discount,
            percent=Decimal(percent),
            journey_id=row.journey_id,  # type: ignore[arg-type]
        )

    def mark_redeemed(self, resolved: ResolvedDiscount, order_id: UUID, user_id: UUID) -> None:
        """Redeem inside the caller's order transaction. Does not commit.

        A recovery discount is redeemed with a conditional update, and its
        active siblings on the same journey are invalidated.

        Raises:
            ConcurrencyConflict: if the recovery discount is no longer active.
        """
        if resolved.source == SOURCE_ABANDONED:
            if self.discount_repo.redeem(resolved.id, order_id) == 0:
                raise ConcurrencyConflict(
                    f"Discount {resolved.code} is no longer available", reason="discount_unavailable"
                )
            if resolved.journey_id is not None:
                self.discount_repo.invalidate_active(
                    resolved.journey_id, exclude_id=resolved.id, user_id=user_id
                )
            return
        self.coupon_repo.add_redemption(resolved.id, user_id, order_id)
