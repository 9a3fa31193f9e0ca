"""Coupon repository for data access."""

from typing import Any
from uuid import UUID

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.models.coupon import Coupon, CouponRedemption, CouponUserTarget
from app.schemas.coupon import CouponCreate


class CouponRepository:
    """Repository for Coupon model."""

    def __init__(self, db: Session):
        self.db = db

    def get_all(
        self,
        skip: int = 0,
        limit: int = 100,
        search: str = "",
        active_only: bool = False,
    ) -> list[Coupon]:
        """Get all coupons with optional filters."""
        query = self._filtered(search, active_only)
        return query.order_by(Coupon.created_at.desc()).offset(skip).limit(limit).all()

    def count(self, search: str = "", active_only: bool = False) -> int:
        return self._filtered(search, active_only).count()

    def _filtered(self, search: str, active_only: bool) -> Any:
        query = self.db.query(Coupon)
        if active_only:
            query = query.filter(Coupon.is_active.is_(True))
        if search:
            term = f"%{search.strip()}%"
            query = query.filter(or_(Coupon.code.ilike(term), Coupon.name.ilike(term)))
        return query

    def get_by_id(self, coupon_id: UUID) -> Coupon | None:
        """Get a coupon by ID."""
        return self.db.query(Coupon).filter(Coupon.id == coupon_id).first()

    def get_by_code(self, code: str) -> Coupon | None:
        """Get a coupon by code."""
        return self.db.query(Coupon).filter(Coupon.code == code).first()

    def get_active_by_code(self, code: str) -> Coupon | None:
        return (
            self.db.query(Coupon)
            .filter(Coupon.code == code, Coupon.is_active.is_(True))
            .first()
        )

    def create(self, data: CouponCreate, code: str) -> Coupon:
        """Create a new coupon with its customer targets."""
        coupon = Coupon(
            code=code,
            name=data.name,
            description=data.description,
            discount_type=data.discount_type.value,
            discount_value=data.discount_value,
            max_discount_subunits=data.max_discount_subunits,
            min_cart_subunits=data.min_cart_subunits,
            scope_type=data.scope_type.value,
            tier_scope=data.tier_scope.lower() if data.tier_scope else None,
            category_scope=data.category_ids or None,
            usage_limit_total=data.usage_limit_total,
            usage_limit_per_user=data.usage_limit_per_user,
            starts_at=data.starts_at,
            expires_at=data.expires_at,
            is_active=True,
        )
        self.db.add(coupon)
        self.db.flush()
        for user_id in data.user_ids:
            self.db.add(CouponUserTarget(coupon_id=coupon.id, user_id=user_id))
        self.db.commit()
        self.db.refresh(coupon)
        return coupon

    def deactivate(self, coupon_id: UUID) -> Coupon | None:
        coupon = self.get_by_id(coupon_id)
        if not coupon:
            return None
        coupon.is_active = False  # type: ignore[assignment]
        self.db.commit()
        self.db.refresh(coupon)
        return coupon

    def is_targeted_user(self, coupon_id: UUID, user_id: UUID) -> bool:
        return (
            self.db.query(CouponUserTarget.id)
            .filter(CouponUserTarget.coupon_id == coupon_id, CouponUserTarget.user_id == user_id)
            .first()
            is not None
        )

    def count_redemptions(self, coupon_id: UUID, user_id: UUID | None = None) -> int:
        query = self.db.query(CouponRedemption).filter(CouponRedemption.coupon_id == coupon_id)
        if user_id is not None:
            query = query.filter(CouponRedemption.user_id == user_id)
        return query.count()

    def add_redemption(
        self,
        coupon_id: UUID,
        user_id: UUID,
        order_id: UUID | None,
    ) -> CouponRedemption:
        """Record a redemption. Does not commit."""
        redemption = CouponRedemption(coupon_id=coupon_id, user_id=user_id, order_id=order_id)
        self.db.add(redemption)
        self.db.flush()
        return redemption
