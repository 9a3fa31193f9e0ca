"""Coupon API endpoints."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy.orm import Session

from app.core.auth import get_current_user_id, require_staff
from app.core.database import get_db
from app.core.errors import CommerceError, to_http_exception
from app.models.coupon import Coupon
from app.repositories.coupon_repository import CouponRepository
from app.schemas.coupon import (
    CouponCreate,
    CouponResponse,
    CouponValidateRequest,
    CouponValidateResponse,
)
from app.services.checkout_service import CheckoutService
from app.services.coupon_service import CouponService

router = APIRouter()


@router.post(
    "/",
    response_model=CouponResponse,
    status_code=201,
    summary="Create coupon",
    responses={
        400: {"description": "Coupon code already exists"},
        401: {"description": "Unauthorized"},
        403: {"description": "Admin access required"},
        422: {"description": "Validation error"},
    },
)
async def create_coupon(
    data: CouponCreate,
    db: Session = Depends(get_db),
    _staff_id: UUID = Depends(require_staff),
) -> Coupon:
    """Create a coupon. A code is generated when none is given."""
    try:
        return CouponService(db).create_coupon(data)
    except CommerceError as exc:
        raise to_http_exception(exc) from exc


@router.get(
    "/",
    response_model=list[CouponResponse],
    summary="List coupons",
    responses={
        401: {"description": "Unauthorized"},
        403: {"description": "Admin access required"},
    },
)
async def list_coupons(
    response: Response,
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=1000),
    search: str = Query(default="", max_length=64),
    active_only: bool = False,
    db: Session = Depends(get_db),
    _staff_id: UUID = Depends(require_staff),
) -> list[Coupon]:
    """List coupons, newest first."""
    repo = CouponRepository(db)
    response.headers["X-Total-Count"] = str(repo.count(search=search, active_only=active_only))
    return repo.get_all(skip=skip, limit=limit, search=search, active_only=active_only)


@router.post(
    "/{coupon_id}/deactivate",
    response_model=CouponResponse,
    summary="Deactivate coupon",
    responses={
        401: {"description": "Unauthorized"},
        403: {"description": "Admin access required"},
        404: {"description": "Coupon not found"},
    },
)
async def deactivate_coupon(
    coupon_id: UUID,
    db: Session = Depends(get_db),
    _staff_id: UUID = Depends(require_staff),
) -> Coupon:
    coupon = CouponRepository(db).deactivate(coupon_id)
    if not coupon:
        raise HTTPException(status_code=404, detail="Coupon not found")
    return coupon


@router.post(
    "/validate",
    response_model=CouponValidateResponse,
    summary="Validate coupon against cart",
    responses={
        400: {"description": "Coupon is invalid or the cart is empty"},
        401: {"description": "Unauthorized"},
    },
)
async def validate_coupon(
    data: CouponValidateRequest,
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user_id),
) -> CouponValidateResponse:
    """Resolve a coupon or recovery discount code for the caller's current cart."""
    try:
        summary = CheckoutService(db).compute_summary(user_id, data.code)
    except CommerceError as exc:
        raise to_http_exception(exc) from exc
    discount = summary.discount
    if discount is None:
        raise HTTPException(status_code=400, detail="Coupon code is required")
    return CouponValidateResponse(
        code=discount.code,
        source=discount.source,
        discount_type=discount.discount_type,
        discount_subunits=summary.discount_subunits,
        subtotal_subunits=summary.subtotal_subunits,
        discount_percent=discount.percent,
    )
