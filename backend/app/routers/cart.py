"""Cart API endpoints.

Every mutation is reported to the activity tracker, which debounces bursts of
edits into one recovery evaluation per user.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.core.auth import get_current_user_id
from app.core.config import settings
from app.core.database import get_db
from app.models.product import ProductStatus
from app.repositories.cart_repository import CartRepository, summarize_lines
from app.repositories.product_repository import ProductRepository
from app.schemas.cart import CartItemUpdate, CartLine, CartResponse
from app.services.activity_tracker import CartActivityTracker, get_activity_tracker

router = APIRouter()


def _cart_response(repo: CartRepository, user_id: UUID) -> CartResponse:
    lines = repo.get_lines(user_id)
    item_count, subtotal = summarize_lines(lines)
    return CartResponse(
        items=[CartLine(**line) for line in lines],
        item_count=item_count,
        subtotal_subunits=subtotal,
        currency=settings.DEFAULT_CURRENCY,
    )


@router.get(
    "/",
    response_model=CartResponse,
    summary="Get cart",
    responses={401: {"description": "Unauthorized"}},
)
async def get_cart(
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user_id),
) -> CartResponse:
    """Get the caller's cart with live prices."""
    return _cart_response(CartRepository(db), user_id)


@router.put(
    "/items",
    response_model=CartResponse,
    summary="Set cart item quantity",
    responses={
        400: {"description": "Product is not available"},
        401: {"description": "Unauthorized"},
        404: {"description": "Product or variant not found"},
    },
)
async def set_cart_item(
    data: CartItemUpdate,
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user_id),
    tracker: CartActivityTracker = Depends(get_activity_tracker),
) -> CartResponse:
    """Add a product to the cart, change its quantity, or remove it with quantity 0."""
    if data.quantity > 0:
        products = ProductRepository(db)
        product = products.get_by_id(data.product_id)
        if not product:
            raise HTTPException(status_code=404, detail="Product not found")
        if product.status != ProductStatus.ACTIVE.value:
            raise HTTPException(status_code=400, detail="Product is not available")
        if data.variant_id is not None:
            variant = products.get_variant(data.variant_id)
            if not variant or variant.product_id != product.id:
                raise HTTPException(status_code=404, detail="Variant not found")

    repo = CartRepository(db)
    repo.set_quantity(user_id, data.product_id, data.variant_id, data.quantity)
    tracker.track(user_id, "cart_updated" if data.quantity > 0 else "cart_item_removed")
    return _cart_response(repo, user_id)


@router.delete(
    "/items/{item_id}",
    status_code=204,
    summary="Remove cart item",
    responses={
        401: {"description": "Unauthorized"},
        404: {"description": "Cart item not found"},
    },
)
async def remove_cart_item(
    item_id: UUID,
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user_id),
    tracker: CartActivityTracker = Depends(get_activity_tracker),
) -> None:
    """Remove one line from the caller's cart."""
    if not CartRepository(db).remove_item(user_id, item_id):
        raise HTTPException(status_code=404, detail="Cart item not found")
    tracker.track(user_id, "cart_item_removed")


@router.delete(
    "/",
    status_code=204,
    summary="Clear cart",
    responses={401: {"description": "Unauthorized"}},
)
async def clear_cart(
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user_id),
    tracker: CartActivityTracker = Depends(get_activity_tracker),
) -> None:
    """Remove every line from the caller's cart."""
    CartRepository(db).clear(user_id)
    tracker.track(user_id, "cart_cleared")
