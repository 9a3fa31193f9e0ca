"""Cart repository: the live cart store."""

from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from app.models.cart_item import CartItem
from app.models.product import Product, ProductStatus, ProductVariant


def unit_price_subunits(product: Product, variant: ProductVariant | None) -> int:
    """Variant discount price, then variant price, then product discount price, then MRP."""
    candidates = []
    if variant is not None:
        candidates.extend([variant.discount_price_subunits, variant.price_subunits])
    candidates.extend([product.discount_price_subunits, product.mrp_subunits])
    for value in candidates:
        if value:
            return int(value)
    return 0


def resolve_image_url(product: Product, variant: ProductVariant | None) -> str | None:
    if variant is not None and variant.image_url:
        return str(variant.image_url)
    media = product.media
    if isinstance(media, list) and media:
        first = media[0]
        if isinstance(first, dict):
            return first.get("url")
        return str(first) if first else None
    return None


def item_weight_kg(product: Product, variant: ProductVariant | None) -> float:
    if variant is not None and variant.weight_kg:
        return float(variant.weight_kg)
    return float(product.weight_kg or 0)


def build_cart_line(item: CartItem, product: Product, variant: ProductVariant | None) -> dict[str, Any]:
    """Flatten one cart row into the JSON-safe shape used by snapshots."""
    quantity = max(0, int(item.quantity or 0))
    price = unit_price_subunits(product, variant)
    return {
        "item_id": str(item.id),
        "product_id": str(product.id),
        "variant_id": str(variant.id) if variant is not None else None,
        "title": product.title,
        "variant_title": variant.variant_title if variant is not None else None,
        "quantity": quantity,
        "price_subunits": price,
        "line_total_subunits": price * quantity,
        "weight_kg": item_weight_kg(product, variant),
        "image_url": resolve_image_url(product, variant),
        "sku": (variant.sku if variant is not None else None) or product.sku,
        "product_status": product.status or ProductStatus.ACTIVE.value,
    }


def summarize_lines(lines: list[dict[str, Any]]) -> tuple[int, int]:
    """Return ``(item_count, total_subunits)`` for a list of cart lines."""
    item_count = 0
    total = 0
    for line in lines:
        quantity = max(0, int(line.get("quantity") or 0))
        item_count += quantity
        total += int(line.get("price_subunits") or 0) * quantity
    return item_count, total


class CartRepository:
    """Repository for CartItem model."""

    def __init__(self, db: Session):
        self.db = db

    def _rows(self, user_id: UUID, lock: bool = False) -> list[tuple[CartItem, Product, ProductVariant | None]]:
        query = (
            self.db.query(CartItem, Product, ProductVariant)
            .join(Product, Product.id == CartItem.product_id)
            .outerjoin(ProductVariant, ProductVariant.id == CartItem.variant_id)
            .filter(CartItem.user_id == user_id)
            .order_by(CartItem.created_at.asc(), CartItem.id.asc())
        )
        if lock:
            query = query.with_for_update(of=CartItem)
        return list(query.all())

    def get_lines(self, user_id: UUID, lock: bool = False) -> list[dict[str, Any]]:
        """Get the user's cart as flattened lines, skipping zero quantities."""
        lines = []
        for item, product, variant in self._rows(user_id, lock=lock):
            line = build_cart_line(item, product, variant)
            if line["quantity"] > 0:
                lines.append(line)
        return lines

    def get_item(self, user_id: UUID, item_id: UUID) -> CartItem | None:
        return (
            self.db.query(CartItem)
            .filter(CartItem.user_id == user_id, CartItem.id == item_id)
            .first()
        )

    def set_quantity(
        self,
        user_id: UUID,
        product_id: UUID,
        variant_id: UUID | None,
        quantity: int,
    ) -> CartItem | None:
        """Insert or update a cart line; a quantity of zero removes it."""
        item = (
            self.db.query(CartItem)
            .filter(
                CartItem.user_id == user_id,
                CartItem.product_id == product_id,
                CartItem.variant_id == variant_id
                if variant_id is not None
                else CartItem.variant_id.is_(None),
            )
            .first()
        )
        if quantity <= 0:
            if item is not None:
                self.db.delete(item)
                self.db.commit()
            return None
        if item is None:
            item = CartItem(
                user_id=user_id,
                product_id=product_id,
                variant_id=variant_id,
                quantity=quantity,
            )
            self.db.add(item)
        else:
            item.quantity = quantity  # type: ignore[assignment]
        self.db.commit()
        self.db.refresh(item)
        return item

    def remove_item(self, user_id: UUID, item_id: UUID) -> bool:
        item = self.get_item(user_id, item_id)
        if item is None:
            return False
        self.db.delete(item)
        self.db.commit()
        return True

    def clear(self, user_id: UUID, commit: bool = True) -> int:
        """Delete every cart line for the user."""
        count = (
            self.db.query(CartItem)
            .filter(CartItem.user_id == user_id)
            .delete(synchronize_session=False)
        )
        if commit:
            self.db.commit()
        return int(count)
