"""Tracked stock: direct deduction and the reserve / consume / release cycle."""

import logging
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from app.core.errors import StockUnavailable, ValidationFailure
from app.models.inventory_reservation import InventoryReservation, ReservationStatus
from app.models.product import Product, ProductVariant
from app.repositories.inventory_reservation_repository import InventoryReservationRepository
from app.repositories.product_repository import ProductRepository

logger = logging.getLogger(__name__)


def _as_uuid(value: Any) -> UUID | None:
    if value in (None, ""):
        return None
    return value if isinstance(value, UUID) else UUID(str(value))


class InventoryService:
    """All stock changes lock the product or variant row before reading it.

    None of these methods commit; they run inside the caller's transaction.
    """

    def __init__(self, db: Session):
        self.db = db
        self.product_repo = ProductRepository(db)
        self.reservation_repo = InventoryReservationRepository(db)

    def _lock_stock_row(self, line: dict[str, Any]) -> Product | ProductVariant:
        variant_id = _as_uuid(line.get("variant_id"))
        if variant_id is not None:
            variant = self.product_repo.lock_variant(variant_id)
            if variant is None:
                raise ValidationFailure("Variant not found", reason="item_unavailable")
            return variant
        product_id = _as_uuid(line.get("product_id"))
        product = self.product_repo.lock_product(product_id) if product_id else None
        if product is None:
            raise ValidationFailure("Product not found", reason="item_unavailable")
        return product

    def deduct(self, lines: list[dict[str, Any]], allow_shortfall: bool = False) -> None:
        """Decrement tracked stock for every line.

        With ``allow_shortfall`` stock is floored at zero instead of failing;
        used when payment was already collected.

        Raises:
            StockUnavailable: if a tracked row holds less than the line quantity.
        """
        for line in lines:
            quantity = int(line.get("quantity") or 0)
            if quantity <= 0:
                continue
            row = self._lock_stock_row(line)
            if not row.track_quantity:
                continue
            available = int(row.quantity or 0)
            if available < quantity:
                if not allow_shortfall:
                    raise StockUnavailable("Insufficient stock for some items")
                logger.warning(
                    "Stock shortfall for %s: needed %s, had %s", line.get("sku") or row.id, quantity, available
                )
            row.quantity = max(0, available - quantity)  # type: ignore[assignment]
        self.db.flush()

    def reserve(
        self,
        attempt_id: UUID,
        user_id: UUID,
        lines: list[dict[str, Any]],
        expires_at: datetime | None = None,
    ) -> list[InventoryReservation]:
        """Hold stock for a payment attempt; untracked lines are recorded but not decremented."""
        reservations = []
        for line in lines:
            quantity = int(line.get("quantity") or 0)
            if quantity <= 0:
                continue
            row = self._lock_stock_row(line)
            tracked = bool(row.track_quantity)
            if tracked:
                if int(row.quantity or 0) < quantity:
                    raise StockUnavailable("Insufficient stock for some items")
                row.quantity = int(row.quantity or 0) - quantity  # type: ignore[assignment]
            reservations.append(
                self.reservation_repo.add(
                    InventoryReservation(
                        attempt_id=attempt_id,
                        user_id=user_id,
                        product_id=_as_uuid(line.get("product_id")),
                        variant_id=_as_uuid(line.get("variant_id")),
                        quantity=quantity,
                        tracked=tracked,
                        status=ReservationStatus.RESERVED.value,
                        expires_at=expires_at,
                    )
                )
            )
        return reservations

    def consume(self, attempt_id: UUID) -> int:
        """Mark held stock as sold. Stock levels do not change."""
        reservations = self.reservation_repo.list_reserved(attempt_id, lock=True)
        for reservation in reservations:
            reservation.status = ReservationStatus.CONSUMED.value  # type: ignore[assignment]
        self.db.flush()
        return len(reservations)

    def release(self, attempt_id: UUID, reason: str) -> int:
        """Return held stock to the shelf."""
        reservations = self.reservation_repo.list_reserved(attempt_id, lock=True)
        for reservation in reservations:
            if reservation.tracked:
                row = self._lock_stock_row(
                    {"product_id": reservation.product_id, "variant_id": reservation.variant_id}
                )
                row.quantity = int(row.quantity or 0) + int(reservation.quantity)  # type: ignore[assignment]
            reservation.status = ReservationStatus.RELEASED.value  # type: ignore[assignment]
            reservation.released_reason = reason[:100]  # type: ignore[assignment]
        self.db.flush()
        if reservations:
            logger.info("Released %d reservation(s) for attempt %s: %s", len(reservations), attempt_id, reason)
        return len(reservations)
