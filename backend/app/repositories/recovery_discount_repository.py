"""RecoveryDiscount repository."""

from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models.recovery_discount import DiscountStatus, RecoveryDiscount


class RecoveryDiscountRepository:
    def __init__(self, db: Session):
        self.db = db

    def add(self, discount: RecoveryDiscount) -> RecoveryDiscount:
        self.db.add(discount)
        self.db.flush()
        return discount

    def get_by_id(self, discount_id: UUID, lock: bool = False) -> RecoveryDiscount | None:
        query = self.db.query(RecoveryDiscount).filter(RecoveryDiscount.id == discount_id)
        if lock:
            query = query.with_for_update()
        return query.first()

    def code_exists(self, code: str) -> bool:
        return self.db.query(RecoveryDiscount.id).filter(RecoveryDiscount.code == code).first() is not None

    def get_active_for_attempt(self, journey_id: UUID, attempt_no: int) -> RecoveryDiscount | None:
        return (
            self.db.query(RecoveryDiscount)
            .filter(
                RecoveryDiscount.journey_id == journey_id,
                RecoveryDiscount.attempt_no == attempt_no,
                RecoveryDiscount.status == DiscountStatus.ACTIVE.value,
            )
            .order_by(RecoveryDiscount.created_at.desc())
            .first()
        )

    def get_active_by_code(self, code: str, user_id: UUID) -> RecoveryDiscount | None:
        return (
            self.db.query(RecoveryDiscount)
            .filter(
                func.upper(RecoveryDiscount.code) == code.strip().upper(),
                RecoveryDiscount.user_id == user_id,
                RecoveryDiscount.status == DiscountStatus.ACTIVE.value,
            )
            .first()
        )

    def list_by_journey(self, journey_id: UUID) -> list[RecoveryDiscount]:
        return (
            self.db.query(RecoveryDiscount)
            .filter(RecoveryDiscount.journey_id == journey_id)
            .order_by(RecoveryDiscount.created_at.asc())
            .all()
        )

    def invalidate_active(
        self,
        journey_id: UUID,
        exclude_id: UUID | None = None,
        user_id: UUID | None = None,
    ) -> int:
        """Invalidate active discounts of a journey. Does not commit."""
        query = self.db.query(RecoveryDiscount).filter(
            RecoveryDiscount.journey_id == journey_id,
            RecoveryDiscount.status == DiscountStatus.ACTIVE.value,
        )
        if exclude_id is not None:
            query = query.filter(RecoveryDiscount.id != exclude_id)
        if user_id is not None:
            query = query.filter(RecoveryDiscount.user_id == user_id)
        count = query.update(
            {RecoveryDiscount.status: DiscountStatus.INVALIDATED.value},
        )
        return int(count)

    def redeem(self, discount_id: UUID, order_id: UUID) -> int:
        """Conditionally move an active discount to redeemed. Does not commit."""
        count = (
            self.db.query(RecoveryDiscount)
            .filter(
                RecoveryDiscount.id == discount_id,
                RecoveryDiscount.status == DiscountStatus.ACTIVE.value,
            )
            .update(
                {
                    RecoveryDiscount.status: DiscountStatus.REDEEMED.value,
                    RecoveryDiscount.redeemed_order_id: order_id,
                }
            )
        )
        return int(count)
