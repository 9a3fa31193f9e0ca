"""CartCandidate repository."""

from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy.orm import Session

from app.models.cart_candidate import CartCandidate
from app.models.shared import utc_now


class CartCandidateRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, user_id: UUID) -> CartCandidate | None:
        return self.db.query(CartCandidate).filter(CartCandidate.user_id == user_id).first()

    def upsert(
        self,
        user_id: UUID,
        cart_item_count: int,
        cart_total_subunits: int,
        currency: str,
        last_activity_at: datetime | None = None,
    ) -> CartCandidate:
        """Create or refresh the candidate with a new last-activity timestamp."""
        candidate = self.get(user_id)
        activity_at = last_activity_at or utc_now()
        if candidate is None:
            candidate = CartCandidate(user_id=user_id)
            self.db.add(candidate)
        candidate.cart_item_count = cart_item_count  # type: ignore[assignment]
        candidate.cart_total_subunits = cart_total_subunits  # type: ignore[assignment]
        candidate.currency = currency  # type: ignore[assignment]
        candidate.last_activity_at = activity_at  # type: ignore[assignment]
        self.db.commit()
        self.db.refresh(candidate)
        return candidate

    def delete(self, user_id: UUID, commit: bool = True) -> int:
        count = (
            self.db.query(CartCandidate)
            .filter(CartCandidate.user_id == user_id)
            .delete(synchronize_session=False)
        )
        if commit:
            self.db.commit()
        return int(count)

    def list_due(self, inactivity_minutes: int, limit: int = 50) -> list[CartCandidate]:
        """Candidates whose last activity is older than the inactivity threshold."""
        cutoff = utc_now() - timedelta(minutes=max(1, int(inactivity_minutes)))
        return (
            self.db.query(CartCandidate)
            .filter(CartCandidate.last_activity_at <= cutoff)
            .order_by(CartCandidate.last_activity_at.asc())
            .limit(limit)
            .all()
        )
