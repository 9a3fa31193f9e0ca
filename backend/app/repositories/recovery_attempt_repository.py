"""RecoveryAttempt repository."""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from app.models.recovery_attempt import AttemptStatus, RecoveryAttempt
from app.models.shared import utc_now


class RecoveryAttemptRepository:
    def __init__(self, db: Session):
        self.db = db

    def add(self, attempt: RecoveryAttempt) -> RecoveryAttempt:
        self.db.add(attempt)
        self.db.flush()
        return attempt

    def list_by_journey(self, journey_id: UUID) -> list[RecoveryAttempt]:
        return (
            self.db.query(RecoveryAttempt)
            .filter(RecoveryAttempt.journey_id == journey_id)
            .order_by(RecoveryAttempt.created_at.asc(), RecoveryAttempt.attempt_no.asc())
            .all()
        )

    def mark_paid_by_payment_link(self, payment_link_id: str, payment_id: str | None) -> int:
        """Mark every attempt carrying the payment link as paid. Does not commit."""
        attempts = (
            self.db.query(RecoveryAttempt)
            .filter(RecoveryAttempt.payment_link_id == payment_link_id)
            .all()
        )
        now = utc_now()
        for attempt in attempts:
            response = dict(attempt.response or {})
            response["payment_id"] = payment_id
            attempt.response = response  # type: ignore[assignment]
            attempt.status = AttemptStatus.PAID.value  # type: ignore[assignment]
            if attempt.sent_at is None:
                attempt.sent_at = now  # type: ignore[assignment]
        self.db.flush()
        return len(attempts)

    def totals_since(self, since: datetime) -> dict[str, Any]:
        row = (
            self.db.query(
                func.count(RecoveryAttempt.id),
                func.sum(case((RecoveryAttempt.status == AttemptStatus.SENT.value, 1), else_=0)),
                func.sum(case((RecoveryAttempt.status == AttemptStatus.FAILED.value, 1), else_=0)),
                func.avg(func.nullif(RecoveryAttempt.discount_percent, 0)),
            )
            .filter(RecoveryAttempt.created_at >= since)
            .one()
        )
        return {
            "total": int(row[0] or 0),
            "sent": int(row[1] or 0),
            "failed": int(row[2] or 0),
            "avg_discount_percent": round(float(row[3] or 0), 2),
        }
