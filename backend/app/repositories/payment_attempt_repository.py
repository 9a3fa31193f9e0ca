"""PaymentAttempt repository.

State transitions are conditional UPDATEs so concurrent verifications and
webhooks race on the database row, not on Python objects.
"""

from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import case, func, or_
from sqlalchemy.orm import Session

from app.models.payment_attempt import PaymentAttempt, PaymentAttemptStatus
from app.models.shared import utc_now

LOCKABLE_STATUSES = (
    PaymentAttemptStatus.CREATED.value,
    PaymentAttemptStatus.ATTEMPTED.value,
    PaymentAttemptStatus.FAILED.value,
    PaymentAttemptStatus.PAID.value,
    PaymentAttemptStatus.EXPIRED.value,
)
RETRYABLE_STATUSES = (PaymentAttemptStatus.FAILED.value, PaymentAttemptStatus.EXPIRED.value)


def _trim(value: str | None, length: int = 500) -> str | None:
    return str(value)[:length] if value else None


class PaymentAttemptRepository:
    """Repository for PaymentAttempt model."""

    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        *,
        user_id: UUID,
        gateway_order_id: str,
        amount_subunits: int,
        currency: str,
        billing_address: dict[str, Any] | None = None,
        shipping_address: dict[str, Any] | None = None,
        notes: dict[str, Any] | None = None,
        expires_at: datetime | None = None,
    ) -> PaymentAttempt:
        attempt = PaymentAttempt(
            user_id=user_id,
            gateway_order_id=gateway_order_id,
            amount_subunits=int(amount_subunits),
            currency=currency,
            status=PaymentAttemptStatus.CREATED.value,
            billing_address=billing_address,
            shipping_address=shipping_address,
            notes=notes,
            expires_at=expires_at,
        )
        self.db.add(attempt)
        self.db.commit()
        self.db.refresh(attempt)
        return attempt

    def get_by_id(self, attempt_id: UUID) -> PaymentAttempt | None:
        return self.db.query(PaymentAttempt).filter(PaymentAttempt.id == attempt_id).first()

    def get_by_gateway_order_id(
        self, gateway_order_id: str, user_id: UUID | None = None
    ) -> PaymentAttempt | None:
        query = self.db.query(PaymentAttempt).filter(
            PaymentAttempt.gateway_order_id == gateway_order_id
        )
        if user_id is not None:
            query = query.filter(PaymentAttempt.user_id == user_id)
        return query.first()

    def get_latest_retryable_by_user(self, user_id: UUID) -> PaymentAttempt | None:
        return (
            self.db.query(PaymentAttempt)
            .filter(
                PaymentAttempt.user_id == user_id,
                PaymentAttempt.status.in_(RETRYABLE_STATUSES),
                PaymentAttempt.local_order_id.is_(None),
            )
            .order_by(PaymentAttempt.updated_at.desc())
            .first()
        )

    def refresh(self, attempt: PaymentAttempt) -> PaymentAttempt:
        self.db.refresh(attempt)
        return attempt

    def begin_verification_lock(
        self,
        attempt_id: UUID,
        stale_after_seconds: int,
        payment_id: str | None = None,
        signature: str | None = None,
    ) -> bool:
        """Take the timestamp lock on an unlinked attempt and commit.

        The lock is granted only when no order is linked yet and any previous
        lock is older than ``stale_after_seconds``.
        """
        now = utc_now()
        stale_before = now - timedelta(seconds=stale_after_seconds)
        count = (
            self.db.query(PaymentAttempt)
            .filter(
                PaymentAttempt.id == attempt_id,
                PaymentAttempt.local_order_id.is_(None),
                PaymentAttempt.status.in_(LOCKABLE_STATUSES),
                or_(
                    PaymentAttempt.verify_started_at.is_(None),
                    PaymentAttempt.verify_started_at < stale_before,
                ),
            )
            .update(
                {
                    PaymentAttempt.status: case(
                        (
                            PaymentAttempt.status == PaymentAttemptStatus.CREATED.value,
                            PaymentAttemptStatus.ATTEMPTED.value,
                        ),
                        else_=PaymentAttempt.status,
                    ),
                    PaymentAttempt.verify_started_at: now,
                    PaymentAttempt.gateway_payment_id: func.coalesce(
                        payment_id, PaymentAttempt.gateway_payment_id
                    ),
                    PaymentAttempt.gateway_signature: func.coalesce(
                        signature, PaymentAttempt.gateway_signature
                    ),
                },
                synchronize_session=False,
            )
        )
        self.db.commit()
        return int(count) > 0

    def release_verification_lock(self, attempt_id: UUID) -> None:
        self.db.query(PaymentAttempt).filter(PaymentAttempt.id == attempt_id).update(
            {PaymentAttempt.verify_started_at: None}, synchronize_session=False
        )
        self.db.commit()

    def mark_verified(
        self,
        attempt_id: UUID,
        local_order_id: UUID,
        payment_id: str | None,
        signature: str | None,
    ) -> bool:
        """Link the attempt to its order if still unlinked. Does not commit."""
        count = (
            self.db.query(PaymentAttempt)
            .filter(PaymentAttempt.id == attempt_id, PaymentAttempt.local_order_id.is_(None))
            .update(
                {
                    PaymentAttempt.status: PaymentAttemptStatus.PAID.value,
                    PaymentAttempt.verify_started_at: None,
                    PaymentAttempt.gateway_payment_id: func.coalesce(
                        payment_id, PaymentAttempt.gateway_payment_id
                    ),
                    PaymentAttempt.gateway_signature: func.coalesce(
                        signature, PaymentAttempt.gateway_signature
                    ),
                    PaymentAttempt.local_order_id: local_order_id,
                    PaymentAttempt.verified_at: utc_now(),
                },
                synchronize_session=False,
            )
        )
        return int(count) > 0

    def mark_failed(
        self,
        attempt_id: UUID,
        error_message: str | None = None,
        payment_id: str | None = None,
        signature: str | None = None,
    ) -> int:
        """Fail an unlinked attempt and clear its lock. Does not commit."""
        count = (
            self.db.query(PaymentAttempt)
            .filter(PaymentAttempt.id == attempt_id, PaymentAttempt.local_order_id.is_(None))
            .update(
                {
                    PaymentAttempt.status: PaymentAttemptStatus.FAILED.value,
                    PaymentAttempt.verify_started_at: None,
                    PaymentAttempt.gateway_payment_id: func.coalesce(
                        payment_id, PaymentAttempt.gateway_payment_id
                    ),
                    PaymentAttempt.gateway_signature: func.coalesce(
                        signature, PaymentAttempt.gateway_signature
                    ),
                    PaymentAttempt.failure_reason: _trim(error_message),
                },
                synchronize_session=False,
            )
        )
        return int(count)

    def mark_refunded(self, attempt_id: UUID) -> int:
        count = (
            self.db.query(PaymentAttempt)
            .filter(PaymentAttempt.id == attempt_id)
            .update(
                {PaymentAttempt.status: PaymentAttemptStatus.REFUNDED.value},
                synchronize_session=False,
            )
        )
        return int(count)

    def list_stale_unlinked(
        self, created_before: datetime, lock_stale_after_seconds: int
    ) -> list[PaymentAttempt]:
        """Unfinished attempts older than ``created_before`` that are not being verified."""
        lock_stale_before = utc_now() - timedelta(seconds=lock_stale_after_seconds)
        return (
            self.db.query(PaymentAttempt)
            .filter(
                PaymentAttempt.local_order_id.is_(None),
                PaymentAttempt.status.in_(
                    [PaymentAttemptStatus.CREATED.value, PaymentAttemptStatus.ATTEMPTED.value]
                ),
                PaymentAttempt.created_at < created_before,
                or_(
                    PaymentAttempt.verify_started_at.is_(None),
                    PaymentAttempt.verify_started_at < lock_stale_before,
                ),
            )
            .all()
        )

    def mark_expired(self, attempt_id: UUID, lock_stale_after_seconds: int) -> int:
        """Expire an unlinked attempt unless a verification holds its lock. Does not commit."""
        lock_stale_before = utc_now() - timedelta(seconds=lock_stale_after_seconds)
        count = (
            self.db.query(PaymentAttempt)
            .filter(
                PaymentAttempt.id == attempt_id,
                PaymentAttempt.local_order_id.is_(None),
                or_(
                    PaymentAttempt.verify_started_at.is_(None),
                    PaymentAttempt.verify_started_at < lock_stale_before,
                ),
            )
            .update(
                {
                    PaymentAttempt.status: PaymentAttemptStatus.EXPIRED.value,
                    PaymentAttempt.verify_started_at: None,
                },
                synchronize_session=False,
            )
        )
        return int(count)
