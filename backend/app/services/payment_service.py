"""Checkout payments: gateway orders, verification and retries.

A payment attempt links to at most one local order. Verification takes a
timestamp lock on the attempt row so a client callback and a webhook for the
same payment cannot both create an order; a stale lock expires on its own.
"""

import logging
from datetime import timedelta
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import (
    CartChanged,
    CommerceError,
    ConcurrencyConflict,
    InvalidSignature,
    NotFound,
    PaymentMismatch,
    ValidationFailure,
)
from app.models.order import Order
from app.models.payment_attempt import PaymentAttempt
from app.models.shared import utc_now
from app.repositories.order_repository import OrderRepository
from app.repositories.payment_attempt_repository import RETRYABLE_STATUSES, PaymentAttemptRepository
from app.services.checkout_service import CheckoutService, CheckoutSummary
from app.services.inventory_service import InventoryService
from app.services.journey_service import to_base36
from app.services.order_service import OrderService, PaymentDetails
from app.services.payment_gateway import GatewayPayment, PaymentGatewayBase

logger = logging.getLogger(__name__)

SUCCESSFUL_PAYMENT_STATUSES = ("authorized", "captured")


def check_payment_matches(attempt: PaymentAttempt, payment: GatewayPayment) -> None:
    """Compare gateway-reported order, amount and currency with the attempt.

    Raises:
        PaymentMismatch: on any difference.
    """
    if payment.order_id and payment.order_id != attempt.gateway_order_id:
        raise PaymentMismatch("Payment belongs to a different order", reason="order_mismatch")
    if int(payment.amount_subunits) != int(attempt.amount_subunits):
        raise PaymentMismatch(
            f"Paid amount {payment.amount_subunits} does not match {attempt.amount_subunits}"
        )
    if payment.currency and payment.currency.upper() != str(attempt.currency).upper():
        raise PaymentMismatch("Payment currency does not match", reason="currency_mismatch")


class PaymentService:
    def __init__(self, db: Session, gateway: PaymentGatewayBase):
        self.db = db
        self.gateway = gateway
        self.attempt_repo = PaymentAttemptRepository(db)
        self.order_repo = OrderRepository(db)
        self.inventory = InventoryService(db)
        self.checkout = CheckoutService(db)

    def create_gateway_order(
        self,
        user_id: UUID,
        coupon_code: str | None = None,
        billing_address: dict[str, Any] | None = None,
        shipping_address: dict[str, Any] | None = None,
    ) -> tuple[PaymentAttempt, CheckoutSummary]:
        """Price the cart, open a gateway order and reserve stock for it.

        Raises:
            ValidationFailure: empty cart, unavailable item or bad coupon.
            StockUnavailable: tracked stock cannot cover the cart.
            GatewayError: the gateway refused the order.
        """
        summary = self.checkout.compute_summary(user_id, coupon_code, shipping_address)
        if summary.total_subunits <= 0:
            raise ValidationFailure("Order total must be positive", reason="invalid_total")

        receipt = f"rcpt_{user_id.hex[:12]}_{to_base36(int(utc_now().timestamp() * 1000))}"
        gateway_order = self.gateway.create_order(
            summary.total_subunits,
            summary.currency,
            receipt,
            notes={"userId": str(user_id), "coupon": summary.coupon_code or ""},
        )
        attempt = self.attempt_repo.create(
            user_id=user_id,
            gateway_order_id=gateway_order.id,
            amount_subunits=summary.total_subunits,
            currency=summary.currency,
            billing_address=billing_address,
            shipping_address=summary.shipping_address,
            notes={
                "coupon_code": summary.coupon_code,
                "checkout": summary.fingerprint(),
                "receipt": receipt,
            },
            expires_at=utc_now() + timedelta(minutes=settings.PAYMENT_ATTEMPT_TTL_MINUTES),
        )
        try:
            self.inventory.reserve(attempt.id, user_id, summary.lines, attempt.expires_at)  # type: ignore[arg-type]
            self.db.commit()
        except CommerceError as exc:
            self.db.rollback()
            self.attempt_repo.mark_failed(attempt.id, exc.message)  # type: ignore[arg-type]
            self.db.commit()
            raise
        logger.info(
            "Gateway order %s created for user %s (amount=%s)",
            gateway_order.id,
            user_id,
            summary.total_subunits,
        )
        return attempt, summary

    def verify_payment(
        self, user_id: UUID, gateway_order_id: str, payment_id: str, signature: str
    ) -> tuple[Order, bool]:
        """Verify a client-side payment callback and create the order once.

        Returns ``(order, already_processed)``.

        Raises:
            NotFound: unknown gateway order for this user.
            InvalidSignature: the callback signature does not verify.
            ConcurrencyConflict: another verification holds the lock.
            PaymentMismatch: the gateway reports a different order or amount.
            CartChanged: the cart no longer matches what was paid for.
        """
        attempt = self.attempt_repo.get_by_gateway_order_id(gateway_order_id, user_id)
        if attempt is None:
            raise NotFound("Payment attempt not found")
        if attempt.local_order_id is not None:
            return self._linked_order(attempt), True

        if not self.gateway.verify_payment_signature(gateway_order_id, payment_id, signature):
            self.inventory.release(attempt.id, "signature_invalid")  # type: ignore[arg-type]
            self.attempt_repo.mark_failed(attempt.id, "Invalid payment signature", payment_id, signature)  # type: ignore[arg-type]
            self.db.commit()
            raise InvalidSignature("Payment signature is invalid")

        payment = self.gateway.fetch_payment(payment_id)
        return self.finalize_attempt(attempt, payment, signature)

    def finalize_attempt(
        self, attempt: PaymentAttempt, payment: GatewayPayment, signature: str | None = None
    ) -> tuple[Order, bool]:
        """Create the order for a successful gateway payment, exactly once.

        Shared by the verify endpoint and webhook reconciliation.
        """
        attempt_id: UUID = attempt.id  # type: ignore[assignment]
        if not self.attempt_repo.begin_verification_lock(
            attempt_id,
            settings.PAYMENT_VERIFY_LOCK_SECONDS,
            payment_id=payment.id or None,
            signature=signature,
        ):
            self.attempt_repo.refresh(attempt)
            if attempt.local_order_id is not None:
                return self._linked_order(attempt), True
            raise ConcurrencyConflict("Payment verification already in progress")

        try:
            check_payment_matches(attempt, payment)
            if payment.status not in SUCCESSFUL_PAYMENT_STATUSES:
                raise PaymentMismatch(
                    f"Payment is {payment.status or 'unknown'}", reason="payment_not_captured"
                )
            notes = attempt.notes or {}
            current = self.checkout.compute_summary(
                attempt.user_id,  # type: ignore[arg-type]
                notes.get("coupon_code"),
                attempt.shipping_address,  # type: ignore[arg-type]
            )
            if notes.get("checkout") and current.fingerprint() != notes["checkout"]:
                raise CartChanged("Cart changed after payment was started")
        except (PaymentMismatch, CartChanged) as exc:
            self.db.rollback()
            self.inventory.release(attempt_id, exc.reason)
            self.attempt_repo.mark_failed(attempt_id, exc.message, payment.id or None, signature)
            self.db.commit()
            logger.warning("Payment %s for attempt %s rejected: %s", payment.id, attempt_id, exc.message)
            raise
        except Exception:
            self.db.rollback()
            self.attempt_repo.release_verification_lock(attempt_id)
            raise

        try:
            # Reservations released by a concurrent expiry fall back to a direct deduction.
            skip_stock = self.inventory.consume(attempt_id) > 0
            order, _ = OrderService(self.db).create_order_from_cart(
                attempt.user_id,  # type: ignore[arg-type]
                PaymentDetails(
                    gateway=self.gateway.name,
                    gateway_order_id=str(attempt.gateway_order_id),
                    gateway_payment_id=payment.id,
                    attempt_id=attempt_id,
                    settlement_id=payment.raw.get("settlement_id"),
                ),
                coupon_code=notes.get("coupon_code"),
                billing_address=attempt.billing_address,  # type: ignore[arg-type]
                shipping_address=attempt.shipping_address,  # type: ignore[arg-type]
                skip_stock=skip_stock,
                commit=False,
            )
            if not self.attempt_repo.mark_verified(attempt_id, order.id, payment.id, signature):  # type: ignore[arg-type]
                self.db.rollback()
                self.attempt_repo.refresh(attempt)
                return self._linked_order(attempt), True
            self.db.commit()
        except Exception:
            self.db.rollback()
            self.attempt_repo.release_verification_lock(attempt_id)
            raise
        logger.info("Payment %s verified; order %s", payment.id, order.order_ref)
        return order, False

    def _linked_order(self, attempt: PaymentAttempt) -> Order:
        order = self.order_repo.get_by_id(attempt.local_order_id)  # type: ignore[arg-type]
        if order is None:
            raise NotFound("Linked order not found")
        return order

    def retry_payment(
        self, user_id: UUID, gateway_order_id: str | None = None
    ) -> tuple[PaymentAttempt, CheckoutSummary]:
        """Open a fresh attempt from a failed or expired one, re-reserving stock."""
        if gateway_order_id:
            previous = self.attempt_repo.get_by_gateway_order_id(gateway_order_id, user_id)
        else:
            previous = self.attempt_repo.get_latest_retryable_by_user(user_id)
        if previous is None:
            raise NotFound("No payment to retry")
        if previous.local_order_id is not None or previous.status not in RETRYABLE_STATUSES:
            raise ValidationFailure("This payment cannot be retried", reason="not_retryable")
        notes = previous.notes or {}
        return self.create_gateway_order(
            user_id,
            coupon_code=notes.get("coupon_code"),
            billing_address=previous.billing_address,  # type: ignore[arg-type]
            shipping_address=previous.shipping_address,  # type: ignore[arg-type]
        )

    def mark_payment_failed(
        self, attempt: PaymentAttempt, reason: str | None, payment_id: str | None = None
    ) -> bool:
        """Fail an unlinked attempt and give its stock back."""
        attempt_id: UUID = attempt.id  # type: ignore[assignment]
        if attempt.local_order_id is not None:
            return False
        self.inventory.release(attempt_id, "payment_failed")
        changed = self.attempt_repo.mark_failed(attempt_id, reason, payment_id) > 0
        self.db.commit()
        return changed

    def expire_stale_attempts(self) -> int:
        """Expire unfinished attempts older than the attempt TTL and release their stock.

        Attempts holding a live verification lock are left alone.
        """
        cutoff = utc_now() - timedelta(minutes=settings.PAYMENT_ATTEMPT_TTL_MINUTES)
        lock_seconds = settings.PAYMENT_VERIFY_LOCK_SECONDS
        expired = 0
        for attempt in self.attempt_repo.list_stale_unlinked(cutoff, lock_seconds):
            attempt_id: UUID = attempt.id  # type: ignore[assignment]
            try:
                if not self.attempt_repo.mark_expired(attempt_id, lock_seconds):
                    self.db.rollback()
                    continue
                self.inventory.release(attempt_id, "attempt_expired")
                expired += 1
                self.db.commit()
            except Exception:
                self.db.rollback()
                logger.exception("Could not expire payment attempt %s", attempt_id)
        if expired:
            logger.info("Expired %d stale payment attempt(s)", expired)
        return expired

