"""Inbound payment gateway webhooks.

Every event is recorded in the idempotency ledger before it is acted on, so a
redelivered event id is acknowledged without a second state change. Handlers
route through the same order and attempt transitions as the verify endpoint;
the end state does not depend on which of the two arrives first.
"""

import hashlib
import json
import logging
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from app.core.errors import (
    CommerceError,
    ConcurrencyConflict,
    InvalidSignature,
    ValidationFailure,
)
from app.models.order import Order, OrderPaymentStatus
from app.repositories.order_repository import OrderRepository
from app.repositories.payment_attempt_repository import PaymentAttemptRepository
from app.repositories.recovery_journey_repository import RecoveryJourneyRepository
from app.repositories.webhook_event_repository import WebhookEventRepository
from app.services.journey_service import RecoveryJourneyService
from app.services.order_service import OrderService, PaymentDetails, settlement_snapshot
from app.services.payment_gateway import (
    GatewaySettlement,
    PaymentGatewayBase,
    as_int,
    payment_from_entity,
)
from app.services.payment_service import PaymentService

logger = logging.getLogger(__name__)

PAYMENT_SUCCESS_EVENTS = ("payment.authorized", "payment.captured", "order.paid")

STATUS_PROCESSED = "processed"
STATUS_DUPLICATE = "duplicate"
STATUS_IGNORED = "ignored"
STATUS_DEFERRED = "deferred"
STATUS_FAILED = "failed"


@dataclass
class WebhookOutcome:
    status: str
    note: str | None = None
    detail: dict[str, Any] | None = None


def _entity(payload: dict[str, Any], name: str) -> dict[str, Any]:
    entity = ((payload.get("payload") or {}).get(name) or {}).get("entity") or {}
    return entity if isinstance(entity, dict) else {}


def resolve_event_id(event_id: str | None, body: bytes) -> str:
    """The gateway's event id, or a content hash when the header is missing."""
    if event_id and event_id.strip():
        return event_id.strip()[:128]
    return f"sha256:{hashlib.sha256(body).hexdigest()}"


class WebhookReconciliationService:
    def __init__(self, db: Session, gateway: PaymentGatewayBase):
        self.db = db
        self.gateway = gateway
        self.event_repo = WebhookEventRepository(db)
        self.attempt_repo = PaymentAttemptRepository(db)
        self.order_repo = OrderRepository(db)
        self.journey_repo = RecoveryJourneyRepository(db)
        self.payments = PaymentService(db, gateway)

    def handle(self, body: bytes, signature: str | None, event_id: str | None = None) -> WebhookOutcome:
        """Verify, register and apply one webhook delivery.

        Raises:
            InvalidSignature: the HMAC over ``body`` does not verify.
            ValidationFailure: the body is not a JSON object.
        """
        if not self.gateway.verify_webhook_signature(body, signature):
            raise InvalidSignature("Webhook signature is invalid")
        try:
            payload = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as exc:
            raise ValidationFailure("Webhook body is not valid JSON", reason="invalid_payload") from exc
        if not isinstance(payload, dict):
            raise ValidationFailure("Webhook body must be an object", reason="invalid_payload")

        event_type = str(payload.get("event") or "")
        event, is_new = self.event_repo.register(
            resolve_event_id(event_id, body),
            event_type,
            signature,
            body.decode("utf-8"),
            payload,
        )
        if not is_new:
            return WebhookOutcome(STATUS_DUPLICATE, f"Event already {event.status}")

        try:
            outcome = self._dispatch(event_type, payload)
        except ConcurrencyConflict as exc:
            self.db.rollback()
            self.event_repo.mark_deferred(event, exc.message)
            return WebhookOutcome(STATUS_DEFERRED, exc.message)
        except CommerceError as exc:
            self.db.rollback()
            self.event_repo.mark_failed(event, f"{exc.reason}: {exc.message}")
            logger.warning("Webhook %s (%s) failed: %s", event.event_id, event_type, exc.message)
            return WebhookOutcome(STATUS_FAILED, exc.message, {"reason": exc.reason})
        except Exception:
            self.db.rollback()
            # Deferred so the gateway's redelivery is processed again
            self.event_repo.mark_deferred(event, "unexpected error")
            raise

        if outcome.status == STATUS_FAILED:
            self.event_repo.mark_failed(event, outcome.note)
        else:
            self.event_repo.mark_processed(event, outcome.note)
        return outcome

    def _dispatch(self, event_type: str, payload: dict[str, Any]) -> WebhookOutcome:
        if event_type in PAYMENT_SUCCESS_EVENTS:
            return self._payment_succeeded(payload)
        if event_type == "payment.failed":
            return self._payment_failed(payload)
        if event_type == "payment_link.paid":
            return self._payment_link_paid(payload)
        if event_type == "refund.processed":
            return self._refund_processed(payload)
        if event_type == "settlement.processed":
            return self._settlement_processed(payload)
        return WebhookOutcome(STATUS_IGNORED, f"Unhandled event {event_type or 'unknown'}")

    def _payment_succeeded(self, payload: dict[str, Any]) -> WebhookOutcome:
        entity = _entity(payload, "payment")
        payment = payment_from_entity(entity)
        gateway_order_id = payment.order_id or _entity(payload, "order").get("id")
        if not gateway_order_id:
            return WebhookOutcome(STATUS_IGNORED, "Payment has no gateway order")
        if payment.id and self.order_repo.get_by_payment_id(payment.id) is not None:
            return WebhookOutcome(STATUS_PROCESSED, "Order already exists")

        attempt = self.attempt_repo.get_by_gateway_order_id(str(gateway_order_id))
        if attempt is None:
            return WebhookOutcome(STATUS_IGNORED, "No local payment attempt")
        if not payment.id:
            return WebhookOutcome(STATUS_IGNORED, "Payment entity has no id")
        if not payment.order_id:
            payment.order_id = str(gateway_order_id)

        order, already = self.payments.finalize_attempt(attempt, payment)
        note = "Order already linked" if already else "Order created"
        return WebhookOutcome(STATUS_PROCESSED, note, {"order_ref": order.order_ref})

    def _payment_failed(self, payload: dict[str, Any]) -> WebhookOutcome:
        payment = payment_from_entity(_entity(payload, "payment"))
        if not payment.order_id:
            return WebhookOutcome(STATUS_IGNORED, "Payment has no gateway order")
        attempt = self.attempt_repo.get_by_gateway_order_id(payment.order_id)
        if attempt is None:
            return WebhookOutcome(STATUS_IGNORED, "No local payment attempt")
        if attempt.local_order_id is not None:
            return WebhookOutcome(STATUS_PROCESSED, "Attempt already has an order")
        self.payments.mark_payment_failed(
            attempt, payment.error_description or "Payment failed", payment.id or None
        )
        return WebhookOutcome(STATUS_PROCESSED, "Attempt marked failed")

    def _payment_link_paid(self, payload: dict[str, Any]) -> WebhookOutcome:
        link = _entity(payload, "payment_link")
        payment = payment_from_entity(_entity(payload, "payment"))
        notes = link.get("notes") or {}
        link_id = str(link.get("id") or "")
        if payment.id and self.order_repo.get_by_payment_id(payment.id) is not None:
            return WebhookOutcome(STATUS_PROCESSED, "Order already exists")

        journey_ref = notes.get("journeyId")
        try:
            journey_id = UUID(str(journey_ref))
        except (TypeError, ValueError):
            return WebhookOutcome(STATUS_IGNORED, "Payment link is not a recovery link")
        journey = self.journey_repo.get_by_id(journey_id)
        if journey is None:
            return WebhookOutcome(STATUS_FAILED, f"Journey {journey_id} not found")

        amount_paid = payment.amount_subunits or as_int(link.get("amount_paid") or link.get("amount"))
        order = OrderService(self.db).create_order_from_journey(
            journey,
            PaymentDetails(
                gateway=self.gateway.name,
                gateway_order_id=payment.order_id,
                gateway_payment_id=payment.id or None,
                settlement_id=payment.raw.get("settlement_id"),
            ),
            amount_paid_subunits=amount_paid,
            shipping_fee_subunits=as_int(notes.get("shippingFeeSubunits")),
            order_ref=notes.get("orderRef"),
        )
        if link_id:
            RecoveryJourneyService(self.db).mark_attempt_paid(link_id, payment.id or None)
        self.db.commit()
        return WebhookOutcome(STATUS_PROCESSED, "Order created from recovery link", {"order_ref": order.order_ref})

    def _refund_processed(self, payload: dict[str, Any]) -> WebhookOutcome:
        refund = _entity(payload, "refund")
        payment_id = refund.get("payment_id")
        order = self.order_repo.get_by_payment_id(str(payment_id)) if payment_id else None
        if order is None:
            return WebhookOutcome(STATUS_IGNORED, "No order for refunded payment")
        amount = as_int(refund.get("amount"))
        order.refund_id = str(refund.get("id") or order.refund_id or "") or None  # type: ignore[assignment]
        order.refund_status = "processed"  # type: ignore[assignment]
        order.refund_amount_subunits = max(amount, int(order.refund_amount_subunits or 0))  # type: ignore[assignment]
        if int(order.refund_amount_subunits or 0) >= int(order.total_subunits or 0):  # type: ignore[arg-type]
            order.payment_status = OrderPaymentStatus.REFUNDED.value  # type: ignore[assignment]
            if order.payment_attempt_id is not None:
                self.attempt_repo.mark_refunded(order.payment_attempt_id)  # type: ignore[arg-type]
        self.order_repo.add_event(order.id, str(order.status), "Refund processed")  # type: ignore[arg-type]
        self.db.commit()
        return WebhookOutcome(STATUS_PROCESSED, "Refund recorded", {"order_ref": order.order_ref})

    def _settlement_processed(self, payload: dict[str, Any]) -> WebhookOutcome:
        entity = _entity(payload, "settlement")
        settlement_id = str(entity.get("id") or "")
        if not settlement_id:
            return WebhookOutcome(STATUS_IGNORED, "Settlement has no id")
        snapshot = settlement_snapshot(
            GatewaySettlement(
                id=settlement_id,
                amount_subunits=as_int(entity.get("amount")),
                status=entity.get("status"),
                utr=entity.get("utr"),
                raw=entity,
            )
        )
        orders: list[Order] = self.order_repo.list_by_settlement_id(settlement_id)
        for order in orders:
            order.settlement_snapshot = snapshot  # type: ignore[assignment]
        self.db.commit()
        return WebhookOutcome(STATUS_PROCESSED, f"Settlement applied to {len(orders)} order(s)")

