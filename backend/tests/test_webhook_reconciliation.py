"""Tests for gateway webhook reconciliation."""

import pytest

from app.core.errors import InvalidSignature, ValidationFailure
from app.models.inventory_reservation import InventoryReservation, ReservationStatus
from app.models.order import Order, OrderPaymentStatus
from app.models.payment_attempt import PaymentAttemptStatus
from app.models.recovery_attempt import AttemptStatus, RecoveryAttempt
from app.models.recovery_journey import JourneyStatus
from app.models.webhook_event import GatewayWebhookEvent, WebhookEventStatus
from app.services.payment_service import PaymentService
from app.services.recovery_service import AbandonedCartRecoveryService
from app.services.webhook_reconciliation_service import (
    STATUS_DEFERRED,
    STATUS_DUPLICATE,
    STATUS_FAILED,
    STATUS_IGNORED,
    STATUS_PROCESSED,
    WebhookReconciliationService,
    resolve_event_id,
)
from tests.conftest import (
    COMPLETE_ADDRESS,
    add_to_cart,
    make_journey,
    make_paid_order,
    make_product,
    make_user,
    webhook_body,
)


@pytest.fixture
def shopper(db_session):
    return make_user(db_session, address=COMPLETE_ADDRESS)


@pytest.fixture
def bangle(db_session):
    return make_product(db_session, title="Temple Bangle", mrp_subunits=320000, track_quantity=True, quantity=3)


@pytest.fixture
def attempt(db_session, shopper, bangle, gateway):
    add_to_cart(db_session, shopper, bangle)
    attempt, _ = PaymentService(db_session, gateway).create_gateway_order(shopper.id)
    return attempt


def payment_entity(attempt, payment_id="pay_hook_1", amount=None, status="captured", **extra):
    return {
        "id": payment_id,
        "order_id": attempt.gateway_order_id,
        "amount": attempt.amount_subunits if amount is None else amount,
        "currency": "INR",
        "status": status,
        **extra,
    }


def deliver(db_session, gateway, body, event_id="evt_1", signature=None):
    service = WebhookReconciliationService(db_session, gateway)
    return service.handle(body, signature or gateway.sign_webhook(body), event_id)


def event_status(db_session, event_id):
    db_session.expire_all()
    event = db_session.query(GatewayWebhookEvent).filter(GatewayWebhookEvent.event_id == event_id).one()
    return event.status


class TestSignatureAndLedger:
    def test_invalid_signature(self, db_session, gateway):
        body = webhook_body("payment.captured", payment={"id": "pay_1"})
        with pytest.raises(InvalidSignature):
            deliver(db_session, gateway, body, signature="forged")
        assert db_session.query(GatewayWebhookEvent).count() == 0

    def test_body_must_be_json_object(self, db_session, gateway):
        with pytest.raises(ValidationFailure):
            deliver(db_session, gateway, b"not json")
        with pytest.raises(ValidationFailure):
            deliver(db_session, gateway, b"[1, 2]")

    def test_unhandled_event_is_ignored(self, db_session, gateway):
        outcome = deliver(db_session, gateway, webhook_body("invoice.paid", invoice={"id": "inv_1"}))
        assert outcome.status == STATUS_IGNORED
        assert event_status(db_session, "evt_1") == WebhookEventStatus.PROCESSED.value

    def test_event_id_falls_back_to_body_hash(self):
        assert resolve_event_id(" evt_9 ", b"{}") == "evt_9"
        hashed = resolve_event_id(None, b"{}")
        assert hashed.startswith("sha256:")
        assert hashed == resolve_event_id("", b"{}")


class TestPaymentEvents:
    def test_captured_creates_order_once(self, db_session, gateway, attempt, bangle):
        body = webhook_body("payment.captured", payment=payment_entity(attempt))

        outcome = deliver(db_session, gateway, body)

        assert outcome.status == STATUS_PROCESSED
        assert outcome.note == "Order created"
        order = db_session.query(Order).one()
        assert outcome.detail == {"order_ref": order.order_ref}
        assert order.gateway_payment_id == "pay_hook_1"
        db_session.expire_all()
        assert attempt.status == PaymentAttemptStatus.PAID.value
        assert bangle.quantity == 2
        assert db_session.query(InventoryReservation).one().status == ReservationStatus.CONSUMED.value

        again = deliver(db_session, gateway, body)
        assert again.status == STATUS_DUPLICATE
        assert db_session.query(Order).count() == 1

    def test_captured_after_client_verify(self, db_session, gateway, shopper, attempt):
        payment = gateway.add_payment(attempt.gateway_order_id)
        signature = gateway.sign_payment(attempt.gateway_order_id, payment.id)
        PaymentService(db_session, gateway).verify_payment(
            shopper.id, attempt.gateway_order_id, payment.id, signature
        )

        body = webhook_body("payment.captured", payment=payment_entity(attempt, payment_id=payment.id))
        outcome = deliver(db_session, gateway, body)

        assert outcome.status == STATUS_PROCESSED
        assert outcome.note == "Order already exists"
        assert db_session.query(Order).count() == 1

    def test_order_paid_uses_order_entity(self, db_session, gateway, attempt):
        entity = payment_entity(attempt)
        entity.pop("order_id")
        body = webhook_body("order.paid", payment=entity, order={"id": attempt.gateway_order_id})

        outcome = deliver(db_session, gateway, body)

        assert outcome.status == STATUS_PROCESSED
        assert db_session.query(Order).one().gateway_order_id == attempt.gateway_order_id

    def test_locked_attempt_is_deferred_then_redelivered(self, db_session, gateway, attempt):
        service = PaymentService(db_session, gateway)
        service.attempt_repo.begin_verification_lock(attempt.id, 60)
        body = webhook_body("payment.authorized", payment=payment_entity(attempt, status="authorized"))

        outcome = deliver(db_session, gateway, body)

        assert outcome.status == STATUS_DEFERRED
        assert event_status(db_session, "evt_1") == WebhookEventStatus.DEFERRED.value
        assert db_session.query(Order).count() == 0

        service.attempt_repo.release_verification_lock(attempt.id)
        retry = deliver(db_session, gateway, body)

        assert retry.status == STATUS_PROCESSED
        assert event_status(db_session, "evt_1") == WebhookEventStatus.PROCESSED.value
        assert db_session.query(Order).count() == 1

    def test_amount_mismatch_fails_event(self, db_session, gateway, attempt, bangle):
        body = webhook_body("payment.captured", payment=payment_entity(attempt, amount=100))

        outcome = deliver(db_session, gateway, body)

        assert outcome.status == STATUS_FAILED
        assert outcome.detail == {"reason": "amount_mismatch"}
        assert event_status(db_session, "evt_1") == WebhookEventStatus.FAILED.value
        assert attempt.status == PaymentAttemptStatus.FAILED.value
        assert bangle.quantity == 3

    def test_unknown_attempt_is_ignored(self, db_session, gateway):
        body = webhook_body(
            "payment.captured",
            payment={"id": "pay_x", "order_id": "order_unknown", "amount": 100, "status": "captured"},
        )
        assert deliver(db_session, gateway, body).status == STATUS_IGNORED

    def test_payment_failed_releases_stock(self, db_session, gateway, attempt, bangle):
        body = webhook_body(
            "payment.failed",
            payment=payment_entity(attempt, status="failed", error_description="Card declined"),
        )

        outcome = deliver(db_session, gateway, body)

        assert outcome.status == STATUS_PROCESSED
        db_session.expire_all()
        assert attempt.status == PaymentAttemptStatus.FAILED.value
        assert attempt.failure_reason == "Card declined"
        assert bangle.quantity == 3


class TestRecoveryLinkPaid:
    @pytest.mark.asyncio
    async def test_link_payment_creates_order_from_snapshot(self, db_session, gateway, dispatcher, shopper):
        product = make_product(db_session, title="Kundan Necklace", mrp_subunits=250000)
        add_to_cart(db_session, shopper, product)
        journey = make_journey(db_session, shopper)
        await AbandonedCartRecoveryService(db_session, gateway, dispatcher).process_due()
        link = gateway.links[0]

        body = webhook_body(
            "payment_link.paid",
            payment_link={"id": link["id"], "amount": link["amount_subunits"], "notes": link["notes"]},
            payment={"id": "pay_link_1", "amount": link["amount_subunits"], "currency": "INR", "status": "captured"},
        )
        outcome = deliver(db_session, gateway, body)

        assert outcome.status == STATUS_PROCESSED
        order = db_session.query(Order).one()
        assert order.order_ref == link["notes"]["orderRef"]
        assert order.abandoned_journey_id == journey.id
        assert order.total_subunits == 250000
        db_session.expire_all()
        assert journey.status == JourneyStatus.RECOVERED.value
        assert journey.recovery_reason == "payment_link_paid"
        recovery_attempt = db_session.query(RecoveryAttempt).one()
        assert recovery_attempt.status == AttemptStatus.PAID.value
        assert recovery_attempt.response["payment_id"] == "pay_link_1"

    def test_link_without_journey_is_ignored(self, db_session, gateway):
        body = webhook_body(
            "payment_link.paid",
            payment_link={"id": "plink_x", "notes": {}},
            payment={"id": "pay_x", "amount": 100},
        )
        assert deliver(db_session, gateway, body).status == STATUS_IGNORED


class TestRefundAndSettlement:
    def test_full_refund_marks_order_refunded(self, db_session, gateway, shopper):
        order = make_paid_order(db_session, shopper, gateway_payment_id="pay_ref_1")
        body = webhook_body(
            "refund.processed",
            refund={"id": "rfnd_1", "payment_id": "pay_ref_1", "amount": 250000},
        )

        outcome = deliver(db_session, gateway, body)

        assert outcome.status == STATUS_PROCESSED
        db_session.refresh(order)
        assert order.refund_id == "rfnd_1"
        assert order.refund_status == "processed"
        assert order.payment_status == OrderPaymentStatus.REFUNDED.value

    def test_partial_refund_keeps_order_paid(self, db_session, gateway, shopper):
        order = make_paid_order(db_session, shopper, gateway_payment_id="pay_ref_2")
        body = webhook_body(
            "refund.processed",
            refund={"id": "rfnd_2", "payment_id": "pay_ref_2", "amount": 50000},
        )

        deliver(db_session, gateway, body)

        db_session.refresh(order)
        assert order.refund_amount_subunits == 50000
        assert order.payment_status == OrderPaymentStatus.PAID.value

    def test_settlement_snapshot_applied(self, db_session, gateway, shopper):
        order = make_paid_order(db_session, shopper, gateway_payment_id="pay_set_1")
        order.settlement_id = "setl_9"
        db_session.commit()
        body = webhook_body(
            "settlement.processed",
            settlement={"id": "setl_9", "amount": 245000, "status": "processed", "utr": "UTR9"},
        )

        outcome = deliver(db_session, gateway, body)

        assert outcome.note == "Settlement applied to 1 order(s)"
        db_session.refresh(order)
        assert order.settlement_snapshot["utr"] == "UTR9"
        assert order.settlement_snapshot["amount_subunits"] == 245000
