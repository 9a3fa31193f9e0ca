"""Tests for the order transaction engine and order administration."""

from datetime import timedelta
from uuid import uuid4

import pytest

from app.core.errors import GatewayError, NotFound, PaymentMismatch, StockUnavailable, ValidationFailure
from app.models.cart_candidate import CartCandidate
from app.models.cart_item import CartItem
from app.models.order import Order, OrderPaymentStatus, OrderStatus
from app.models.payment_attempt import PaymentAttemptStatus
from app.models.recovery_journey import JourneyStatus
from app.models.shared import utc_now
from app.repositories.cart_candidate_repository import CartCandidateRepository
from app.repositories.payment_attempt_repository import PaymentAttemptRepository
from app.services.order_service import OrderService, PaymentDetails
from app.services.payment_gateway import GatewaySettlement
from tests.conftest import (
    COMPLETE_ADDRESS,
    add_to_cart,
    make_journey,
    make_paid_order,
    make_product,
    make_user,
)


def razorpay_payment(payment_id="pay_000101", order_id="order_000100", attempt_id=None):
    return PaymentDetails(
        gateway="razorpay",
        gateway_order_id=order_id,
        gateway_payment_id=payment_id,
        attempt_id=attempt_id,
    )


@pytest.fixture
def shopper(db_session):
    return make_user(db_session, address=COMPLETE_ADDRESS)


class TestCreateOrderFromCart:
    def test_order_totals_items_and_events(self, db_session, shopper):
        chain = make_product(db_session, title="Figaro Chain", mrp_subunits=150000, sku="CH-1")
        studs = make_product(db_session, title="Pearl Studs", mrp_subunits=60000)
        add_to_cart(db_session, shopper, chain, quantity=2)
        add_to_cart(db_session, shopper, studs)
        CartCandidateRepository(db_session).upsert(shopper.id, 3, 360000, "INR")
        service = OrderService(db_session)

        order, summary = service.create_order_from_cart(
            shopper.id, razorpay_payment(), shipping_address=COMPLETE_ADDRESS
        )

        assert order.subtotal_subunits == 360000
        assert order.total_subunits == (
            order.subtotal_subunits + order.shipping_fee_subunits - order.discount_total_subunits
        )
        assert order.status == OrderStatus.CONFIRMED.value
        assert order.payment_status == OrderPaymentStatus.PAID.value
        assert order.shipping_address["city"] == "Bengaluru"
        assert order.loyalty_tier == summary.loyalty_tier

        order, items, events = service.get_detail(order.id)
        assert sorted((i.title, i.quantity, i.line_total_subunits) for i in items) == [
            ("Figaro Chain", 2, 300000),
            ("Pearl Studs", 1, 60000),
        ]
        chain_item = next(i for i in items if i.title == "Figaro Chain")
        assert chain_item.sku == "CH-1"
        assert chain_item.item_snapshot["captured_at"]
        assert [e.note for e in events] == ["Order created"]
        assert db_session.query(CartItem).count() == 0
        assert db_session.query(CartCandidate).count() == 0

    def test_stock_shortfall_rolls_back_everything(self, db_session, shopper):
        plenty = make_product(db_session, title="Plenty", track_quantity=True, quantity=10)
        scarce = make_product(db_session, title="Scarce", track_quantity=True, quantity=1)
        add_to_cart(db_session, shopper, plenty, quantity=3)
        add_to_cart(db_session, shopper, scarce, quantity=2)

        with pytest.raises(StockUnavailable):
            OrderService(db_session).create_order_from_cart(shopper.id, razorpay_payment())

        db_session.expire_all()
        assert plenty.quantity == 10
        assert scarce.quantity == 1
        assert db_session.query(Order).count() == 0
        assert db_session.query(CartItem).count() == 2

    def test_reserved_stock_is_not_deducted_again(self, db_session, shopper):
        tracked = make_product(db_session, track_quantity=True, quantity=2)
        add_to_cart(db_session, shopper, tracked)

        OrderService(db_session).create_order_from_cart(shopper.id, razorpay_payment(), skip_stock=True)

        db_session.refresh(tracked)
        assert tracked.quantity == 2

    def test_active_journey_is_recovered(self, db_session, shopper):
        add_to_cart(db_session, shopper, make_product(db_session))
        journey = make_journey(db_session, shopper)

        order, _ = OrderService(db_session).create_order_from_cart(shopper.id, razorpay_payment())

        db_session.refresh(journey)
        assert journey.status == JourneyStatus.RECOVERED.value
        assert journey.recovered_order_id == order.id
        assert journey.recovery_reason == "order_paid"

    def test_empty_cart(self, db_session, shopper):
        with pytest.raises(ValidationFailure):
            OrderService(db_session).create_order_from_cart(shopper.id, razorpay_payment())


class TestCreateOrderFromJourney:
    def test_snapshot_becomes_order(self, db_session, shopper):
        tracked = make_product(db_session, mrp_subunits=90000, track_quantity=True, quantity=1)
        add_to_cart(db_session, shopper, tracked, quantity=2)
        journey = make_journey(db_session, shopper)
        db_session.query(CartItem).delete()
        db_session.commit()

        order = OrderService(db_session).create_order_from_journey(
            journey,
            PaymentDetails(gateway="razorpay", gateway_order_id=None, gateway_payment_id="pay_link_1"),
            amount_paid_subunits=180000,
            order_ref="SSC-20261012-LINK01",
        )
        db_session.commit()

        assert order.order_ref == "SSC-20261012-LINK01"
        assert order.total_subunits == 180000
        assert order.abandoned_journey_id == journey.id
        assert order.shipping_address["state"] == "Karnataka"
        db_session.refresh(tracked)
        assert tracked.quantity == 0
        db_session.refresh(journey)
        assert journey.status == JourneyStatus.RECOVERED.value
        assert journey.recovery_reason == "payment_link_paid"

    def test_used_order_ref_is_replaced(self, db_session, shopper):
        add_to_cart(db_session, shopper, make_product(db_session))
        existing = make_paid_order(db_session, shopper)
        journey = make_journey(db_session, shopper)

        order = OrderService(db_session).create_order_from_journey(
            journey,
            razorpay_payment(payment_id="pay_link_2", order_id=None),
            amount_paid_subunits=250000,
            order_ref=existing.order_ref,
        )

        assert order.order_ref != existing.order_ref

    def test_amount_must_match_snapshot_and_shipping(self, db_session, shopper):
        add_to_cart(db_session, shopper, make_product(db_session))
        journey = make_journey(db_session, shopper)
        service = OrderService(db_session)

        with pytest.raises(PaymentMismatch):
            service.create_order_from_journey(
                journey, razorpay_payment(), amount_paid_subunits=250000, shipping_fee_subunits=5000
            )

        order = service.create_order_from_journey(
            journey, razorpay_payment(), amount_paid_subunits=255000, shipping_fee_subunits=5000
        )
        assert order.shipping_fee_subunits == 5000

    def test_empty_snapshot(self, db_session, shopper):
        journey = make_journey(db_session, shopper, cart_snapshot=[])
        with pytest.raises(ValidationFailure):
            OrderService(db_session).create_order_from_journey(
                journey, razorpay_payment(), amount_paid_subunits=0
            )


class TestUpdateStatus:
    def test_cancel_refunds_paid_order(self, db_session, shopper, gateway):
        attempt = PaymentAttemptRepository(db_session).create(
            user_id=shopper.id, gateway_order_id="order_refund", amount_subunits=250000, currency="INR"
        )
        order = make_paid_order(db_session, shopper, gateway_payment_id="pay_refund")
        order.payment_attempt_id = attempt.id
        db_session.commit()

        updated = OrderService(db_session).update_status(
            order.id, OrderStatus.CANCELLED, note="Customer request", gateway=gateway
        )

        assert updated.status == OrderStatus.CANCELLED.value
        assert updated.payment_status == OrderPaymentStatus.REFUNDED.value
        assert updated.refund_id == gateway.refunds[0].id
        assert updated.refund_amount_subunits == 250000
        assert gateway.refunds[0].payment_id == "pay_refund"
        db_session.refresh(attempt)
        assert attempt.status == PaymentAttemptStatus.REFUNDED.value

    def test_refund_failure_leaves_order_untouched(self, db_session, shopper, gateway):
        gateway.fail_refunds = True
        order = make_paid_order(db_session, shopper, gateway_payment_id="pay_refund")

        with pytest.raises(GatewayError):
            OrderService(db_session).update_status(order.id, OrderStatus.CANCELLED, gateway=gateway)

        db_session.refresh(order)
        assert order.status == OrderStatus.CONFIRMED.value
        assert order.refund_id is None

    def test_shipping_does_not_refund(self, db_session, shopper, gateway):
        order = make_paid_order(db_session, shopper, gateway_payment_id="pay_ship")
        service = OrderService(db_session)

        updated = service.update_status(order.id, OrderStatus.SHIPPED, note="AWB 123", gateway=gateway)

        assert updated.status == OrderStatus.SHIPPED.value
        assert gateway.refunds == []
        _, _, events = service.get_detail(order.id)
        assert [e.status for e in events] == [OrderStatus.SHIPPED.value]

    def test_same_status_is_a_no_op(self, db_session, shopper):
        order = make_paid_order(db_session, shopper)
        updated = OrderService(db_session).update_status(order.id, OrderStatus.CONFIRMED)
        assert updated.id == order.id

    def test_unknown_order(self, db_session):
        with pytest.raises(NotFound):
            OrderService(db_session).update_status(uuid4(), OrderStatus.SHIPPED)


class TestRefreshPayment:
    def test_settlement_snapshot_is_stored(self, db_session, shopper, gateway):
        payment = gateway.add_payment(None, amount_subunits=250000, settlement_id="setl_1", amount_refunded=0)
        gateway.settlements["setl_1"] = GatewaySettlement(
            id="setl_1", amount_subunits=245000, status="processed", utr="UTR123", raw={}
        )
        order = make_paid_order(db_session, shopper, gateway_payment_id=payment.id)

        refreshed = OrderService(db_session).refresh_payment(order.id, gateway)

        assert refreshed.settlement_id == "setl_1"
        assert refreshed.settlement_snapshot["utr"] == "UTR123"
        assert refreshed.settlement_snapshot["amount_subunits"] == 245000

    def test_refunded_payment(self, db_session, shopper, gateway):
        payment = gateway.add_payment(None, amount_subunits=250000, status="refunded", amount_refunded=250000)
        order = make_paid_order(db_session, shopper, gateway_payment_id=payment.id)

        refreshed = OrderService(db_session).refresh_payment(order.id, gateway)

        assert refreshed.payment_status == OrderPaymentStatus.REFUNDED.value
        assert refreshed.refund_amount_subunits == 250000

    def test_order_without_payment(self, db_session, shopper, gateway):
        order = make_paid_order(db_session, shopper)
        with pytest.raises(ValidationFailure) as exc_info:
            OrderService(db_session).refresh_payment(order.id, gateway)
        assert exc_info.value.reason == "no_payment"


class TestReadsAndSweeps:
    def test_user_cannot_read_another_users_order(self, db_session, shopper):
        other = make_user(db_session, email="other@example.com", mobile="9000000502")
        order = make_paid_order(db_session, shopper)
        service = OrderService(db_session)

        assert service.get_user_order(order.id, shopper.id).id == order.id
        with pytest.raises(NotFound):
            service.get_user_order(order.id, other.id)

    def test_list_search_and_metrics(self, db_session, shopper):
        first = make_paid_order(db_session, shopper, subtotal_subunits=100000)
        second = make_paid_order(db_session, shopper, subtotal_subunits=50000)
        service = OrderService(db_session)
        service.update_status(second.id, OrderStatus.CANCELLED)

        rows, total = service.list_orders(status="all")
        assert total == 2
        rows, total = service.list_orders(search=first.order_ref)
        assert total == 1
        assert rows[0][0].id == first.id
        assert rows[0][1].name == "Asha Rao"
        _, total = service.list_orders(status=OrderStatus.CANCELLED.value)
        assert total == 1

        metrics = service.get_metrics()
        assert metrics["total_orders"] == 2
        assert metrics["by_status"]["cancelled"] == 1
        assert metrics["revenue_subunits"] == 100000

    def test_stale_confirmed_orders_move_to_pending(self, db_session, shopper):
        old = make_paid_order(db_session, shopper, created_at=utc_now() - timedelta(days=2))
        fresh = make_paid_order(db_session, shopper)
        service = OrderService(db_session)

        assert service.mark_stale_confirmed_as_pending() == 1

        db_session.expire_all()
        assert old.status == OrderStatus.PENDING.value
        assert fresh.status == OrderStatus.CONFIRMED.value
        _, _, events = service.get_detail(old.id)
        assert [e.note for e in events] == ["Awaiting fulfilment"]
