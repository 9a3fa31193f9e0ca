"""Tests for stock deduction and reservations."""

import pytest

from app.core.errors import StockUnavailable, ValidationFailure
from app.models.inventory_reservation import InventoryReservation, ReservationStatus
from app.repositories.cart_repository import CartRepository
from app.repositories.inventory_reservation_repository import InventoryReservationRepository
from app.repositories.payment_attempt_repository import PaymentAttemptRepository
from app.services.inventory_service import InventoryService
from tests.conftest import add_to_cart, make_product, make_user, make_variant


@pytest.fixture
def shopper(db_session):
    return make_user(db_session)


@pytest.fixture
def attempt(db_session, shopper):
    return PaymentAttemptRepository(db_session).create(
        user_id=shopper.id,
        gateway_order_id="order_inventory_1",
        amount_subunits=250000,
        currency="INR",
    )


def cart_lines(db, user):
    return CartRepository(db).get_lines(user.id)


class TestDeduct:
    def test_tracked_stock_is_decremented(self, db_session, shopper):
        product = make_product(db_session, track_quantity=True, quantity=5)
        add_to_cart(db_session, shopper, product, quantity=2)

        InventoryService(db_session).deduct(cart_lines(db_session, shopper))
        db_session.commit()

        db_session.refresh(product)
        assert product.quantity == 3

    def test_untracked_stock_is_untouched(self, db_session, shopper):
        product = make_product(db_session, track_quantity=False, quantity=0)
        add_to_cart(db_session, shopper, product, quantity=4)

        InventoryService(db_session).deduct(cart_lines(db_session, shopper))

        db_session.refresh(product)
        assert product.quantity == 0

    def test_variant_stock_is_used(self, db_session, shopper):
        product = make_product(db_session, track_quantity=True, quantity=10)
        variant = make_variant(db_session, product, track_quantity=True, quantity=2)
        add_to_cart(db_session, shopper, product, quantity=2, variant=variant)

        InventoryService(db_session).deduct(cart_lines(db_session, shopper))
        db_session.commit()

        db_session.refresh(variant)
        db_session.refresh(product)
        assert variant.quantity == 0
        assert product.quantity == 10

    def test_shortfall_raises(self, db_session, shopper):
        product = make_product(db_session, track_quantity=True, quantity=1)
        add_to_cart(db_session, shopper, product, quantity=2)

        with pytest.raises(StockUnavailable):
            InventoryService(db_session).deduct(cart_lines(db_session, shopper))

    def test_shortfall_floored_when_allowed(self, db_session, shopper):
        product = make_product(db_session, track_quantity=True, quantity=1)
        add_to_cart(db_session, shopper, product, quantity=3)

        InventoryService(db_session).deduct(cart_lines(db_session, shopper), allow_shortfall=True)
        db_session.commit()

        db_session.refresh(product)
        assert product.quantity == 0

    def test_missing_product(self, db_session):
        line = {"product_id": "00000000-0000-0000-0000-000000000001", "quantity": 1}
        with pytest.raises(ValidationFailure):
            InventoryService(db_session).deduct([line])


class TestReservations:
    def test_reserve_then_release(self, db_session, shopper, attempt):
        tracked = make_product(db_session, title="Tracked", track_quantity=True, quantity=5)
        untracked = make_product(db_session, title="Untracked")
        add_to_cart(db_session, shopper, tracked, quantity=2)
        add_to_cart(db_session, shopper, untracked, quantity=1)
        service = InventoryService(db_session)

        reservations = service.reserve(attempt.id, shopper.id, cart_lines(db_session, shopper))
        db_session.commit()

        assert len(reservations) == 2
        assert len(InventoryReservationRepository(db_session).list_reserved(attempt.id)) == 2
        db_session.refresh(tracked)
        assert tracked.quantity == 3

        assert service.release(attempt.id, "payment_failed") == 2
        db_session.commit()

        db_session.refresh(tracked)
        assert tracked.quantity == 5
        assert InventoryReservationRepository(db_session).list_reserved(attempt.id) == []
        statuses = {r.status for r in db_session.query(InventoryReservation).all()}
        assert statuses == {ReservationStatus.RELEASED.value}

    def test_consume_keeps_stock_out(self, db_session, shopper, attempt):
        tracked = make_product(db_session, track_quantity=True, quantity=5)
        add_to_cart(db_session, shopper, tracked, quantity=2)
        service = InventoryService(db_session)
        service.reserve(attempt.id, shopper.id, cart_lines(db_session, shopper))
        db_session.commit()

        assert service.consume(attempt.id) == 1
        db_session.commit()

        db_session.refresh(tracked)
        assert tracked.quantity == 3
        assert service.release(attempt.id, "late_release") == 0
        reservation = db_session.query(InventoryReservation).one()
        assert reservation.status == ReservationStatus.CONSUMED.value

    def test_reserve_fails_on_shortfall(self, db_session, shopper, attempt):
        tracked = make_product(db_session, track_quantity=True, quantity=1)
        add_to_cart(db_session, shopper, tracked, quantity=2)

        with pytest.raises(StockUnavailable):
            InventoryService(db_session).reserve(attempt.id, shopper.id, cart_lines(db_session, shopper))
