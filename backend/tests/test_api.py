"""API tests for cart, checkout, orders, coupons and recovery admin endpoints."""

from unittest.mock import AsyncMock, patch
from uuid import UUID, uuid4

import pytest
from fastapi.testclient import TestClient

from app.core.errors import GatewayError
from app.main import app
from app.models.order import Order
from app.repositories.payment_attempt_repository import PaymentAttemptRepository
from app.services.activity_tracker import CartActivityTracker, get_activity_tracker
from app.services.payment_gateway import get_payment_gateway
from app.services.recovery_scheduler import RecoveryScheduler, get_recovery_scheduler
from tests.conftest import (
    _TestSessionLocal,
    COMPLETE_ADDRESS,
    add_to_cart,
    auth_headers,
    make_discount,
    make_journey,
    make_paid_order,
    make_product,
    make_user,
    webhook_body,
)


class RecordingEvaluator:
    def __init__(self):
        self.calls: list[tuple] = []

    def __call__(self, user_id, reason):
        self.calls.append((user_id, reason))
        return "candidate_upserted"


@pytest.fixture
def evaluator():
    return RecordingEvaluator()


@pytest.fixture
def client(gateway, dispatcher, evaluator):
    tracker = CartActivityTracker(debounce_seconds=0, evaluate=evaluator)
    scheduler = RecoveryScheduler(_TestSessionLocal, gateway, dispatcher)
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_activity_tracker] = lambda: tracker
    app.dependency_overrides[get_recovery_scheduler] = lambda: scheduler
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def shopper(db_session):
    return make_user(db_session, address=COMPLETE_ADDRESS)


@pytest.fixture
def admin(db_session):
    return make_user(db_session, name="Store Admin", email="admin@example.com", mobile="9000000999", role="admin")


@pytest.fixture
def ring(db_session):
    return make_product(db_session, title="Solitaire Ring", mrp_subunits=500000, track_quantity=True, quantity=3)


class TestAuth:
    def test_missing_token(self, client):
        response = client.get("/cart/")
        assert response.status_code == 401
        assert response.json()["detail"] == "Not authenticated"

    def test_malformed_header(self, client):
        response = client.get("/cart/", headers={"Authorization": "Token abc"})
        assert response.status_code == 401

    def test_invalid_token(self, client):
        response = client.get("/cart/", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid token"

    def test_customer_cannot_use_admin_endpoints(self, client, shopper):
        response = client.get("/orders/", headers=auth_headers(shopper.id))
        assert response.status_code == 403

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["status"] == "running"


class TestCartApi:
    def test_set_quantity_and_read_cart(self, client, shopper, ring, evaluator):
        headers = auth_headers(shopper.id)

        response = client.put(
            "/cart/items", json={"product_id": str(ring.id), "quantity": 2}, headers=headers
        )

        assert response.status_code == 200
        data = response.json()
        assert data["item_count"] == 2
        assert data["subtotal_subunits"] == 1000000
        assert data["items"][0]["item_id"]
        assert evaluator.calls == [(shopper.id, "cart_updated")]

        cart = client.get("/cart/", headers=headers).json()
        assert cart["items"][0]["title"] == "Solitaire Ring"

    def test_quantity_zero_removes_line(self, client, db_session, shopper, ring, evaluator):
        add_to_cart(db_session, shopper, ring)
        response = client.put(
            "/cart/items",
            json={"product_id": str(ring.id), "quantity": 0},
            headers=auth_headers(shopper.id),
        )
        assert response.status_code == 200
        assert response.json()["items"] == []
        assert evaluator.calls[-1] == (shopper.id, "cart_item_removed")

    def test_unknown_product(self, client, shopper):
        response = client.put(
            "/cart/items",
            json={"product_id": str(uuid4()), "quantity": 1},
            headers=auth_headers(shopper.id),
        )
        assert response.status_code == 404

    def test_inactive_product(self, client, db_session, shopper):
        draft = make_product(db_session, status="draft")
        response = client.put(
            "/cart/items",
            json={"product_id": str(draft.id), "quantity": 1},
            headers=auth_headers(shopper.id),
        )
        assert response.status_code == 400

    def test_quantity_bounds(self, client, shopper, ring):
        response = client.put(
            "/cart/items",
            json={"product_id": str(ring.id), "quantity": 101},
            headers=auth_headers(shopper.id),
        )
        assert response.status_code == 422

    def test_remove_and_clear(self, client, db_session, shopper, ring, evaluator):
        item = add_to_cart(db_session, shopper, ring)
        headers = auth_headers(shopper.id)

        assert client.delete(f"/cart/items/{item.id}", headers=headers).status_code == 204
        assert client.delete(f"/cart/items/{item.id}", headers=headers).status_code == 404

        add_to_cart(db_session, shopper, ring)
        assert client.delete("/cart/", headers=headers).status_code == 204
        assert client.get("/cart/", headers=headers).json()["item_count"] == 0
        assert evaluator.calls[-1] == (shopper.id, "cart_cleared")


class TestCheckoutApi:
    def test_summary(self, client, db_session, shopper, ring):
        add_to_cart(db_session, shopper, ring)

        response = client.post(
            "/orders/checkout/summary",
            json={"shipping_address": COMPLETE_ADDRESS},
            headers=auth_headers(shopper.id),
        )

        assert response.status_code == 200
        assert response.json()["total_subunits"] == 500000

    def test_empty_cart_reason(self, client, shopper):
        response = client.post("/orders/checkout/summary", json={}, headers=auth_headers(shopper.id))
        assert response.status_code == 400
        assert response.json()["detail"]["reason"] == "cart_empty"

    def test_create_verify_and_read_order(self, client, db_session, gateway, shopper, ring):
        add_to_cart(db_session, shopper, ring)
        headers = auth_headers(shopper.id)

        created = client.post(
            "/orders/razorpay/order", json={"shipping_address": COMPLETE_ADDRESS}, headers=headers
        )
        assert created.status_code == 201
        body = created.json()
        assert body["key_id"] == "rzp_test_key"
        assert body["amount_subunits"] == 500000

        order_id = body["gateway_order_id"]
        payment = gateway.add_payment(order_id)
        verify_body = {
            "razorpay_order_id": order_id,
            "razorpay_payment_id": payment.id,
            "razorpay_signature": gateway.sign_payment(order_id, payment.id),
        }
        with patch("app.routers.orders.enqueue_order_confirmation", new_callable=AsyncMock) as mock_enqueue:
            verified = client.post("/orders/razorpay/verify", json=verify_body, headers=headers)
            again = client.post("/orders/razorpay/verify", json=verify_body, headers=headers)

        assert verified.status_code == 200
        assert verified.json()["already_processed"] is False
        assert again.json()["already_processed"] is True
        local_id = verified.json()["order"]["id"]
        mock_enqueue.assert_awaited_once_with(local_id)

        mine = client.get("/orders/my", headers=headers).json()
        assert [o["id"] for o in mine] == [local_id]
        detail = client.get(f"/orders/my/{local_id}", headers=headers).json()
        assert detail["items"][0]["title"] == "Solitaire Ring"
        assert detail["events"][0]["note"] == "Order created"

    def test_enqueue_failure_does_not_fail_verify(self, client, db_session, gateway, shopper, ring):
        add_to_cart(db_session, shopper, ring)
        headers = auth_headers(shopper.id)
        order_id = client.post("/orders/razorpay/order", json={}, headers=headers).json()["gateway_order_id"]
        payment = gateway.add_payment(order_id)

        with patch(
            "app.routers.orders.enqueue_order_confirmation",
            new_callable=AsyncMock,
            side_effect=ConnectionError("redis down"),
        ):
            response = client.post(
                "/orders/razorpay/verify",
                json={
                    "razorpay_order_id": order_id,
                    "razorpay_payment_id": payment.id,
                    "razorpay_signature": gateway.sign_payment(order_id, payment.id),
                },
                headers=headers,
            )

        assert response.status_code == 200

    def test_verify_invalid_signature(self, client, db_session, gateway, shopper, ring):
        add_to_cart(db_session, shopper, ring)
        headers = auth_headers(shopper.id)
        order_id = client.post("/orders/razorpay/order", json={}, headers=headers).json()["gateway_order_id"]

        response = client.post(
            "/orders/razorpay/verify",
            json={"razorpay_order_id": order_id, "razorpay_payment_id": "pay_x", "razorpay_signature": "bad"},
            headers=headers,
        )

        assert response.status_code == 400
        assert response.json()["detail"]["reason"] == "signature_invalid"

    def test_out_of_stock_is_conflict(self, client, db_session, shopper):
        sold_out = make_product(db_session, track_quantity=True, quantity=0)
        add_to_cart(db_session, shopper, sold_out)

        response = client.post("/orders/razorpay/order", json={}, headers=auth_headers(shopper.id))

        assert response.status_code == 409
        assert response.json()["detail"]["reason"] == "stock_insufficient"

    def test_gateway_failure_is_bad_gateway(self, client, db_session, gateway, shopper, ring):
        add_to_cart(db_session, shopper, ring)
        with patch.object(gateway, "create_order", side_effect=GatewayError("Payment gateway unreachable")):
            response = client.post("/orders/razorpay/order", json={}, headers=auth_headers(shopper.id))
        assert response.status_code == 502
        assert response.json()["detail"]["reason"] == "gateway_error"

    def test_retry_without_attempt(self, client, shopper):
        response = client.post("/orders/razorpay/retry", json={}, headers=auth_headers(shopper.id))
        assert response.status_code == 404


class TestWebhookApi:
    def test_invalid_signature_is_unauthorized(self, client):
        body = webhook_body("payment.captured", payment={"id": "pay_1"})
        response = client.post(
            "/orders/razorpay/webhook",
            content=body,
            headers={"X-Razorpay-Signature": "forged", "Content-Type": "application/json"},
        )
        assert response.status_code == 401

    def test_ignored_event_is_acknowledged(self, client, gateway):
        body = webhook_body("invoice.paid", invoice={"id": "inv_1"})
        response = client.post(
            "/orders/razorpay/webhook",
            content=body,
            headers={
                "X-Razorpay-Signature": gateway.sign_webhook(body),
                "X-Razorpay-Event-Id": "evt_api_1",
                "Content-Type": "application/json",
            },
        )
        assert response.status_code == 200
        assert response.json()["status"] == "ignored"

    def test_deferred_event_asks_for_redelivery(self, client, db_session, gateway, shopper, ring):
        add_to_cart(db_session, shopper, ring)
        created = client.post("/orders/razorpay/order", json={}, headers=auth_headers(shopper.id)).json()
        PaymentAttemptRepository(db_session).begin_verification_lock(UUID(created["attempt_id"]), 60)
        body = webhook_body(
            "payment.captured",
            payment={
                "id": "pay_api_1",
                "order_id": created["gateway_order_id"],
                "amount": created["amount_subunits"],
                "currency": "INR",
                "status": "captured",
            },
        )

        response = client.post(
            "/orders/razorpay/webhook",
            content=body,
            headers={"X-Razorpay-Signature": gateway.sign_webhook(body), "X-Razorpay-Event-Id": "evt_api_2"},
        )

        assert response.status_code == 409
        assert response.json()["detail"]["reason"] == "retry_later"


class TestAdminOrdersApi:
    def test_list_detail_metrics(self, client, db_session, shopper, admin):
        order = make_paid_order(db_session, shopper)
        headers = auth_headers(admin.id, role="admin")

        listed = client.get("/orders/", headers=headers)
        assert listed.status_code == 200
        assert listed.headers["X-Total-Count"] == "1"
        assert listed.json()[0]["customer_email"] == "asha@example.com"

        detail = client.get(f"/orders/{order.id}", headers=headers)
        assert detail.json()["order_ref"] == order.order_ref

        metrics = client.get("/orders/metrics", headers=headers).json()
        assert metrics["total_orders"] == 1

        assert client.get(f"/orders/{uuid4()}", headers=headers).status_code == 404

    def test_cancel_refunds(self, client, db_session, gateway, shopper, admin):
        order = make_paid_order(db_session, shopper, gateway_payment_id="pay_api_refund")

        response = client.patch(
            f"/orders/{order.id}/status",
            json={"status": "cancelled", "note": "Out of stock"},
            headers=auth_headers(admin.id, role="admin"),
        )

        assert response.status_code == 200
        assert response.json()["payment_status"] == "refunded"
        assert len(gateway.refunds) == 1

    def test_refund_failure_is_bad_gateway(self, client, db_session, gateway, shopper, admin):
        gateway.fail_refunds = True
        order = make_paid_order(db_session, shopper, gateway_payment_id="pay_api_refund")

        response = client.patch(
            f"/orders/{order.id}/status",
            json={"status": "cancelled"},
            headers=auth_headers(admin.id, role="admin"),
        )

        assert response.status_code == 502
        db_session.expire_all()
        assert db_session.get(Order, order.id).status == "confirmed"

    def test_refresh_payment_without_payment(self, client, db_session, shopper, admin):
        order = make_paid_order(db_session, shopper)
        response = client.post(
            f"/orders/{order.id}/refresh-payment", headers=auth_headers(admin.id, role="admin")
        )
        assert response.status_code == 400
        assert response.json()["detail"]["reason"] == "no_payment"


class TestCouponsApi:
    def test_create_list_validate_deactivate(self, client, db_session, shopper, admin, ring):
        admin_headers = auth_headers(admin.id, role="admin")

        created = client.post(
            "/coupons/",
            json={"code": "diwali10", "discount_type": "percent", "discount_value": "10"},
            headers=admin_headers,
        )
        assert created.status_code == 201
        coupon = created.json()
        assert coupon["code"] == "DIWALI10"

        duplicate = client.post(
            "/coupons/",
            json={"code": "DIWALI10", "discount_value": "5"},
            headers=admin_headers,
        )
        assert duplicate.status_code == 400

        listed = client.get("/coupons/", headers=admin_headers)
        assert listed.headers["X-Total-Count"] == "1"

        add_to_cart(db_session, shopper, ring)
        validated = client.post(
            "/coupons/validate", json={"code": "diwali10"}, headers=auth_headers(shopper.id)
        )
        assert validated.status_code == 200
        assert validated.json()["discount_subunits"] == 50000
        assert validated.json()["source"] == "coupon"

        deactivated = client.post(f"/coupons/{coupon['id']}/deactivate", headers=admin_headers)
        assert deactivated.json()["is_active"] is False
        invalid = client.post(
            "/coupons/validate", json={"code": "diwali10"}, headers=auth_headers(shopper.id)
        )
        assert invalid.status_code == 400
        assert invalid.json()["detail"]["reason"] == "coupon_invalid"

    def test_percent_over_100_rejected(self, client, admin):
        response = client.post(
            "/coupons/",
            json={"discount_type": "percent", "discount_value": "150"},
            headers=auth_headers(admin.id, role="admin"),
        )
        assert response.status_code == 422

    def test_recovery_discount_validates(self, client, db_session, shopper, ring):
        add_to_cart(db_session, shopper, ring)
        journey = make_journey(db_session, shopper)
        make_discount(db_session, journey, code="REC-AB3-API1", percent=5)

        response = client.post(
            "/coupons/validate", json={"code": "rec-ab3-api1"}, headers=auth_headers(shopper.id)
        )

        assert response.status_code == 200
        assert response.json()["source"] == "abandoned"
        assert response.json()["discount_subunits"] == 25000


class TestAbandonedCartsApi:
    def test_campaign_read_and_update(self, client, admin):
        headers = auth_headers(admin.id, role="admin")

        campaign = client.get("/abandoned-carts/campaign", headers=headers).json()
        assert campaign["max_attempts"] == 4

        updated = client.put(
            "/abandoned-carts/campaign", json={"inactivity_minutes": 45}, headers=headers
        )
        assert updated.status_code == 200
        assert updated.json()["inactivity_minutes"] == 45

        invalid = client.put("/abandoned-carts/campaign", json={"max_attempts": 2}, headers=headers)
        assert invalid.status_code == 400
        assert invalid.json()["detail"]["reason"] == "validation_failed"

    def test_process_sends_due_journeys(self, client, db_session, dispatcher, shopper, ring, admin):
        add_to_cart(db_session, shopper, ring)
        make_journey(db_session, shopper)

        response = client.post(
            "/abandoned-carts/process", json={"limit": 10}, headers=auth_headers(admin.id, role="admin")
        )

        assert response.status_code == 200
        assert response.json()["sent"] == 1
        assert response.json()["batches"] == 1
        assert len(dispatcher.emails) == 1

    def test_maintenance(self, client, admin):
        response = client.post("/abandoned-carts/maintenance", headers=auth_headers(admin.id, role="admin"))
        assert response.status_code == 200
        assert response.json() == {"candidates_checked": 0, "promoted": 0, "expired": 0, "cancelled": 0}

    def test_journeys_timeline_and_insights(self, client, db_session, shopper, ring, admin):
        add_to_cart(db_session, shopper, ring)
        journey = make_journey(db_session, shopper, due=False)
        headers = auth_headers(admin.id, role="admin")

        listed = client.get("/abandoned-carts/journeys", params={"search": "asha"}, headers=headers)
        assert listed.headers["X-Total-Count"] == "1"
        assert listed.json()[0]["customer_name"] == "Asha Rao"

        timeline = client.get(f"/abandoned-carts/journeys/{journey.id}", headers=headers)
        assert timeline.status_code == 200
        assert timeline.json()["journey"]["id"] == str(journey.id)
        assert timeline.json()["attempts"] == []

        assert client.get(f"/abandoned-carts/journeys/{uuid4()}", headers=headers).status_code == 404

        insights = client.get("/abandoned-carts/insights", params={"days": 7}, headers=headers)
        assert insights.status_code == 200
        assert insights.json()["days"] == 7

    def test_staff_only(self, client, shopper):
        response = client.get("/abandoned-carts/campaign", headers=auth_headers(shopper.id))
        assert response.status_code == 403
