"""Shared test fixtures for all test modules."""

import contextlib
import json
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401
from app.core import database as db_module
from app.core.auth import create_access_token
from app.core.database import Base, get_db
from app.core.errors import GatewayError
from app.models.cart_item import CartItem
from app.models.order import Order, OrderPaymentStatus, OrderStatus
from app.models.product import Product, ProductStatus, ProductVariant
from app.models.recovery_discount import DiscountStatus, RecoveryDiscount
from app.models.recovery_journey import JourneyStatus, RecoveryJourney
from app.models.shared import utc_now
from app.models.user import User
from app.repositories.cart_repository import CartRepository, summarize_lines
from app.repositories.order_repository import OrderRepository
from app.services.notification_service import ChannelResult, NotificationDispatcherBase
from app.services.payment_gateway import (
    GatewayOrder,
    GatewayPayment,
    GatewayRefund,
    GatewaySettlement,
    PaymentGatewayBase,
    PaymentLink,
    generate_hmac_signature,
    signatures_match,
)

# Create an in-memory SQLite engine with StaticPool so all connections
# share the same database state and there are no file-locking issues.
_test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
_TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=_test_engine)

COMPLETE_ADDRESS = {
    "name": "Asha Rao",
    "mobile": "9876543210",
    "line1": "12 MG Road",
    "city": "Bengaluru",
    "state": "Karnataka",
    "zip": "560001",
}


@pytest.fixture(autouse=True)
def setup_database():
    """Create tables before each test and truncate all data after.

    Patches the module-level engine and SessionLocal so all application code
    uses the in-memory test database. Clears data after each test.
    """
    original_engine = db_module.engine
    original_session = db_module.SessionLocal
    db_module.engine = _test_engine
    db_module.SessionLocal = _TestSessionLocal

    Base.metadata.create_all(bind=_test_engine)

    yield
    with _test_engine.connect() as conn:
        conn.execute(text("PRAGMA foreign_keys = OFF"))
        for table in reversed(Base.metadata.sorted_tables):
            with contextlib.suppress(OperationalError):
                conn.execute(table.delete())
        conn.execute(text("PRAGMA foreign_keys = ON"))
        conn.commit()

    db_module.engine = original_engine
    db_module.SessionLocal = original_session


@pytest.fixture
def db_session():
    """Create a database session for direct service testing."""
    gen = get_db()
    db = next(gen)
    try:
        yield db
    finally:
        for _ in gen:
            pass


# Factories


def make_user(
    db: Session,
    name: str = "Asha Rao",
    email: str | None = "asha@example.com",
    mobile: str | None = "9876543210",
    address: dict[str, Any] | None = None,
    role: str = "customer",
) -> User:
    user = User(name=name, email=email, mobile=mobile, address=address, role=role)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def make_product(
    db: Session,
    title: str = "Gold Hoop Earrings",
    mrp_subunits: int = 250000,
    discount_price_subunits: int | None = None,
    track_quantity: bool = False,
    quantity: int = 0,
    status: str = ProductStatus.ACTIVE.value,
    weight_kg: float | None = None,
    sku: str | None = None,
) -> Product:
    product = Product(
        title=title,
        mrp_subunits=mrp_subunits,
        discount_price_subunits=discount_price_subunits,
        track_quantity=track_quantity,
        quantity=quantity,
        status=status,
        weight_kg=weight_kg,
        sku=sku,
    )
    db.add(product)
    db.commit()
    db.refresh(product)
    return product


def make_variant(
    db: Session,
    product: Product,
    variant_title: str = "Rose Gold",
    price_subunits: int | None = None,
    track_quantity: bool = False,
    quantity: int = 0,
) -> ProductVariant:
    variant = ProductVariant(
        product_id=product.id,
        variant_title=variant_title,
        price_subunits=price_subunits,
        track_quantity=track_quantity,
        quantity=quantity,
    )
    db.add(variant)
    db.commit()
    db.refresh(variant)
    return variant


def add_to_cart(
    db: Session,
    user: User,
    product: Product,
    quantity: int = 1,
    variant: ProductVariant | None = None,
) -> CartItem:
    item = CartItem(
        user_id=user.id,
        product_id=product.id,
        variant_id=variant.id if variant is not None else None,
        quantity=quantity,
    )
    db.add(item)
    db.commit()
    db.refresh(item)
    return item


def make_journey(
    db: Session,
    user: User,
    next_attempt_at: datetime | None = None,
    due: bool = True,
    last_attempt_no: int = 0,
    status: str = JourneyStatus.ACTIVE.value,
    last_activity_at: datetime | None = None,
    expires_at: datetime | None = None,
    created_at: datetime | None = None,
    cart_snapshot: list[dict[str, Any]] | None = None,
) -> RecoveryJourney:
    """Journey over the user's live cart; due one minute ago unless told otherwise."""
    now = utc_now()
    lines = cart_snapshot if cart_snapshot is not None else CartRepository(db).get_lines(user.id)
    item_count, total = summarize_lines(lines)
    if next_attempt_at is None and due:
        next_attempt_at = now - timedelta(minutes=1)
    journey = RecoveryJourney(
        user_id=user.id,
        status=status,
        cart_item_count=item_count,
        cart_total_subunits=total,
        cart_snapshot=lines,
        last_activity_at=last_activity_at or now - timedelta(hours=1),
        last_attempt_no=last_attempt_no,
        next_attempt_at=next_attempt_at,
        expires_at=expires_at or now + timedelta(hours=72),
        created_at=created_at or now - timedelta(hours=1),
    )
    db.add(journey)
    db.commit()
    db.refresh(journey)
    return journey


def make_discount(
    db: Session,
    journey: RecoveryJourney,
    code: str = "REC-AB1-TEST0001",
    attempt_no: int = 1,
    percent: int = 10,
    min_cart_subunits: int | None = None,
    max_discount_subunits: int | None = None,
    status: str = DiscountStatus.ACTIVE.value,
    expires_at: datetime | None = None,
) -> RecoveryDiscount:
    discount = RecoveryDiscount(
        journey_id=journey.id,
        user_id=journey.user_id,
        attempt_no=attempt_no,
        code=code,
        discount_percent=percent,
        min_cart_subunits=min_cart_subunits,
        max_discount_subunits=max_discount_subunits,
        status=status,
        expires_at=expires_at or utc_now() + timedelta(hours=24),
    )
    db.add(discount)
    db.commit()
    db.refresh(discount)
    return discount


def make_paid_order(
    db: Session,
    user: User,
    subtotal_subunits: int = 250000,
    created_at: datetime | None = None,
    gateway_payment_id: str | None = None,
    abandoned_journey_id: UUID | None = None,
) -> Order:
    order = Order(
        order_ref=OrderRepository(db).generate_order_ref(),
        user_id=user.id,
        status=OrderStatus.CONFIRMED.value,
        payment_status=OrderPaymentStatus.PAID.value,
        subtotal_subunits=subtotal_subunits,
        total_subunits=subtotal_subunits,
        payment_gateway="razorpay",
        gateway_payment_id=gateway_payment_id,
        abandoned_journey_id=abandoned_journey_id,
        created_at=created_at or utc_now(),
    )
    db.add(order)
    db.commit()
    db.refresh(order)
    return order


def auth_headers(user_id: UUID, role: str = "customer") -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user_id, role)}"}


# Gateway and notification doubles


class FakeGateway(PaymentGatewayBase):
    """In-memory gateway that signs like Razorpay."""

    name = "razorpay"

    def __init__(self, key_secret: str = "test_key_secret", webhook_secret: str = "test_webhook_secret"):
        self.key_secret = key_secret
        self.webhook_secret = webhook_secret
        self.orders: dict[str, GatewayOrder] = {}
        self.payments: dict[str, GatewayPayment] = {}
        self.settlements: dict[str, GatewaySettlement] = {}
        self.refunds: list[GatewayRefund] = []
        self.links: list[dict[str, Any]] = []
        self.fail_links = False
        self.fail_refunds = False
        self._seq = 0

    @property
    def key_id(self) -> str:
        return "rzp_test_key"

    def _next_id(self, prefix: str) -> str:
        self._seq += 1
        return f"{prefix}_{self._seq:06d}"

    def create_order(self, amount_subunits, currency, receipt, notes=None):
        order = GatewayOrder(
            id=self._next_id("order"),
            amount_subunits=int(amount_subunits),
            currency=currency,
            status="created",
            raw={"receipt": receipt, "notes": notes or {}},
        )
        self.orders[order.id] = order
        return order

    def add_payment(
        self,
        order_id: str | None,
        amount_subunits: int | None = None,
        status: str = "captured",
        currency: str = "INR",
        **raw: Any,
    ) -> GatewayPayment:
        if amount_subunits is None:
            amount_subunits = self.orders[order_id].amount_subunits if order_id else 0
        payment_id = self._next_id("pay")
        payment = GatewayPayment(
            id=payment_id,
            order_id=order_id,
            amount_subunits=amount_subunits,
            currency=currency,
            status=status,
            raw={"id": payment_id, "order_id": order_id, "amount": amount_subunits, **raw},
        )
        self.payments[payment.id] = payment
        return payment

    def fetch_payment(self, payment_id):
        if payment_id not in self.payments:
            raise GatewayError(f"Payment {payment_id} not found")
        return self.payments[payment_id]

    def refund(self, payment_id, amount_subunits, notes=None):
        if self.fail_refunds:
            raise GatewayError("Refund rejected")
        refund = GatewayRefund(
            id=self._next_id("rfnd"),
            payment_id=payment_id,
            amount_subunits=int(amount_subunits),
            status="processed",
            raw={"notes": notes or {}},
        )
        self.refunds.append(refund)
        return refund

    def create_payment_link(
        self,
        amount_subunits,
        currency,
        description,
        reference_id,
        expire_by,
        customer=None,
        callback_url=None,
        reminder_enable=True,
        notes=None,
    ):
        if self.fail_links:
            raise GatewayError("Payment link service unavailable")
        link_id = self._next_id("plink")
        self.links.append(
            {
                "id": link_id,
                "amount_subunits": amount_subunits,
                "currency": currency,
                "description": description,
                "reference_id": reference_id,
                "expire_by": expire_by,
                "customer": customer,
                "notes": notes or {},
            }
        )
        return PaymentLink(id=link_id, short_url=f"https://rzp.io/i/{link_id}", status="created")

    def fetch_settlement(self, settlement_id):
        if settlement_id not in self.settlements:
            raise GatewayError(f"Settlement {settlement_id} not found")
        return self.settlements[settlement_id]

    def verify_payment_signature(self, order_id, payment_id, signature):
        return signatures_match(self.sign_payment(order_id, payment_id), signature)

    def verify_webhook_signature(self, body, signature):
        return signatures_match(self.sign_webhook(body), signature)

    def sign_payment(self, order_id: str, payment_id: str) -> str:
        return generate_hmac_signature(f"{order_id}|{payment_id}".encode(), self.key_secret)

    def sign_webhook(self, body: bytes) -> str:
        return generate_hmac_signature(body, self.webhook_secret)


class FakeDispatcher(NotificationDispatcherBase):
    """Records sends; each channel can be made to fail."""

    def __init__(self, email_ok: bool = True, whatsapp_ok: bool = True):
        self.email_ok = email_ok
        self.whatsapp_ok = whatsapp_ok
        self.emails: list[dict[str, Any]] = []
        self.whatsapp: list[dict[str, Any]] = []

    async def send_email(self, to, subject, html, text):
        self.emails.append({"to": to, "subject": subject, "html": html, "text": text})
        if not self.email_ok:
            return ChannelResult("email", ok=False, error="SMTP unavailable")
        return ChannelResult("email", ok=True, detail={"to": to})

    async def send_whatsapp(self, payload):
        self.whatsapp.append(payload)
        if not self.whatsapp_ok:
            return ChannelResult("whatsapp", ok=False, error="WhatsApp unavailable")
        return ChannelResult("whatsapp", ok=True)


def webhook_body(event: str, **entities: dict[str, Any]) -> bytes:
    """Serialize a Razorpay-shaped webhook payload."""
    payload = {
        "event": event,
        "payload": {name: {"entity": entity} for name, entity in entities.items()},
        "created_at": int(datetime(2026, 1, 1).timestamp()),
    }
    return json.dumps(payload).encode("utf-8")


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def dispatcher():
    return FakeDispatcher()
