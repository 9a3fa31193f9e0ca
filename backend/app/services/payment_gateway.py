"""Payment gateway abstraction and the Razorpay client.

Amounts crossing this boundary are always integer subunits (paise).
"""

import hashlib
import hmac
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import httpx

from app.core.config import settings
from app.core.errors import GatewayError

logger = logging.getLogger(__name__)


@dataclass
class GatewayOrder:
    id: str
    amount_subunits: int
    currency: str
    status: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class GatewayPayment:
    id: str
    order_id: str | None
    amount_subunits: int
    currency: str
    status: str
    method: str | None = None
    error_description: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class GatewayRefund:
    id: str
    payment_id: str
    amount_subunits: int
    status: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class PaymentLink:
    id: str
    short_url: str | None
    status: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class GatewaySettlement:
    id: str
    amount_subunits: int
    status: str | None = None
    utr: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)


def generate_hmac_signature(payload: bytes, secret: str) -> str:
    """Hex-encoded HMAC-SHA256 of ``payload``."""
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def signatures_match(expected: str, received: str | None) -> bool:
    if not received:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), received.strip().encode("utf-8"))


class PaymentGatewayBase(ABC):
    """Contract for the third-party payment API."""

    name = "gateway"

    @property
    @abstractmethod
    def key_id(self) -> str:
        """Public key handed to the checkout widget."""
        pass  # pragma: no cover

    @abstractmethod
    def create_order(
        self, amount_subunits: int, currency: str, receipt: str, notes: dict[str, Any] | None = None
    ) -> GatewayOrder:
        pass  # pragma: no cover

    @abstractmethod
    def fetch_payment(self, payment_id: str) -> GatewayPayment:
        pass  # pragma: no cover

    @abstractmethod
    def refund(
        self, payment_id: str, amount_subunits: int, notes: dict[str, Any] | None = None
    ) -> GatewayRefund:
        pass  # pragma: no cover

    @abstractmethod
    def create_payment_link(
        self,
        amount_subunits: int,
        currency: str,
        description: str,
        reference_id: str,
        expire_by: datetime | None,
        customer: dict[str, Any] | None = None,
        callback_url: str | None = None,
        reminder_enable: bool = True,
        notes: dict[str, Any] | None = None,
    ) -> PaymentLink:
        pass  # pragma: no cover

    @abstractmethod
    def fetch_settlement(self, settlement_id: str) -> GatewaySettlement:
        pass  # pragma: no cover

    @abstractmethod
    def verify_payment_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        pass  # pragma: no cover

    @abstractmethod
    def verify_webhook_signature(self, body: bytes, signature: str | None) -> bool:
        pass  # pragma: no cover


def as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


class RazorpayGateway(PaymentGatewayBase):
    """Razorpay REST client over httpx with basic auth."""

    name = "razorpay"

    def __init__(
        self,
        key_id: str | None = None,
        key_secret: str | None = None,
        webhook_secret: str | None = None,
        base_url: str | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self._key_id = key_id if key_id is not None else settings.razorpay_key_id
        self.key_secret = key_secret if key_secret is not None else settings.razorpay_key_secret
        self.webhook_secret = (
            webhook_secret if webhook_secret is not None else settings.razorpay_webhook_secret
        )
        self.base_url = (base_url or settings.razorpay_base_url).rstrip("/")
        self._transport = transport

    @property
    def key_id(self) -> str:
        return self._key_id

    def _request(
        self, method: str, path: str, json: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        if not self._key_id or not self.key_secret:
            raise GatewayError("Razorpay credentials are not configured")
        try:
            with httpx.Client(
                base_url=self.base_url,
                auth=(self._key_id, self.key_secret),
                timeout=30.0,
                transport=self._transport,
            ) as client:
                resp = client.request(method, path, json=json)
        except httpx.HTTPError as exc:
            logger.warning("Razorpay %s %s failed: %s", method, path, exc)
            raise GatewayError(f"Payment gateway unreachable: {exc}") from exc

        if resp.status_code >= 400:
            description = resp.text[:300] if resp.text else ""
            try:
                description = resp.json().get("error", {}).get("description") or description
            except ValueError:
                pass
            logger.warning("Razorpay %s %s returned %s: %s", method, path, resp.status_code, description)
            raise GatewayError(f"Payment gateway error: {description or resp.status_code}")
        data: dict[str, Any] = resp.json()
        return data

    def create_order(
        self, amount_subunits: int, currency: str, receipt: str, notes: dict[str, Any] | None = None
    ) -> GatewayOrder:
        data = self._request(
            "POST",
            "/orders",
            json={
                "amount": int(amount_subunits),
                "currency": currency.upper(),
                "receipt": receipt[:40],
                "notes": notes or {},
            },
        )
        return GatewayOrder(
            id=str(data.get("id")),
            amount_subunits=as_int(data.get("amount")),
            currency=str(data.get("currency") or currency).upper(),
            status=data.get("status"),
            raw=data,
        )

    def fetch_payment(self, payment_id: str) -> GatewayPayment:
        data = self._request("GET", f"/payments/{payment_id}")
        return payment_from_entity(data)

    def refund(
        self, payment_id: str, amount_subunits: int, notes: dict[str, Any] | None = None
    ) -> GatewayRefund:
        data = self._request(
            "POST",
            f"/payments/{payment_id}/refund",
            json={"amount": int(amount_subunits), "notes": notes or {}},
        )
        return GatewayRefund(
            id=str(data.get("id")),
            payment_id=str(data.get("payment_id") or payment_id),
            amount_subunits=as_int(data.get("amount")),
            status=data.get("status"),
            raw=data,
        )

    def create_payment_link(
        self,
        amount_subunits: int,
        currency: str,
        description: str,
        reference_id: str,
        expire_by: datetime | None,
        customer: dict[str, Any] | None = None,
        callback_url: str | None = None,
        reminder_enable: bool = True,
        notes: dict[str, Any] | None = None,
    ) -> PaymentLink:
        if int(amount_subunits) <= 0:
            raise GatewayError("Payment link amount must be positive")
        payload: dict[str, Any] = {
            "amount": int(amount_subunits),
            "currency": currency.upper(),
            "description": description[:2048],
            "reference_id": reference_id[:40],
            "notify": {"sms": False, "email": False},
            "reminder_enable": bool(reminder_enable),
            "notes": notes or {},
        }
        contact = {key: value for key, value in (customer or {}).items() if value}
        if contact:
            payload["customer"] = contact
        if expire_by is not None:
            payload["expire_by"] = int(expire_by.timestamp())
        if callback_url:
            payload["callback_url"] = callback_url
            payload["callback_method"] = "get"
        data = self._request("POST", "/payment_links", json=payload)
        return PaymentLink(
            id=str(data.get("id")),
            short_url=data.get("short_url"),
            status=data.get("status"),
            raw=data,
        )

    def fetch_settlement(self, settlement_id: str) -> GatewaySettlement:
        data = self._request("GET", f"/settlements/{settlement_id}")
        return GatewaySettlement(
            id=str(data.get("id") or settlement_id),
            amount_subunits=as_int(data.get("amount")),
            status=data.get("status"),
            utr=data.get("utr"),
            raw=data,
        )

    def verify_payment_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        if not self.key_secret:
            return False
        expected = generate_hmac_signature(f"{order_id}|{payment_id}".encode(), self.key_secret)
        return signatures_match(expected, signature)

    def verify_webhook_signature(self, body: bytes, signature: str | None) -> bool:
        if not self.webhook_secret:
            return False
        expected = generate_hmac_signature(body, self.webhook_secret)
        return signatures_match(expected, signature)


def payment_from_entity(entity: dict[str, Any]) -> GatewayPayment:
    """Build a payment from a Razorpay payment entity (API or webhook)."""
    return GatewayPayment(
        id=str(entity.get("id") or ""),
        order_id=entity.get("order_id"),
        amount_subunits=as_int(entity.get("amount")),
        currency=str(entity.get("currency") or "").upper(),
        status=str(entity.get("status") or ""),
        method=entity.get("method"),
        error_description=entity.get("error_description"),
        raw=entity,
    )


def get_payment_gateway() -> PaymentGatewayBase:
    """FastAPI dependency and worker factory for the configured gateway."""
    return RazorpayGateway()
