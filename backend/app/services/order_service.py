"""Order transaction engine and order administration."""

import logging
from dataclasses import dataclass
from datetime import datetime, time
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import NotFound, PaymentMismatch, ValidationFailure
from app.models.order import Order, OrderItem, OrderPaymentStatus, OrderStatus, OrderStatusEvent
from app.models.recovery_journey import RecoveryJourney
from app.models.shared import utc_now
from app.models.user import User
from app.repositories.cart_candidate_repository import CartCandidateRepository
from app.repositories.cart_repository import CartRepository, summarize_lines
from app.repositories.order_repository import OrderRepository
from app.repositories.payment_attempt_repository import PaymentAttemptRepository
from app.repositories.user_repository import UserRepository
from app.services.checkout_service import CheckoutService, CheckoutSummary
from app.services.coupon_service import SOURCE_ABANDONED, CouponService
from app.services.inventory_service import InventoryService
from app.services.journey_service import RecoveryJourneyService
from app.services.payment_gateway import GatewaySettlement, PaymentGatewayBase
from app.services.shipping_service import normalize_address

logger = logging.getLogger(__name__)


@dataclass
class PaymentDetails:
    """The gateway payment an order is being created for."""

    gateway: str
    gateway_order_id: str | None
    gateway_payment_id: str | None
    attempt_id: UUID | None = None
    settlement_id: str | None = None


def settlement_snapshot(settlement: GatewaySettlement) -> dict[str, Any]:
    return {
        "id": settlement.id,
        "amount_subunits": settlement.amount_subunits,
        "status": settlement.status,
        "utr": settlement.utr,
        "synced_at": utc_now().isoformat(),
    }


def build_order_items(lines: list[dict[str, Any]]) -> list[OrderItem]:
    """Freeze each cart line, including a full snapshot for later invoicing."""
    captured_at = utc_now().isoformat()
    items = []
    for line in lines:
        quantity = int(line.get("quantity") or 0)
        if quantity <= 0:
            continue
        price = int(line.get("price_subunits") or 0)
        snapshot = dict(line)
        snapshot["line_total_subunits"] = price * quantity
        snapshot["captured_at"] = captured_at
        items.append(
            OrderItem(
                product_id=UUID(str(line["product_id"])),
                variant_id=UUID(str(line["variant_id"])) if line.get("variant_id") else None,
                title=str(line.get("title") or ""),
                variant_title=line.get("variant_title"),
                quantity=quantity,
                price_subunits=price,
                line_total_subunits=price * quantity,
                image_url=line.get("image_url"),
                sku=line.get("sku"),
                item_snapshot=snapshot,
            )
        )
    return items


class OrderService:
    def __init__(self, db: Session):
        self.db = db
        self.order_repo = OrderRepository(db)
        self.cart_repo = CartRepository(db)
        self.candidate_repo = CartCandidateRepository(db)
        self.attempt_repo = PaymentAttemptRepository(db)
        self.user_repo = UserRepository(db)
        self.inventory = InventoryService(db)
        self.coupons = CouponService(db)
        self.journeys = RecoveryJourneyService(db)

    def create_order_from_cart(
        self,
        user_id: UUID,
        payment: PaymentDetails,
        coupon_code: str | None = None,
        billing_address: dict[str, Any] | None = None,
        shipping_address: dict[str, Any] | None = None,
        skip_stock: bool = False,
        commit: bool = True,
    ) -> tuple[Order, CheckoutSummary]:
        """Turn the user's cart into a paid order in one transaction.

        The cart is re-read under row locks and every total is recomputed.
        Stock is decremented unless ``skip_stock`` says it was reserved when
        the payment attempt was created. The discount is redeemed, the cart
        cleared, and any recovery journey is marked recovered. On any failure
        everything is rolled back, including stock already decremented.

        With ``commit=False`` the caller owns the commit (and the rollback
        for failures raised after this returns).
        """
        try:
            summary = CheckoutService(self.db).compute_summary(
                user_id, coupon_code, shipping_address, lock=True
            )
            if not skip_stock:
                self.inventory.deduct(summary.lines)

            discount = summary.discount
            order = self._write_order(
                user_id=user_id,
                lines=summary.lines,
                subtotal=summary.subtotal_subunits,
                shipping_fee=summary.shipping_fee_subunits,
                discount_total=summary.discount_subunits,
                currency=summary.currency,
                billing_address=normalize_address(billing_address),
                shipping_address=summary.shipping_address,
                payment=payment,
                coupon_code=discount.code if discount else None,
                coupon_source=discount.source if discount else None,
                loyalty_tier=summary.loyalty_tier,
                journey_id=discount.journey_id if discount and discount.source == SOURCE_ABANDONED else None,
            )
            if discount is not None:
                self.coupons.mark_redeemed(discount, order.id, user_id)  # type: ignore[arg-type]
            self.cart_repo.clear(user_id, commit=False)
            self.candidate_repo.delete(user_id, commit=False)
            self.journeys.mark_recovered_by_order(order)
            if commit:
                self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info("Order %s created for user %s (total=%s)", order.order_ref, user_id, order.total_subunits)
        return order, summary

    def create_order_from_journey(
        self,
        journey: RecoveryJourney,
        payment: PaymentDetails,
        amount_paid_subunits: int,
        shipping_fee_subunits: int = 0,
        order_ref: str | None = None,
    ) -> Order:
        """Create an order from a journey's cart snapshot after a payment link was paid.

        The snapshot is authoritative because the live cart may have changed
        since the link was sent. Stock is deducted but floored at zero since
        the money is already collected. Does not commit.

        Raises:
            ValidationFailure: if the snapshot is empty.
            PaymentMismatch: if the amount paid differs from snapshot plus shipping.
        """
        user_id: UUID = journey.user_id  # type: ignore[assignment]
        lines = [line for line in (journey.cart_snapshot or []) if int(line.get("quantity") or 0) > 0]
        item_count, subtotal = summarize_lines(lines)
        if item_count <= 0:
            raise ValidationFailure("Journey has no cart snapshot", reason="cart_empty")
        shipping_fee = max(0, int(shipping_fee_subunits or 0))
        if subtotal + shipping_fee != int(amount_paid_subunits):
            raise PaymentMismatch(
                f"Paid {amount_paid_subunits} but snapshot totals {subtotal + shipping_fee}"
            )

        self.inventory.deduct(lines, allow_shortfall=True)
        user = self.user_repo.get_by_id(user_id)
        address = None
        billing = None
        if user is not None:
            address = normalize_address(user.address) or normalize_address(user.billing_address)
            billing = normalize_address(user.billing_address) or address

        ref = None
        if order_ref and self.db.query(Order.id).filter(Order.order_ref == order_ref).first() is None:
            ref = order_ref
        order = self._write_order(
            user_id=user_id,
            lines=lines,
            subtotal=subtotal,
            shipping_fee=shipping_fee,
            discount_total=0,
            currency=str(journey.currency or settings.DEFAULT_CURRENCY),
            billing_address=billing,
            shipping_address=address,
            payment=payment,
            journey_id=journey.id,  # type: ignore[arg-type]
            order_ref=ref,
        )
        self.cart_repo.clear(user_id, commit=False)
        self.candidate_repo.delete(user_id, commit=False)
        self.journeys.mark_recovered_by_order(order, reason="payment_link_paid")
        logger.info("Order %s created from journey %s", order.order_ref, journey.id)
        return order

    def _write_order(
        self,
        *,
        user_id: UUID,
        lines: list[dict[str, Any]],
        subtotal: int,
        shipping_fee: int,
        discount_total: int,
        currency: str,
        billing_address: dict[str, Any] | None,
        shipping_address: dict[str, Any] | None,
        payment: PaymentDetails,
        coupon_code: str | None = None,
        coupon_source: str | None = None,
        loyalty_tier: str | None = None,
        journey_id: UUID | None = None,
        order_ref: str | None = None,
    ) -> Order:
        items = build_order_items(lines)
        if not items:
            raise ValidationFailure("Cart is empty", reason="cart_empty")
        order = Order(
            order_ref=order_ref or self.order_repo.generate_order_ref(),
            user_id=user_id,
            status=OrderStatus.CONFIRMED.value,
            payment_status=OrderPaymentStatus.PAID.value,
            subtotal_subunits=subtotal,
            shipping_fee_subunits=shipping_fee,
            discount_total_subunits=discount_total,
            total_subunits=subtotal + shipping_fee - discount_total,
            currency=currency,
            billing_address=billing_address,
            shipping_address=shipping_address,
            coupon_code=coupon_code,
            coupon_source=coupon_source,
            coupon_discount_subunits=discount_total if coupon_code else 0,
            loyalty_tier=loyalty_tier,
            abandoned_journey_id=journey_id,
            payment_gateway=payment.gateway,
            gateway_order_id=payment.gateway_order_id,
            gateway_payment_id=payment.gateway_payment_id,
            payment_attempt_id=payment.attempt_id,
            settlement_id=payment.settlement_id,
        )
        return self.order_repo.add(order, items)

    # Reads

    def get_order(self, order_id: UUID) -> Order:
        order = self.order_repo.get_by_id(order_id)
        if order is None:
            raise NotFound(f"Order {order_id} not found")
        return order

    def get_user_order(self, order_id: UUID, user_id: UUID) -> Order:
        order = self.order_repo.get_for_user(order_id, user_id)
        if order is None:
            raise NotFound(f"Order {order_id} not found")
        return order

    def list_user_orders(self, user_id: UUID, skip: int = 0, limit: int = 50) -> list[Order]:
        return self.order_repo.list_by_user(user_id, skip=skip, limit=limit)

    def list_orders(
        self,
        skip: int = 0,
        limit: int = 50,
        status: str | None = None,
        search: str | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
    ) -> tuple[list[tuple[Order, User | None]], int]:
        return self.order_repo.get_paginated(
            skip=skip,
            limit=limit,
            status=None if status in (None, "", "all") else status,
            search=search,
            date_from=date_from,
            date_to=date_to,
        )

    def get_detail(self, order_id: UUID) -> tuple[Order, list[OrderItem], list[OrderStatusEvent]]:
        order = self.get_order(order_id)
        return order, self.order_repo.get_items(order_id), self.order_repo.get_events(order_id)

    def get_metrics(self) -> dict[str, Any]:
        return self.order_repo.metrics()

    # Admin changes

    def update_status(
        self,
        order_id: UUID,
        status: OrderStatus,
        note: str | None = None,
        gateway: PaymentGatewayBase | None = None,
    ) -> Order:
        """Change an order's status, refunding a paid order that is cancelled.

        The refund is issued before the status changes; if the gateway fails
        nothing is updated.
        """
        order = self.order_repo.get_by_id(order_id, lock=True)
        if order is None:
            raise NotFound(f"Order {order_id} not found")
        if order.status == status.value:
            return order

        try:
            if (
                status == OrderStatus.CANCELLED
                and order.payment_status == OrderPaymentStatus.PAID.value
                and order.gateway_payment_id
                and not order.refund_id
                and gateway is not None
            ):
                self._refund(order, gateway)
            order.status = status.value  # type: ignore[assignment]
            self.order_repo.add_event(order.id, status.value, note)  # type: ignore[arg-type]
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(order)
        logger.info("Order %s moved to %s", order.order_ref, status.value)
        return order

    def _refund(self, order: Order, gateway: PaymentGatewayBase) -> None:
        amount = int(order.total_subunits or 0) - int(order.refund_amount_subunits or 0)
        if amount <= 0:
            return
        refund = gateway.refund(
            str(order.gateway_payment_id),
            amount,
            notes={"orderRef": str(order.order_ref), "reason": "order_cancelled"},
        )
        order.refund_id = refund.id  # type: ignore[assignment]
        order.refund_status = refund.status or "pending"  # type: ignore[assignment]
        order.refund_amount_subunits = int(order.refund_amount_subunits or 0) + refund.amount_subunits  # type: ignore[assignment]
        order.payment_status = OrderPaymentStatus.REFUNDED.value  # type: ignore[assignment]
        if order.payment_attempt_id is not None:
            self.attempt_repo.mark_refunded(order.payment_attempt_id)  # type: ignore[arg-type]
        logger.info("Refund %s issued for order %s (%s)", refund.id, order.order_ref, amount)

    def refresh_payment(self, order_id: UUID, gateway: PaymentGatewayBase) -> Order:
        """Pull the latest payment and settlement state from the gateway."""
        order = self.get_order(order_id)
        if not order.gateway_payment_id:
            raise ValidationFailure("Order has no gateway payment", reason="no_payment")
        payment = gateway.fetch_payment(str(order.gateway_payment_id))
        refunded = int(payment.raw.get("amount_refunded") or 0)
        if refunded:
            order.refund_amount_subunits = refunded  # type: ignore[assignment]
        if payment.status == "refunded":
            order.payment_status = OrderPaymentStatus.REFUNDED.value  # type: ignore[assignment]
        settlement_id = payment.raw.get("settlement_id")
        if settlement_id:
            order.settlement_id = str(settlement_id)  # type: ignore[assignment]
        if order.settlement_id:
            settlement = gateway.fetch_settlement(str(order.settlement_id))
            order.settlement_snapshot = settlement_snapshot(settlement)  # type: ignore[assignment]
        self.db.commit()
        self.db.refresh(order)
        return order

    def mark_stale_confirmed_as_pending(self) -> int:
        """Move confirmed orders from before today back to pending."""
        start_of_day = datetime.combine(utc_now().date(), time.min, tzinfo=utc_now().tzinfo)
        ids = self.order_repo.mark_stale_confirmed_as_pending(start_of_day)
        if ids:
            logger.info("Marked %d stale confirmed order(s) pending", len(ids))
        return len(ids)
