"""Order repository."""

import secrets
import string
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from app.models.order import Order, OrderItem, OrderPaymentStatus, OrderStatus, OrderStatusEvent
from app.models.shared import utc_now
from app.models.user import User

REF_ALPHABET = string.ascii_uppercase + string.digits


class OrderRepository:
    """Repository for Order, OrderItem and OrderStatusEvent models."""

    def __init__(self, db: Session):
        self.db = db

    def generate_order_ref(self) -> str:
        """Generate a unique ``SSC-YYYYMMDD-XXXXXX`` reference."""
        today = utc_now().strftime("%Y%m%d")
        while True:
            suffix = "".join(secrets.choice(REF_ALPHABET) for _ in range(6))
            ref = f"SSC-{today}-{suffix}"
            exists = self.db.query(Order.id).filter(Order.order_ref == ref).first()
            if exists is None:
                return ref

    def add(self, order: Order, items: list[OrderItem]) -> Order:
        """Stage an order with its items and first status event. Does not commit."""
        self.db.add(order)
        self.db.flush()
        for position, item in enumerate(items):
            item.order_id = order.id
            item.position = position
            self.db.add(item)
        self.add_event(order.id, str(order.status), "Order created")
        self.db.flush()
        return order

    def add_event(self, order_id: UUID, status: str, note: str | None = None) -> OrderStatusEvent:
        event = OrderStatusEvent(order_id=order_id, status=status, note=note)
        self.db.add(event)
        return event

    def get_by_id(self, order_id: UUID, lock: bool = False) -> Order | None:
        query = self.db.query(Order).filter(Order.id == order_id)
        if lock:
            query = query.with_for_update()
        return query.first()

    def get_for_user(self, order_id: UUID, user_id: UUID) -> Order | None:
        return self.db.query(Order).filter(Order.id == order_id, Order.user_id == user_id).first()

    def get_by_payment_id(self, gateway_payment_id: str) -> Order | None:
        return self.db.query(Order).filter(Order.gateway_payment_id == gateway_payment_id).first()

    def get_by_gateway_order_id(self, gateway_order_id: str) -> Order | None:
        return self.db.query(Order).filter(Order.gateway_order_id == gateway_order_id).first()

    def list_by_settlement_id(self, settlement_id: str) -> list[Order]:
        return self.db.query(Order).filter(Order.settlement_id == settlement_id).all()

    def get_items(self, order_id: UUID) -> list[OrderItem]:
        return (
            self.db.query(OrderItem)
            .filter(OrderItem.order_id == order_id)
            .order_by(OrderItem.position.asc())
            .all()
        )

    def get_events(self, order_id: UUID) -> list[OrderStatusEvent]:
        return (
            self.db.query(OrderStatusEvent)
            .filter(OrderStatusEvent.order_id == order_id)
            .order_by(OrderStatusEvent.created_at.asc())
            .all()
        )

    def find_paid_since(self, user_id: UUID, since: datetime) -> Order | None:
        """Latest paid, non-cancelled order placed by the user at or after ``since``."""
        return (
            self.db.query(Order)
            .filter(
                Order.user_id == user_id,
                Order.payment_status == OrderPaymentStatus.PAID.value,
                Order.status != OrderStatus.CANCELLED.value,
                Order.created_at >= since,
            )
            .order_by(Order.created_at.desc())
            .first()
        )

    def paid_spend_since(self, user_id: UUID, since: datetime) -> int:
        """Net merchandise spend (subtotal less discounts) on paid orders."""
        total = (
            self.db.query(
                func.coalesce(
                    func.sum(Order.subtotal_subunits - Order.discount_total_subunits), 0
                )
            )
            .filter(
                Order.user_id == user_id,
                Order.payment_status == OrderPaymentStatus.PAID.value,
                Order.status != OrderStatus.CANCELLED.value,
                Order.created_at >= since,
            )
            .scalar()
        )
        return int(total or 0)

    def list_by_user(self, user_id: UUID, skip: int = 0, limit: int = 50) -> list[Order]:
        return (
            self.db.query(Order)
            .filter(Order.user_id == user_id)
            .order_by(Order.created_at.desc())
            .offset(skip)
            .limit(limit)
            .all()
        )

    def get_paginated(
        self,
        skip: int = 0,
        limit: int = 50,
        status: str | None = None,
        search: str | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
    ) -> tuple[list[tuple[Order, User | None]], int]:
        query = self.db.query(Order, User).outerjoin(User, User.id == Order.user_id)
        if status:
            query = query.filter(Order.status == status)
        if search:
            pattern = f"%{search.strip()}%"
            query = query.filter(
                or_(
                    Order.order_ref.ilike(pattern),
                    User.name.ilike(pattern),
                    User.mobile.ilike(pattern),
                )
            )
        if date_from is not None:
            query = query.filter(Order.created_at >= date_from)
        if date_to is not None:
            query = query.filter(Order.created_at <= date_to)
        total = query.count()
        rows = query.order_by(Order.created_at.desc()).offset(skip).limit(limit).all()
        return [(order, user) for order, user in rows], total

    def metrics(self) -> dict[str, Any]:
        counts = dict(
            self.db.query(Order.status, func.count(Order.id)).group_by(Order.status).all()
        )
        revenue = (
            self.db.query(func.coalesce(func.sum(Order.total_subunits), 0))
            .filter(
                Order.payment_status == OrderPaymentStatus.PAID.value,
                Order.status != OrderStatus.CANCELLED.value,
            )
            .scalar()
        )
        return {
            "total_orders": int(sum(counts.values())),
            "by_status": {status.value: int(counts.get(status.value, 0)) for status in OrderStatus},
            "revenue_subunits": int(revenue or 0),
        }

    def mark_stale_confirmed_as_pending(self, created_before: datetime) -> list[UUID]:
        """Move confirmed orders placed before the cutoff back to pending. Commits."""
        orders = (
            self.db.query(Order)
            .filter(
                Order.status == OrderStatus.CONFIRMED.value,
                Order.created_at < created_before,
            )
            .all()
        )
        ids = []
        for order in orders:
            order.status = OrderStatus.PENDING.value  # type: ignore[assignment]
            self.add_event(order.id, OrderStatus.PENDING.value, "Awaiting fulfilment")
            ids.append(order.id)
        self.db.commit()
        return ids
