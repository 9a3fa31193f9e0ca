import logging
from typing import Any
from uuid import UUID

from arq import cron

from app.core.database import SessionLocal
from app.repositories.order_repository import OrderRepository
from app.repositories.user_repository import UserRepository
from app.services.email_service import EmailService
from app.services.order_service import OrderService
from app.services.payment_gateway import get_payment_gateway
from app.services.payment_service import PaymentService
from app.services.recovery_scheduler import recovery_scheduler
from app.tasks import redis_settings

logger = logging.getLogger(__name__)


async def startup(ctx: dict[str, Any]) -> None:
    """Start the recovery and maintenance interval loops inside the worker."""
    recovery_scheduler.start()
    ctx["recovery_scheduler"] = recovery_scheduler


async def shutdown(ctx: dict[str, Any]) -> None:
    await recovery_scheduler.stop()


async def run_recovery_pass_task(
    ctx: dict[str, Any], limit: int | None = None, max_batches: int | None = None
) -> dict[str, Any]:
    """Background task: process every due recovery journey now.

    Shares the scheduler's lock, so it waits for a pass already in flight.
    """
    stats = await recovery_scheduler.run_recovery_pass(limit=limit, max_batches=max_batches)
    logger.info(
        "Recovery pass: due=%d sent=%d failed=%d recovered=%d expired=%d",
        stats.due,
        stats.sent,
        stats.failed,
        stats.recovered,
        stats.expired,
    )
    return stats.to_dict()


async def run_recovery_maintenance_task(ctx: dict[str, Any]) -> dict[str, int]:
    """Background task: promote quiet carts and close finished journeys."""
    summary = await recovery_scheduler.run_maintenance_pass()
    return summary.model_dump()


async def expire_payment_attempts_task(ctx: dict[str, Any]) -> int:
    """Background task: expire unfinished payment attempts and release their stock.

    Runs every 5 minutes.
    """
    db = SessionLocal()
    try:
        return PaymentService(db, get_payment_gateway()).expire_stale_attempts()
    finally:
        db.close()


async def mark_stale_orders_pending_task(ctx: dict[str, Any]) -> int:
    """Background task: move confirmed orders from previous days to pending.

    Runs daily.
    """
    db = SessionLocal()
    try:
        return OrderService(db).mark_stale_confirmed_as_pending()
    finally:
        db.close()


async def send_order_confirmation_task(ctx: dict[str, Any], order_id: str) -> bool:
    """Background task: email the order confirmation to the customer."""
    db = SessionLocal()
    try:
        order = OrderRepository(db).get_by_id(UUID(order_id))
        if order is None:
            logger.warning("Order %s not found, skipping confirmation email", order_id)
            return False
        user = UserRepository(db).get_by_id(order.user_id)  # type: ignore[arg-type]
        if user is None:
            return False
        return await EmailService().send_order_confirmation(order, user)
    finally:
        db.close()


class WorkerSettings:
    functions = [
        run_recovery_pass_task,
        run_recovery_maintenance_task,
        expire_payment_attempts_task,
        mark_stale_orders_pending_task,
        send_order_confirmation_task,
    ]
    cron_jobs = [
        cron(
            expire_payment_attempts_task,
            minute={0, 5, 10, 15, 20, 25, 30, 35, 40, 45, 50, 55},
        ),
        cron(mark_stale_orders_pending_task, hour=0, minute=5),  # daily just after midnight
    ]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = redis_settings
