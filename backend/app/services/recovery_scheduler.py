"""Interval loops driving recovery passes and maintenance sweeps.

Both loops run inside whichever process starts them (the arq worker, or the
API when ``RECOVERY_SCHEDULER_IN_API`` is set). A pass never overlaps with
another pass of the same kind.
"""

import asyncio
import logging
from collections.abc import Callable

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.database import open_session
from app.schemas.recovery import MaintenanceSummary
from app.services.maintenance_service import RecoveryMaintenanceService
from app.services.notification_service import NotificationDispatcherBase
from app.services.payment_gateway import PaymentGatewayBase
from app.services.recovery_service import AbandonedCartRecoveryService, RecoveryStats

logger = logging.getLogger(__name__)


class RecoveryScheduler:
    def __init__(
        self,
        session_factory: Callable[[], Session] = open_session,
        gateway: PaymentGatewayBase | None = None,
        dispatcher: NotificationDispatcherBase | None = None,
    ):
        self.session_factory = session_factory
        self.gateway = gateway
        self.dispatcher = dispatcher
        self._recovery_lock = asyncio.Lock()
        self._maintenance_lock = asyncio.Lock()
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    async def run_recovery_pass(
        self, limit: int | None = None, max_batches: int | None = None
    ) -> RecoveryStats:
        async with self._recovery_lock:
            db = self.session_factory()
            try:
                service = AbandonedCartRecoveryService(db, self.gateway, self.dispatcher)
                return await service.run_until_clear(limit=limit, max_batches=max_batches)
            finally:
                db.close()

    async def run_maintenance_pass(self) -> MaintenanceSummary:
        async with self._maintenance_lock:
            db = self.session_factory()
            try:
                return RecoveryMaintenanceService(db).run()
            finally:
                db.close()

    def start(self) -> None:
        if self.running:
            return
        self._tasks = [
            asyncio.create_task(self._recovery_loop(), name="recovery-loop"),
            asyncio.create_task(self._maintenance_loop(), name="recovery-maintenance-loop"),
        ]
        logger.info(
            "Recovery scheduler started (interval=%ss, maintenance=%ss)",
            settings.recovery_interval_seconds,
            settings.RECOVERY_MAINTENANCE_INTERVAL_SECONDS,
        )

    async def stop(self) -> None:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Recovery scheduler stopped")

    async def _recovery_loop(self) -> None:
        await asyncio.sleep(max(0, settings.RECOVERY_BOOTSTRAP_DELAY_SECONDS))
        while True:
            try:
                await self.run_recovery_pass()
            except Exception:
                logger.exception("Recovery pass failed")
            await asyncio.sleep(settings.recovery_interval_seconds)

    async def _maintenance_loop(self) -> None:
        while True:
            try:
                await self.run_maintenance_pass()
            except Exception:
                logger.exception("Recovery maintenance failed")
            await asyncio.sleep(max(1, settings.RECOVERY_MAINTENANCE_INTERVAL_SECONDS))


recovery_scheduler = RecoveryScheduler()


def get_recovery_scheduler() -> RecoveryScheduler:
    return recovery_scheduler
