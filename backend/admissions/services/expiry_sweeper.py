"""
Expiry Sweep — Background task that expires overdue pending payments.

Lazy expiry on access stays in place; the sweep only makes overdue payments
visible as ``expired`` without anyone touching them. Disabled when
EXPIRY_SWEEP_INTERVAL_SECONDS is 0.
"""
import asyncio
from typing import Optional

import structlog

from admissions.config import get_settings
from admissions.database import SessionLocal
from admissions.services.payment_service import PaymentOrchestrator
from admissions.services.gateway_client import get_gateway

logger = structlog.get_logger(component="expiry_sweep")


def sweep_once(session_factory=SessionLocal) -> int:
    """Run one sweep in a fresh database session."""
    db = session_factory()
    try:
        return PaymentOrchestrator(db, get_gateway()).expire_overdue()
    finally:
        db.close()


async def expiry_sweep_loop(interval_seconds: int) -> None:
    logger.info("Expiry sweep started", interval=interval_seconds)
    while True:
        try:
            expired = await asyncio.to_thread(sweep_once)
            if expired:
                logger.info("Expiry sweep cycle complete", expired=expired)
        except Exception as e:
            logger.error("Expiry sweep error", error=str(e))

        await asyncio.sleep(interval_seconds)


class ExpirySweeper:
    """Owns the sweep task: started on application startup, cancelled on shutdown."""

    def __init__(self):
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, interval_seconds: Optional[int] = None) -> bool:
        interval = get_settings().EXPIRY_SWEEP_INTERVAL_SECONDS if interval_seconds is None else interval_seconds
        if interval <= 0:
            logger.info("Expiry sweep disabled via config")
            return False
        if self.running:
            return True
        self._task = asyncio.get_running_loop().create_task(expiry_sweep_loop(interval))
        return True

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Expiry sweep stopped")


sweeper = ExpirySweeper()
