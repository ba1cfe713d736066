"""Background scheduler for periodic housekeeping."""
from __future__ import annotations

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from gatekeeper.db.session import Database
from gatekeeper.services.reset_tokens import purge_expired_reset_tokens

logger = logging.getLogger(__name__)

RESET_TOKEN_SWEEP_JOB_ID = "purge-expired-reset-tokens"


def create_scheduler() -> AsyncIOScheduler:
    return AsyncIOScheduler()


def schedule_reset_token_sweep(scheduler: AsyncIOScheduler, database: Database, interval_minutes: int) -> None:
    trigger = IntervalTrigger(minutes=interval_minutes)
    scheduler.add_job(
        sweep_reset_tokens,
        trigger=trigger,
        id=RESET_TOKEN_SWEEP_JOB_ID,
        args=[database],
        replace_existing=True,
    )
    logger.info("Scheduled reset token sweep every %s minutes", interval_minutes)


async def sweep_reset_tokens(database: Database) -> int:
    async with database.session() as session:
        removed = await purge_expired_reset_tokens(session)
        await session.commit()
    return removed


def start_scheduler(scheduler: AsyncIOScheduler) -> None:
    if not scheduler.running:
        scheduler.start()
        logger.info("Scheduler started")


def stop_scheduler(scheduler: AsyncIOScheduler) -> None:
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
