"""Periodic hold expiry, runs ReservationService.expire_stale_holds on an interval."""
import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from application.services import ReservationService

logger = logging.getLogger(__name__)

EXPIRE_HOLDS_JOB_ID = "expire_stale_holds"


async def run_expire_holds_job(service: ReservationService) -> None:
    try:
        expired = await service.expire_stale_holds()
    except Exception as e:
        logger.warning("Hold expiry sweep failed: %s", e, exc_info=True)
        return
    logger.debug("Hold expiry sweep cancelled %s holds", expired)


def start_hold_sweeper(service: ReservationService, interval_seconds: int) -> Optional[AsyncIOScheduler]:
    """Start the sweep scheduler; must be called with a running event loop"""
    if interval_seconds <= 0:
        logger.info("Hold expiry sweep disabled")
        return None

    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        run_expire_holds_job,
        "interval",
        seconds=interval_seconds,
        args=[service],
        id=EXPIRE_HOLDS_JOB_ID,
        max_instances=1,
        coalesce=True,
    )
    scheduler.start()
    logger.info("Hold expiry sweep every %ss", interval_seconds)
    return scheduler
