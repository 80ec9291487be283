"""APScheduler setup for the periodic auction expiry sweep."""

from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from models.errors import StorageError
from models.operations.auctions import auction_sweep_expired
from utils import log

logger = log.get_logger(__name__)

_scheduler: Optional[AsyncIOScheduler] = None


async def expiry_sweep_job():
    """Close every open item whose deadline has passed."""
    try:
        closed = await auction_sweep_expired()
    except StorageError as e:
        logger.error(f"Expiry sweep failed: {e}")
        return
    if closed:
        logger.info(f"Expiry sweep closed {closed} item(s)")


def init_scheduler(interval_seconds: int) -> AsyncIOScheduler:
    """Start the APScheduler with the expiry sweep job."""
    global _scheduler
    _scheduler = AsyncIOScheduler()
    _scheduler.add_job(
        expiry_sweep_job,
        trigger=IntervalTrigger(seconds=interval_seconds),
        id="auction_expiry_sweep",
        name="Auction Expiry Sweep",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    _scheduler.start()
    logger.info(f"APScheduler started with expiry sweep every {interval_seconds}s")
    return _scheduler


def shutdown_scheduler():
    """Gracefully shut down the scheduler."""
    global _scheduler
    if _scheduler:
        _scheduler.shutdown(wait=False)
        _scheduler = None
        logger.info("APScheduler shut down")
