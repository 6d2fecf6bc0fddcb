"""
Periodic cache maintenance on an APScheduler AsyncIOScheduler.
Sweeps expired and malformed entries out of the result cache.
Embedded in the FastAPI app lifespan.
"""

from __future__ import annotations

import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from location_resolver.cache import ResultCache
from location_resolver.config import get_settings

logger = logging.getLogger(__name__)

_scheduler: Optional[AsyncIOScheduler] = None


async def _cleanup_job(cache: ResultCache) -> None:
    """Sweep expired entries; failures are logged and the next run proceeds."""
    try:
        removed = await cache.cleanup()
        logger.info("Scheduled cache cleanup removed %d entries", removed)
    except Exception as e:
        logger.error("Scheduled cache cleanup failed: %s", e, exc_info=True)


def create_scheduler(cache: ResultCache) -> AsyncIOScheduler:
    """Build the scheduler with the cache cleanup job registered."""
    global _scheduler
    settings = get_settings().scheduler

    _scheduler = AsyncIOScheduler()
    _scheduler.add_job(
        _cleanup_job,
        trigger=IntervalTrigger(minutes=settings.cleanup_interval_minutes),
        args=[cache],
        id="location_cache_cleanup",
        name="Location cache cleanup",
        replace_existing=True,
        max_instances=1,  # prevent overlapping sweeps
    )

    logger.info("Scheduler configured: cache cleanup every %d minutes",
                settings.cleanup_interval_minutes)
    return _scheduler


def start_scheduler(cache: ResultCache) -> None:
    """Start the scheduler (non-blocking). Must be called inside a running loop."""
    settings = get_settings().scheduler
    if not settings.enabled:
        logger.info("Scheduler disabled via config")
        return

    scheduler = create_scheduler(cache)
    scheduler.start()
    logger.info("Scheduler started")


def stop_scheduler() -> None:
    """Shut down without waiting for a running sweep."""
    global _scheduler
    if _scheduler is not None:
        _scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
        _scheduler = None
