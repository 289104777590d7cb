"""
Scheduler for cache housekeeping

Uses APScheduler to purge cache entries whose last sync is older than
``cache_purge_days``. Dashboard data itself is fetched on demand, not on a
schedule.
"""
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from profitfirst.config import get_settings
from profitfirst.services.data_cache_service import DataCacheService
from profitfirst.utils.dates import IST
from profitfirst.utils.logger import log

settings = get_settings()
scheduler = AsyncIOScheduler()

_cache_service: Optional[DataCacheService] = None


async def purge_stale_cache() -> int:
    """Delete stale cache entries (daily)"""
    if _cache_service is None:
        log.warning("Cache purge skipped: no cache service registered")
        return 0
    log.info("Starting cache purge...")
    removed = await _cache_service.purge_older_than(settings.cache_purge_days)
    log.info(f"Cache purge completed: {removed} entries removed")
    return removed


def setup_scheduler(cache_service: DataCacheService):
    """
    Configure the scheduler.

    Cron times are Asia/Kolkata (IST).

    - Cache purge: daily at ``cache_purge_hour``:00
    """
    global _cache_service
    _cache_service = cache_service

    scheduler.add_job(
        purge_stale_cache,
        trigger=CronTrigger(hour=settings.cache_purge_hour, minute=0, timezone=IST),
        id='cache_purge',
        name='Dashboard Cache Purge',
        replace_existing=True,
        max_instances=1
    )


def start_scheduler(cache_service: DataCacheService):
    """Start the scheduler"""
    setup_scheduler(cache_service)
    scheduler.start()
    log.info("Scheduler started")


def stop_scheduler():
    """Stop the scheduler"""
    if scheduler.running:
        scheduler.shutdown()
    log.info("Scheduler stopped")
