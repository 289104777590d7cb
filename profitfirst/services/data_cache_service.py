"""
Freshness cache service

Decides whether source data for an (owner, data type, date range) key must
be refetched, and reads/writes the cached payloads. Store failures are
logged and treated as a miss; nothing here raises into the request path.
"""
import asyncio
from datetime import datetime, timedelta
from typing import Any, Callable, Optional, Set

from profitfirst.config import get_settings
from profitfirst.exceptions import CacheUnavailable
from profitfirst.models.cached_data import CacheStatus, DataType
from profitfirst.utils.cache import (
    CacheRecord,
    DatabaseCacheStore,
    InMemoryCacheStore,
    utc_now,
)
from profitfirst.utils.dates import DateRange
from profitfirst.utils.logger import log


class DataCacheService:
    """
    Async facade over a cache store.

    Store calls run in a worker thread (asyncio.to_thread) so the database
    store never blocks the event loop. ``clock`` returns an aware UTC
    datetime and can be replaced in tests.
    """

    def __init__(self, store, clock: Callable[[], datetime] = utc_now):
        self.store = store
        self.clock = clock
        self._pending: Set[asyncio.Task] = set()

    async def _read(self, owner_id: str, data_type: DataType, date_range: DateRange) -> Optional[CacheRecord]:
        try:
            return await asyncio.to_thread(self.store.read, owner_id, data_type, date_range)
        except CacheUnavailable as e:
            log.warning(f"Cache read failed for {owner_id}/{DataType(data_type).value}, treating as miss: {e}")
            return None
        except Exception as e:
            log.warning(f"Unexpected cache read error for {owner_id}/{DataType(data_type).value}: {e}")
            return None

    async def get_record(self, owner_id: str, data_type: DataType, date_range: DateRange) -> Optional[CacheRecord]:
        return await self._read(owner_id, data_type, date_range)

    async def get(self, owner_id: str, data_type: DataType, date_range: DateRange) -> Optional[Any]:
        """Cached payload for the exact key, or None."""
        record = await self._read(owner_id, data_type, date_range)
        return None if record is None else record.payload

    async def should_refresh(
        self,
        owner_id: str,
        data_type: DataType,
        date_range: DateRange,
        ttl_minutes: Optional[int] = None,
        failed_ttl_minutes: Optional[int] = None,
    ) -> bool:
        """
        True when no entry exists for the exact key or its last sync is older
        than the TTL. Entries recording a failed fetch use the shorter of the
        two TTLs.
        """
        settings = get_settings()
        if ttl_minutes is None:
            ttl_minutes = settings.dashboard_cache_ttl_minutes
        if failed_ttl_minutes is None:
            failed_ttl_minutes = settings.failed_source_ttl_minutes
        record = await self._read(owner_id, data_type, date_range)
        if record is None:
            return True
        if record.status == CacheStatus.FAILED:
            ttl_minutes = min(ttl_minutes, failed_ttl_minutes)
        age = self.clock() - record.last_synced_at
        return age > timedelta(minutes=ttl_minutes)

    async def set(
        self,
        owner_id: str,
        data_type: DataType,
        date_range: DateRange,
        payload: Any,
        status: CacheStatus = CacheStatus.SUCCESS,
    ) -> bool:
        """Overwrite the entry for the key. Returns False (logged) on store failure."""
        record = CacheRecord(
            owner_id=owner_id,
            data_type=DataType(data_type),
            date_range=date_range,
            payload=payload,
            last_synced_at=self.clock(),
            status=CacheStatus(status),
        )
        try:
            await asyncio.to_thread(self.store.write, record)
        except Exception as e:
            log.error(f"Cache write failed for {owner_id}/{record.data_type.value} {date_range.key()}: {e}")
            return False
        log.debug(f"Cached {record.data_type.value} for {owner_id} {date_range.key()} ({record.status.value})")
        return True

    def schedule_set(
        self,
        owner_id: str,
        data_type: DataType,
        date_range: DateRange,
        payload: Any,
        status: CacheStatus = CacheStatus.SUCCESS,
    ) -> asyncio.Task:
        """Fire-and-forget set(); the caller does not wait for the write."""
        task = asyncio.create_task(self.set(owner_id, data_type, date_range, payload, status))
        # Keep a reference until done so the task is not garbage collected mid-write
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """Wait for detached writes (shutdown and tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def purge_older_than(self, days: int) -> int:
        """Delete entries last synced more than ``days`` ago. Returns rows removed (0 on failure)."""
        cutoff = self.clock() - timedelta(days=days)
        try:
            removed = await asyncio.to_thread(self.store.delete_older_than, cutoff)
        except Exception as e:
            log.error(f"Cache purge failed: {e}")
            return 0
        log.info(f"Purged {removed} cache entries older than {days} days")
        return removed


def build_cache_service(backend: Optional[str] = None) -> DataCacheService:
    """Construct the service for the configured backend ("memory" or "database")."""
    backend = (backend or get_settings().cache_backend).lower()
    if backend == "memory":
        store = InMemoryCacheStore()
    elif backend == "database":
        store = DatabaseCacheStore()
    else:
        raise ValueError(f"Unknown cache backend: {backend}")
    log.info(f"Dashboard cache backend: {backend}")
    return DataCacheService(store)
