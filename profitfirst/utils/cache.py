"""
Cache stores

Two layers live here:

- a module-level TTL cache (get_cached/set_cached) for whole computed
  responses such as the monthly forecast;
- the freshness-cache stores behind DataCacheService: InMemoryCacheStore
  for tests and single-process runs, DatabaseCacheStore backed by the
  cached_data table. Both raise CacheUnavailable on any store failure and
  keep last-write-wins semantics for concurrent writers.
"""
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Tuple

import pytz
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from profitfirst.exceptions import CacheUnavailable
from profitfirst.models.cached_data import CachedData, CacheStatus, DataType
from profitfirst.utils.dates import DateRange

_cache: dict[str, tuple[float, Any]] = {}
_MISS = object()


def get_cached(key: str):
    """Return cached value if still valid, else _MISS sentinel."""
    now = time.time()
    if key in _cache:
        expires, value = _cache[key]
        if now < expires:
            return value
    return _MISS


def set_cached(key: str, value: Any, seconds: int = 300):
    """Store a value in cache with TTL."""
    _cache[key] = (time.time() + seconds, value)


def clear_cache():
    """Clear all cached values."""
    _cache.clear()


def clear_prefix(prefix: str) -> int:
    """Clear entries whose key starts with prefix (e.g. one owner's forecast)."""
    keys_to_remove = [k for k in _cache if k.startswith(prefix)]
    for k in keys_to_remove:
        del _cache[k]
    return len(keys_to_remove)


def utc_now() -> datetime:
    return datetime.now(pytz.UTC)


@dataclass(frozen=True)
class CacheRecord:
    owner_id: str
    data_type: DataType
    date_range: DateRange
    payload: Any
    last_synced_at: datetime  # aware, UTC
    status: CacheStatus = CacheStatus.SUCCESS


CacheKey = Tuple[str, str, str]


def _key(owner_id: str, data_type: DataType, date_range: DateRange) -> CacheKey:
    return (owner_id, DataType(data_type).value, date_range.key())


class InMemoryCacheStore:
    """Thread-safe dict-backed store."""

    def __init__(self, max_entries: int = 1000):
        self._store: Dict[CacheKey, CacheRecord] = {}
        self._lock = threading.Lock()
        self._max_entries = max_entries

    def read(self, owner_id: str, data_type: DataType, date_range: DateRange) -> Optional[CacheRecord]:
        with self._lock:
            return self._store.get(_key(owner_id, data_type, date_range))

    def write(self, record: CacheRecord) -> None:
        key = _key(record.owner_id, record.data_type, record.date_range)
        with self._lock:
            # If at limit, evict the entry synced longest ago
            if key not in self._store and len(self._store) >= self._max_entries:
                oldest_key = min(self._store, key=lambda k: self._store[k].last_synced_at)
                del self._store[oldest_key]
            self._store[key] = record

    def delete_older_than(self, cutoff: datetime) -> int:
        with self._lock:
            keys = [k for k, r in self._store.items() if r.last_synced_at < cutoff]
            for k in keys:
                del self._store[k]
            return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)


class DatabaseCacheStore:
    """SQLAlchemy store over the cached_data table. Blocking; call from a worker thread."""

    def __init__(self, session_factory: Optional[Callable] = None):
        if session_factory is None:
            from profitfirst.models.base import SessionLocal
            session_factory = SessionLocal
        self._session_factory = session_factory

    @staticmethod
    def _to_naive_utc(dt: datetime) -> datetime:
        if dt.tzinfo is None:
            return dt
        return dt.astimezone(pytz.UTC).replace(tzinfo=None)

    def read(self, owner_id: str, data_type: DataType, date_range: DateRange) -> Optional[CacheRecord]:
        db = self._session_factory()
        try:
            row = db.query(CachedData).filter(
                CachedData.owner_id == owner_id,
                CachedData.data_type == DataType(data_type).value,
                CachedData.range_start == date_range.start,
                CachedData.range_end == date_range.end,
            ).first()
            if row is None:
                return None
            return CacheRecord(
                owner_id=row.owner_id,
                data_type=DataType(row.data_type),
                date_range=date_range,
                payload=row.payload,
                last_synced_at=pytz.UTC.localize(row.last_synced_at),
                status=CacheStatus(row.status or CacheStatus.SUCCESS.value),
            )
        except (SQLAlchemyError, ValueError) as e:
            raise CacheUnavailable(f"cache read failed: {e}") from e
        finally:
            db.close()

    def write(self, record: CacheRecord) -> None:
        try:
            self._upsert(record)
        except IntegrityError:
            # A concurrent writer inserted the same key first; overwrite it
            try:
                self._upsert(record)
            except SQLAlchemyError as e:
                raise CacheUnavailable(f"cache write failed: {e}") from e
        except SQLAlchemyError as e:
            raise CacheUnavailable(f"cache write failed: {e}") from e

    def _upsert(self, record: CacheRecord) -> None:
        db = self._session_factory()
        try:
            row = db.query(CachedData).filter(
                CachedData.owner_id == record.owner_id,
                CachedData.data_type == DataType(record.data_type).value,
                CachedData.range_start == record.date_range.start,
                CachedData.range_end == record.date_range.end,
            ).first()
            if row is None:
                row = CachedData(
                    owner_id=record.owner_id,
                    data_type=DataType(record.data_type).value,
                    range_start=record.date_range.start,
                    range_end=record.date_range.end,
                )
                db.add(row)
            row.payload = record.payload
            row.status = CacheStatus(record.status).value
            row.last_synced_at = self._to_naive_utc(record.last_synced_at)
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            raise
        finally:
            db.close()

    def delete_older_than(self, cutoff: datetime) -> int:
        db = self._session_factory()
        try:
            deleted = db.query(CachedData).filter(
                CachedData.last_synced_at < self._to_naive_utc(cutoff)
            ).delete(synchronize_session=False)
            db.commit()
            return deleted
        except SQLAlchemyError as e:
            db.rollback()
            raise CacheUnavailable(f"cache purge failed: {e}") from e
        finally:
            db.close()
