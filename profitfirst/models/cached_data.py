"""
Cached Source Data Model

One row per (owner, data type, exact date range). Rows are overwritten on
every refresh; staleness is judged from last_synced_at.
"""
import enum
from datetime import datetime

from sqlalchemy import Column, Integer, String, Date, DateTime, JSON, UniqueConstraint

from profitfirst.models.base import Base


class DataType(str, enum.Enum):
    ORDERS = "orders"
    ADS = "ads"
    LOGISTICS = "logistics"


class CacheStatus(str, enum.Enum):
    SUCCESS = "success"
    PARTIAL = "partial"   # sibling sources failed in the same request
    FAILED = "failed"


class CachedData(Base):
    """Serialized source payload for one owner/data-type/date-range key"""
    __tablename__ = "cached_data"
    __table_args__ = (
        UniqueConstraint("owner_id", "data_type", "range_start", "range_end", name="uq_cached_data_key"),
    )

    id = Column(Integer, primary_key=True, index=True)

    owner_id = Column(String, index=True, nullable=False)
    data_type = Column(String, index=True, nullable=False)
    range_start = Column(Date, nullable=False)
    range_end = Column(Date, nullable=False)

    payload = Column(JSON, nullable=True)
    status = Column(String, default=CacheStatus.SUCCESS.value)

    # Stored as naive UTC
    last_synced_at = Column(DateTime, index=True, nullable=False, default=datetime.utcnow)

    def __repr__(self):
        return (
            f"<CachedData {self.owner_id}/{self.data_type} "
            f"{self.range_start}..{self.range_end} @ {self.last_synced_at}>"
        )
