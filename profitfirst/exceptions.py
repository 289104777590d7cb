"""
Error taxonomy for the dashboard pipeline

Per-source errors are caught at the pipeline boundary and logged; only
TotalFailure is allowed to reach the caller.
"""
from typing import Optional


class SourceError(Exception):
    """Base class for failures raised by a source client."""

    def __init__(self, source: str, message: str, status_code: Optional[int] = None):
        self.source = source
        self.status_code = status_code
        super().__init__(f"{source}: {message}")


class TransientSourceError(SourceError):
    """Network error, timeout, rate limit or 5xx. Retried with backoff."""


class FatalSourceError(SourceError):
    """Auth/config error (4xx, missing credentials). Never retried."""


class CacheUnavailable(Exception):
    """The cache store could not be read or written. Always treated as a miss."""


class AggregationInputMissing(Exception):
    """A source produced no data for this request; aggregation used zeros."""

    def __init__(self, source: str, reason: str):
        self.source = source
        self.reason = reason
        super().__init__(f"{source} unavailable: {reason}")

    def to_dict(self) -> dict:
        return {"source": self.source, "reason": self.reason}


class TotalFailure(Exception):
    """No order data could be obtained from the source, the cache or the narrower retry."""


class InvalidDateRange(ValueError):
    """Date range input could not be parsed or has start after end."""
