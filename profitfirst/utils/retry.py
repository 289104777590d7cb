"""
Backoff and retry classification for source API calls.

TransientSourceError and network failures are retried; FatalSourceError
(bad credentials, 4xx) never is. The retry loop itself lives in
BaseConnector._retry_operation.
"""
import asyncio
import random
from typing import Tuple, Type

import aiohttp

from profitfirst.exceptions import FatalSourceError, TransientSourceError

RETRYABLE_EXCEPTIONS: Tuple[Type[BaseException], ...] = (
    TransientSourceError,
    aiohttp.ClientConnectionError,
    asyncio.TimeoutError,
    TimeoutError,
    ConnectionError,
)

RETRYABLE_STATUS_CODES = (429, 500, 502, 503, 504)


def calculate_backoff(
    attempt: int,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    jitter: bool = True
) -> float:
    """
    Seconds to wait before retry number ``attempt`` (1-indexed).

    base_delay * exponential_base ** (attempt - 1), capped at max_delay, plus
    up to 25% random jitter so concurrent owners do not retry in lockstep.
    """
    delay = min(base_delay * (exponential_base ** (attempt - 1)), max_delay)
    if jitter:
        delay += delay * random.uniform(0, 0.25)
    return delay


def is_retryable_error(error: BaseException) -> bool:
    """Fatal errors never retry; otherwise match the exception type, then the HTTP status, then the message."""
    if isinstance(error, FatalSourceError):
        return False
    if isinstance(error, RETRYABLE_EXCEPTIONS):
        return True

    status = getattr(error, "status", None) or getattr(error, "status_code", None)
    if isinstance(status, int):
        return status in RETRYABLE_STATUS_CODES

    message = str(error).lower()
    if "rate limit" in message or "too many requests" in message or "timed out" in message:
        return True
    return any(str(code) in message for code in RETRYABLE_STATUS_CODES)
