"""
Base connector class for all data sources
"""
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Tuple
from datetime import datetime
import asyncio
import json
import time

import aiohttp

from profitfirst.config import get_settings
from profitfirst.exceptions import FatalSourceError, TransientSourceError
from profitfirst.models.records import OwnerCredentials
from profitfirst.utils.dates import DateRange
from profitfirst.utils.logger import log
from profitfirst.utils.retry import calculate_backoff, is_retryable_error

settings = get_settings()


class BaseConnector(ABC):
    """
    Base class for the dashboard source connectors.

    Subclasses implement _fetch(); callers use fetch(), which checks
    credentials and retries transient failures with exponential backoff.
    Timeouts are applied by the caller, not here.
    """

    # Retry configuration (can be overridden by subclasses or instances)
    RETRY_MAX_ATTEMPTS = 3
    RETRY_BASE_DELAY = 2.0  # seconds
    RETRY_MAX_DELAY = 30.0  # seconds

    # OwnerCredentials attributes that must be non-empty
    REQUIRED_CREDENTIALS: Tuple[str, ...] = ()

    # Per-request HTTP timeout; the pipeline's wait_for bounds the whole fetch
    REQUEST_TIMEOUT_SECONDS = 30.0

    def __init__(self, name: str, session_factory: Optional[Callable[[], aiohttp.ClientSession]] = None):
        self.name = name
        self.session_factory = session_factory
        self.RETRY_MAX_ATTEMPTS = settings.source_retry_max_attempts
        self.RETRY_BASE_DELAY = settings.source_retry_base_delay
        self.RETRY_MAX_DELAY = settings.source_retry_max_delay
        self.last_fetch = None
        self.fetch_count = 0
        self.error_count = 0
        self.retry_count = 0  # Total retries across all fetches

    @abstractmethod
    async def _fetch(self, credentials: OwnerCredentials, date_range: DateRange) -> Any:
        """Fetch and normalize records for the range. Must drain all pages."""
        pass

    async def fetch(self, credentials: OwnerCredentials, date_range: DateRange) -> Any:
        """
        Fetch normalized records for (credentials, range).

        Raises:
            FatalSourceError: missing credentials, auth or other 4xx errors
            TransientSourceError: network/5xx/rate-limit errors left after retrying
        """
        self._check_credentials(credentials)

        log.info(f"Fetching {self.name} for {credentials.owner_id} {date_range.key()}")
        start_time = time.time()
        retry_stats = {"retries": 0, "total_delay_seconds": 0.0, "errors": []}

        try:
            result = await self._retry_operation(
                lambda: self._fetch(credentials, date_range),
                operation_name="fetch",
                retry_stats=retry_stats,
            )
        except Exception:
            self.error_count += 1
            log.error(
                f"{self.name} fetch failed after {retry_stats['retries']} retries "
                f"({time.time() - start_time:.2f}s)"
            )
            raise

        self.last_fetch = datetime.utcnow()
        self.fetch_count += 1
        elapsed = time.time() - start_time

        if retry_stats["retries"] > 0:
            log.info(
                f"{self.name} fetch completed in {elapsed:.2f}s "
                f"(after {retry_stats['retries']} retries, {retry_stats['total_delay_seconds']:.1f}s delay)"
            )
        else:
            log.info(f"{self.name} fetch completed in {elapsed:.2f}s")

        return result

    def _check_credentials(self, credentials: OwnerCredentials) -> None:
        missing = [attr for attr in self.REQUIRED_CREDENTIALS if not getattr(credentials, attr, None)]
        if missing:
            raise FatalSourceError(self.name, f"missing credentials: {', '.join(missing)}")

    async def _retry_operation(
        self,
        operation,
        operation_name: str = "operation",
        retry_stats: Optional[Dict] = None
    ) -> Any:
        """
        Execute an operation with retry logic.

        Args:
            operation: Async callable to execute
            operation_name: Name for logging
            retry_stats: Dict to track retry statistics (mutated in place)

        Returns:
            Result of the operation
        """
        for attempt in range(1, self.RETRY_MAX_ATTEMPTS + 1):
            try:
                result = operation()

                if asyncio.iscoroutine(result):
                    result = await result

                if attempt > 1:
                    self.retry_count += (attempt - 1)

                return result

            except Exception as e:
                if attempt >= self.RETRY_MAX_ATTEMPTS or not is_retryable_error(e):
                    if retry_stats is not None:
                        retry_stats["errors"].append(f"{type(e).__name__}: {str(e)}")
                    raise

                delay = calculate_backoff(
                    attempt,
                    base_delay=self.RETRY_BASE_DELAY,
                    max_delay=self.RETRY_MAX_DELAY
                )

                if retry_stats is not None:
                    retry_stats["retries"] += 1
                    retry_stats["total_delay_seconds"] += delay
                    retry_stats["errors"].append(f"{type(e).__name__}: {str(e)}")

                log.warning(
                    f"{self.name} {operation_name} attempt {attempt} failed: {e}. "
                    f"Retrying in {delay:.1f}s..."
                )

                await asyncio.sleep(delay)

        raise RuntimeError("Retry exhausted")

    # ----------------------------------------------------------------- HTTP

    def _session(self) -> aiohttp.ClientSession:
        if self.session_factory is not None:
            return self.session_factory()
        return aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.REQUEST_TIMEOUT_SECONDS)
        )

    async def _request_json(
        self,
        session: aiohttp.ClientSession,
        method: str,
        url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """
        Perform one HTTP request and decode the JSON body.

        429 and 5xx become TransientSourceError, other 4xx FatalSourceError.
        Network errors and timeouts are transient.
        """
        try:
            async with session.request(method, url, headers=headers, params=params, json=payload) as response:
                status = response.status
                body = await response.text()
        except asyncio.TimeoutError as e:
            raise TransientSourceError(self.name, f"request timed out: {url}") from e
        except aiohttp.ClientError as e:
            raise TransientSourceError(self.name, f"network error: {e}") from e

        if status == 429 or status >= 500:
            raise TransientSourceError(self.name, f"HTTP {status}: {body[:200]}", status_code=status)
        if status >= 400:
            raise FatalSourceError(self.name, f"HTTP {status}: {body[:200]}", status_code=status)

        if not body:
            return {}
        try:
            return json.loads(body)
        except ValueError as e:
            raise TransientSourceError(self.name, f"invalid JSON response: {e}") from e
