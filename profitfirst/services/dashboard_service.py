"""
Dashboard Pipeline

cache check -> concurrent source fetch -> order fallback chain ->
aggregate -> assemble -> detached cache write.

One snapshot per request: either every source is read from the cache or
every source is fetched fresh, so profit figures never mix cached and live
inputs. A failing source degrades to zeros and is listed in
``degradedSources``; only a total order outage raises (TotalFailure).
Ad and logistics failures are cached as well, for the shorter
``failed_source_ttl_minutes``.
"""
import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from profitfirst.config import get_settings
from profitfirst.connectors.meta_ads_connector import MetaAdsConnector
from profitfirst.connectors.shiprocket_connector import ShiprocketConnector
from profitfirst.connectors.shopify_connector import ShopifyConnector
from profitfirst.exceptions import AggregationInputMissing, TotalFailure
from profitfirst.models.cached_data import CacheStatus, DataType
from profitfirst.models.records import (
    AdReport,
    OwnerCredentials,
    RawOrder,
    RawShipment,
    orders_from_payload,
    orders_to_payload,
    shipments_from_payload,
    shipments_to_payload,
)
from profitfirst.services.aggregation_service import AggregationResult, aggregate
from profitfirst.services.dashboard_formatter import build_dashboard_response, build_forecast_response
from profitfirst.services.data_cache_service import DataCacheService
from profitfirst.services.forecast_service import ForecastService, build_monthly_history
from profitfirst.services.product_cost_service import ProductCostService
from profitfirst.utils.cache import _MISS, get_cached, set_cached
from profitfirst.utils.dates import DateRange, default_range, month_start, today_ist, trailing_months
from profitfirst.utils.logger import log

settings = get_settings()

SOURCE_NAMES = {
    DataType.ORDERS: "shopify",
    DataType.ADS: "meta_ads",
    DataType.LOGISTICS: "shiprocket",
}


@dataclass
class DashboardSnapshot:
    """Source inputs for one aggregation, all from the same read."""
    date_range: DateRange
    orders: List[RawOrder] = field(default_factory=list)
    ad_report: Optional[AdReport] = None
    shipments: Optional[List[RawShipment]] = None
    degraded: List[AggregationInputMissing] = field(default_factory=list)
    data_source: str = "live"


def _reason(error: BaseException) -> str:
    if isinstance(error, asyncio.TimeoutError):
        return "timeout"
    return str(error) or type(error).__name__


class DashboardPipeline:
    """
    Orchestrates one dashboard request.

    Connectors and the product-cost service can be replaced (tests inject
    fakes); the cache service is built once in the app lifespan and shared.
    """

    def __init__(
        self,
        cache_service: DataCacheService,
        order_source=None,
        ad_source=None,
        logistics_source=None,
        product_costs: Optional[ProductCostService] = None,
        forecast_service: Optional[ForecastService] = None,
    ):
        self.cache = cache_service
        self.order_source = order_source or ShopifyConnector()
        self.ad_source = ad_source or MetaAdsConnector()
        self.logistics_source = logistics_source or ShiprocketConnector()
        self.product_costs = product_costs or ProductCostService()
        self.forecast_service = forecast_service or ForecastService()
        self.ttl_minutes = settings.dashboard_cache_ttl_minutes
        self.timeouts = {
            DataType.ORDERS: settings.order_source_timeout_seconds,
            DataType.ADS: settings.ad_source_timeout_seconds,
            DataType.LOGISTICS: settings.logistics_source_timeout_seconds,
        }

    def _source(self, data_type: DataType):
        return {
            DataType.ORDERS: self.order_source,
            DataType.ADS: self.ad_source,
            DataType.LOGISTICS: self.logistics_source,
        }[data_type]

    def _now(self) -> datetime:
        return self.cache.clock()

    # ---------------------------------------------------------------- public

    async def run(self, credentials: OwnerCredentials, date_range: DateRange) -> Dict[str, Any]:
        """Build the full dashboard response for the range."""
        result, degraded, data_source = await self.build_result(credentials, date_range)
        return build_dashboard_response(
            result,
            degraded_sources=[d.to_dict() for d in degraded],
            data_source=data_source,
        )

    async def build_result(
        self,
        credentials: OwnerCredentials,
        date_range: DateRange,
        narrow_fallback: bool = True,
    ) -> Tuple[AggregationResult, List[AggregationInputMissing], str]:
        snapshot = await self.load_snapshot(credentials, date_range, narrow_fallback=narrow_fallback)
        costs = await asyncio.to_thread(self.product_costs.load_cost_map, credentials.owner_id)
        result = aggregate(
            snapshot.orders,
            snapshot.ad_report,
            snapshot.shipments,
            costs,
            snapshot.date_range,
        )
        return result, snapshot.degraded, snapshot.data_source

    async def prediction(self, credentials: OwnerCredentials, use_model: bool = False) -> Dict[str, Any]:
        """Monthly forecast response, cached per owner for ``forecast_cache_seconds``."""
        cache_key = f"forecast:{credentials.owner_id}:{'model' if use_model else 'stats'}"
        cached = get_cached(cache_key)
        if cached is not _MISS:
            log.info(f"Forecast cache hit for {credentials.owner_id}")
            return cached

        today = today_ist(self._now())
        months = trailing_months(today, settings.forecast_history_months)
        history_range = DateRange(months[0], month_start(today) - timedelta(days=1))

        result, _, _ = await self.build_result(credentials, history_range, narrow_fallback=False)
        history = build_monthly_history(result.daily_buckets, months)
        forecast = await self.forecast_service.forecast(history, today, use_model=use_model)

        response = build_forecast_response(history, forecast, credentials.store_url)
        set_cached(cache_key, response, seconds=settings.forecast_cache_seconds)
        return response

    # -------------------------------------------------------------- snapshot

    async def load_snapshot(
        self,
        credentials: OwnerCredentials,
        date_range: DateRange,
        narrow_fallback: bool = True,
    ) -> DashboardSnapshot:
        owner_id = credentials.owner_id
        refresh_flags = await asyncio.gather(*[
            self.cache.should_refresh(owner_id, data_type, date_range, self.ttl_minutes)
            for data_type in DataType
        ])

        if not any(refresh_flags):
            snapshot = await self._snapshot_from_cache(owner_id, date_range)
            if snapshot is not None:
                log.info(f"Dashboard cache hit for {owner_id} {date_range.key()}")
                return snapshot
            log.info(f"Dashboard cache entry vanished for {owner_id} {date_range.key()}, refetching")
        else:
            log.info(f"Dashboard cache miss/stale for {owner_id} {date_range.key()}")

        return await self._snapshot_from_sources(credentials, date_range, narrow_fallback)

    async def _snapshot_from_cache(self, owner_id: str, date_range: DateRange) -> Optional[DashboardSnapshot]:
        records = await asyncio.gather(*[
            self.cache.get_record(owner_id, data_type, date_range) for data_type in DataType
        ])
        by_type = dict(zip(DataType, records))
        if any(record is None for record in records) or by_type[DataType.ORDERS].status == CacheStatus.FAILED:
            return None

        snapshot = DashboardSnapshot(date_range=date_range, data_source="cache")
        try:
            snapshot.orders = orders_from_payload(by_type[DataType.ORDERS].payload)
            for data_type in (DataType.ADS, DataType.LOGISTICS):
                record = by_type[data_type]
                if record.status == CacheStatus.FAILED:
                    # Source failed on the last fetch; reuse the failure until it expires
                    reason = (record.payload or {}).get("error") or "unavailable"
                    snapshot.degraded.append(AggregationInputMissing(SOURCE_NAMES[data_type], reason))
                elif data_type == DataType.ADS:
                    snapshot.ad_report = AdReport.from_dict(record.payload)
                else:
                    snapshot.shipments = shipments_from_payload(record.payload)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            log.warning(f"Unreadable cache payload for {owner_id} {date_range.key()}: {e}")
            return None
        return snapshot

    async def _fetch(self, data_type: DataType, credentials: OwnerCredentials, date_range: DateRange):
        return await asyncio.wait_for(
            self._source(data_type).fetch(credentials, date_range),
            timeout=self.timeouts[data_type],
        )

    async def _fetch_secondary(
        self,
        credentials: OwnerCredentials,
        date_range: DateRange,
    ) -> Tuple[Dict[DataType, Any], Dict[DataType, str]]:
        """Ads and logistics for the range, split into results and failure reasons."""
        outcomes = await asyncio.gather(
            self._fetch(DataType.ADS, credentials, date_range),
            self._fetch(DataType.LOGISTICS, credentials, date_range),
            return_exceptions=True,
        )
        fetched: Dict[DataType, Any] = {}
        failed: Dict[DataType, str] = {}
        for data_type, outcome in zip((DataType.ADS, DataType.LOGISTICS), outcomes):
            if isinstance(outcome, BaseException):
                failed[data_type] = _reason(outcome)
                log.error(f"{SOURCE_NAMES[data_type]} failed for {credentials.owner_id}: {failed[data_type]}")
            else:
                fetched[data_type] = outcome
        return fetched, failed

    @staticmethod
    def _apply_secondary(snapshot: DashboardSnapshot, fetched: Dict[DataType, Any], failed: Dict[DataType, str]):
        snapshot.ad_report = fetched.get(DataType.ADS)
        snapshot.shipments = fetched.get(DataType.LOGISTICS)
        secondary = {SOURCE_NAMES[DataType.ADS], SOURCE_NAMES[DataType.LOGISTICS]}
        snapshot.degraded = [d for d in snapshot.degraded if d.source not in secondary]
        snapshot.degraded.extend(
            AggregationInputMissing(SOURCE_NAMES[data_type], reason) for data_type, reason in failed.items()
        )

    async def _snapshot_from_sources(
        self,
        credentials: OwnerCredentials,
        date_range: DateRange,
        narrow_fallback: bool,
    ) -> DashboardSnapshot:
        owner_id = credentials.owner_id
        started = datetime.utcnow()

        orders_res, secondary = await asyncio.gather(
            self._fetch(DataType.ORDERS, credentials, date_range),
            self._fetch_secondary(credentials, date_range),
            return_exceptions=True,
        )
        if isinstance(secondary, BaseException):
            raise secondary
        fetched, failed = secondary
        log.info(f"Dashboard sources fetched in {(datetime.utcnow() - started).total_seconds():.2f}s")

        snapshot = DashboardSnapshot(date_range=date_range)
        self._apply_secondary(snapshot, fetched, failed)

        if isinstance(orders_res, BaseException):
            log.error(f"shopify failed for {owner_id}: {_reason(orders_res)}")
            # Recorded before the fallback so a TotalFailure still caches the other sources
            self._write_back(owner_id, date_range, fetched, failed)
            await self._order_fallback(credentials, snapshot, _reason(orders_res), narrow_fallback)
        else:
            fetched[DataType.ORDERS] = orders_res
            snapshot.orders = orders_res
            self._write_back(owner_id, date_range, fetched, failed)
        return snapshot

    async def _order_fallback(
        self,
        credentials: OwnerCredentials,
        snapshot: DashboardSnapshot,
        reason: str,
        narrow_fallback: bool,
    ) -> None:
        """cached orders for the range -> one fetch of the last N days -> TotalFailure (or zeros)."""
        owner_id = credentials.owner_id
        date_range = snapshot.date_range

        cached = await self.cache.get_record(owner_id, DataType.ORDERS, date_range)
        if cached is not None and cached.status != CacheStatus.FAILED:
            try:
                snapshot.orders = orders_from_payload(cached.payload)
                log.info(f"Using cached orders as fallback for {owner_id} {date_range.key()}")
                snapshot.degraded.append(AggregationInputMissing("shopify", f"{reason}; served cached orders"))
                return
            except (KeyError, TypeError, ValueError) as e:
                log.warning(f"Cached orders unreadable for {owner_id}: {e}")

        if narrow_fallback:
            short_range = default_range(settings.fallback_window_days, self._now())
            log.info(f"Retrying orders with shorter range {short_range.key()} for {owner_id}")
            try:
                orders = await self._fetch(DataType.ORDERS, credentials, short_range)
            except Exception as e:
                log.error(f"Shorter-range order retry also failed for {owner_id}: {_reason(e)}")
            else:
                # Ads and shipments must cover the same window as the orders
                fetched, failed = await self._fetch_secondary(credentials, short_range)
                snapshot.orders = orders
                snapshot.date_range = short_range
                self._apply_secondary(snapshot, fetched, failed)
                snapshot.degraded.append(AggregationInputMissing(
                    "shopify", f"{reason}; narrowed to {short_range.key()}"
                ))
                fetched[DataType.ORDERS] = orders
                self._write_back(owner_id, short_range, fetched, failed)
                return

        if settings.dashboard_fail_on_order_outage:
            raise TotalFailure(f"no order data available for {owner_id} ({reason})")

        log.warning(f"No order data for {owner_id}; returning an all-zero dashboard")
        snapshot.orders = []
        snapshot.degraded.append(AggregationInputMissing("shopify", reason))

    def _write_back(
        self,
        owner_id: str,
        date_range: DateRange,
        fetched: Dict[DataType, Any],
        failed: Dict[DataType, str],
    ) -> None:
        """
        Detached cache writes. Successful sources are stored as ``success``
        (``partial`` when a sibling failed); failed ads/logistics fetches are
        stored as ``failed`` so repeat requests within the TTL reuse the
        outcome instead of refetching everything.
        """
        status = CacheStatus.SUCCESS if len(fetched) == len(DataType) else CacheStatus.PARTIAL
        serializers = {
            DataType.ORDERS: orders_to_payload,
            DataType.ADS: lambda report: report.to_dict(),
            DataType.LOGISTICS: shipments_to_payload,
        }
        for data_type, value in fetched.items():
            self.cache.schedule_set(owner_id, data_type, date_range, serializers[data_type](value), status)
        for data_type, reason in failed.items():
            self.cache.schedule_set(owner_id, data_type, date_range, {"error": reason}, CacheStatus.FAILED)
