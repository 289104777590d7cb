"""
Meta Ads connector (Graph API insights)

Fetches the account-level overview for the whole range and the daily
breakdown (time_increment=1) concurrently, following ``paging.next`` until
exhausted.
"""
import asyncio
import json
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from profitfirst.config import get_settings
from profitfirst.connectors.base_connector import BaseConnector
from profitfirst.exceptions import FatalSourceError, TransientSourceError
from profitfirst.models.records import AdReport, OwnerCredentials, RawAdDaily, RawAdOverview
from profitfirst.utils.dates import DateRange
from profitfirst.utils.logger import log
from profitfirst.utils.normalize import to_decimal, to_int, to_optional_decimal

settings = get_settings()

OVERVIEW_FIELDS = [
    "spend", "clicks", "inline_link_clicks", "impressions", "reach",
    "cpc", "ctr", "cpm", "purchase_roas",
]
DAILY_FIELDS = ["spend", "reach", "inline_link_clicks", "purchase_roas"]

# Graph API throttling codes; returned with HTTP 400
RATE_LIMIT_MARKERS = ("(#4)", "(#17)", "(#32)", "(#613)", "(#80004)", "request limit reached")


def parse_purchase_roas(value: Any) -> Optional[Decimal]:
    """
    purchase_roas arrives as [{"action_type": "omni_purchase", "value": "2.31"}, ...].
    Prefer the omni_purchase entry; None when the account reported no ROAS.
    """
    if value is None:
        return None
    if isinstance(value, list):
        if not value:
            return None
        chosen = next(
            (v for v in value if isinstance(v, dict) and v.get("action_type") == "omni_purchase"),
            value[0],
        )
        return to_optional_decimal(chosen.get("value") if isinstance(chosen, dict) else chosen)
    return to_optional_decimal(value)


def parse_overview(rows: List[Dict[str, Any]]) -> Optional[RawAdOverview]:
    if not rows:
        return None
    row = rows[0]
    clicks = row.get("inline_link_clicks")
    if clicks is None:
        clicks = row.get("clicks")
    return RawAdOverview(
        spend=to_decimal(row.get("spend")),
        clicks=to_int(clicks),
        impressions=to_int(row.get("impressions")),
        reach=to_int(row.get("reach")),
        cpc=to_decimal(row.get("cpc")),
        ctr=to_decimal(row.get("ctr")),
        cpm=to_decimal(row.get("cpm")),
        purchase_roas=parse_purchase_roas(row.get("purchase_roas")),
    )


def parse_daily(rows: List[Dict[str, Any]]) -> List[RawAdDaily]:
    daily: Dict[date, RawAdDaily] = {}
    for row in rows:
        try:
            day = date.fromisoformat(str(row.get("date_start")))
        except ValueError:
            log.debug(f"Meta: skipping daily row without a valid date_start: {row.get('date_start')}")
            continue
        entry = RawAdDaily(
            day=day,
            spend=to_decimal(row.get("spend")),
            reach=to_int(row.get("reach")),
            link_clicks=to_int(row.get("inline_link_clicks")),
            roas=parse_purchase_roas(row.get("purchase_roas")) or to_decimal(0),
        )
        previous = daily.get(day)
        if previous is not None:
            # Same day split across rows: sum them
            entry = RawAdDaily(
                day=day,
                spend=previous.spend + entry.spend,
                reach=previous.reach + entry.reach,
                link_clicks=previous.link_clicks + entry.link_clicks,
                roas=entry.roas or previous.roas,
            )
        daily[day] = entry
    return [daily[d] for d in sorted(daily)]


class MetaAdsConnector(BaseConnector):
    """Fetches ad spend and delivery metrics for the owner's ad account."""

    REQUIRED_CREDENTIALS = ("ad_account_id", "ad_token")

    def __init__(self, session_factory=None):
        super().__init__("Meta Ads", session_factory=session_factory)
        self.base_url = f"{settings.meta_api_base_url.rstrip('/')}/{settings.meta_api_version}"

    def _insights_url(self, credentials: OwnerCredentials) -> str:
        account = credentials.ad_account_id.strip()
        if not account.startswith("act_"):
            account = f"act_{account}"
        return f"{self.base_url}/{account}/insights"

    def _params(self, credentials: OwnerCredentials, date_range: DateRange, fields: List[str],
                daily: bool) -> Dict[str, Any]:
        params = {
            "access_token": credentials.ad_token,
            "level": "account",
            "fields": ",".join(fields),
            "time_range": json.dumps({
                "since": date_range.start.isoformat(),
                "until": date_range.end.isoformat(),
            }),
        }
        if daily:
            params["time_increment"] = 1
            params["limit"] = 100
        return params

    async def _get(self, session, url: str, params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        try:
            return await self._request_json(session, "GET", url, params=params)
        except FatalSourceError as e:
            if any(marker in str(e) for marker in RATE_LIMIT_MARKERS):
                raise TransientSourceError(self.name, f"rate limited: {e}", status_code=e.status_code) from e
            raise

    async def _collect(self, session, url: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        rows: List[Dict[str, Any]] = []
        next_url: Optional[str] = url
        next_params: Optional[Dict[str, Any]] = params
        pages = 0
        while next_url:
            body = await self._get(session, next_url, next_params)
            rows.extend(body.get("data") or [])
            pages += 1
            # paging.next is a complete URL including the query string
            next_url = (body.get("paging") or {}).get("next")
            next_params = None
        log.debug(f"Meta: {len(rows)} insight rows over {pages} pages")
        return rows

    async def _fetch(self, credentials: OwnerCredentials, date_range: DateRange) -> AdReport:
        url = self._insights_url(credentials)
        async with self._session() as session:
            overview_rows, daily_rows = await asyncio.gather(
                self._collect(session, url, self._params(credentials, date_range, OVERVIEW_FIELDS, daily=False)),
                self._collect(session, url, self._params(credentials, date_range, DAILY_FIELDS, daily=True)),
            )
        report = AdReport(overview=parse_overview(overview_rows), daily=parse_daily(daily_rows))
        log.info(
            f"Meta: spend {report.overview.spend if report.overview else 0} "
            f"over {len(report.daily)} days"
        )
        return report
