"""
Shopify orders connector (GraphQL Admin API)

Short ranges page through the orders connection with cursors. Ranges longer
than ``shopify_bulk_threshold_days`` use a bulk operation instead: the store
allows one bulk job at a time, so any job still in flight is cancelled first,
then the new job is started, polled with backoff and its JSONL result parsed.
"""
import asyncio
import json
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from profitfirst.config import get_settings
from profitfirst.connectors.base_connector import BaseConnector
from profitfirst.exceptions import FatalSourceError, TransientSourceError
from profitfirst.models.records import OwnerCredentials, RawLineItem, RawOrder
from profitfirst.utils.dates import DateRange, parse_instant, utc_bounds
from profitfirst.utils.logger import log
from profitfirst.utils.normalize import normalize_product_id, to_decimal, to_int

settings = get_settings()

ORDERS_QUERY = """
query Orders($filter: String!, $first: Int!, $after: String) {
  orders(first: $first, query: $filter, after: $after) {
    edges {
      node {
        id
        createdAt
        totalPriceSet { shopMoney { amount currencyCode } }
        customer { id }
        lineItems(first: 100) {
          edges {
            node {
              quantity
              title
              product { id title }
              variant { product { id title } }
            }
          }
        }
      }
    }
    pageInfo { hasNextPage endCursor }
  }
}
"""

BULK_ORDERS_QUERY = (
    '{ orders(query: "%s") { edges { node { __typename id createdAt '
    'totalPriceSet { shopMoney { amount currencyCode } } customer { id } '
    'lineItems { edges { node { __typename id quantity title '
    'product { __typename id title } '
    'variant { __typename id product { __typename id title } } } } } } } } }'
)

BULK_RUN_MUTATION = (
    'mutation { bulkOperationRunQuery(query: """%s""") '
    '{ bulkOperation { id status } userErrors { message } } }'
)

CURRENT_BULK_QUERY = "query { currentBulkOperation { id status errorCode url partialDataUrl } }"

BULK_CANCEL_MUTATION = (
    "mutation Cancel($id: ID!) { bulkOperationCancel(id: $id) { userErrors { message } } }"
)

ACTIVE_BULK_STATUSES = {"CREATED", "RUNNING", "CANCELING"}
TERMINAL_BULK_STATUSES = {"FAILED", "CANCELED", "COMPLETED"}

BULK_START_ATTEMPTS = 3
BULK_CLEAR_POLLS = 10
BULK_CLEAR_INTERVAL = 2.0


def escape_for_gql(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def build_order_filter(date_range: DateRange) -> str:
    """Search filter covering the IST days of the range, expressed in UTC."""
    start_iso, end_iso = utc_bounds(date_range)
    return f"created_at:>='{start_iso}' AND created_at:<='{end_iso}'"


def bulk_poll_delay(attempt: int) -> float:
    """Seconds to wait before poll ``attempt`` (0-based): 2, 3, 4.5, 6.75, then 8."""
    return min(2.0 * 1.5 ** min(attempt, 5), 8.0)


def _product_of(item: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    product = item.get("product")
    if product and product.get("id"):
        return product
    variant_product = (item.get("variant") or {}).get("product")
    if variant_product and variant_product.get("id"):
        return variant_product
    return None


def _build_order(order: Dict[str, Any], items: Iterable[Dict[str, Any]]) -> Optional[RawOrder]:
    created_at = parse_instant(order.get("createdAt"))
    if not order.get("id") or created_at is None:
        log.debug(f"Skipping Shopify order without id/createdAt: {order.get('id')}")
        return None

    line_items = []
    for item in items:
        product = _product_of(item)
        if product is None:
            continue
        line_items.append(RawLineItem(
            product_id=normalize_product_id(product.get("id")),
            title=product.get("title") or item.get("title") or "Unknown",
            quantity=to_int(item.get("quantity")),
        ))

    money = ((order.get("totalPriceSet") or {}).get("shopMoney") or {})
    customer = order.get("customer") or {}
    return RawOrder(
        id=str(order["id"]),
        created_at=created_at,
        total_amount=to_decimal(money.get("amount")),
        customer_id=customer.get("id"),
        line_items=line_items,
    )


def normalize_order_node(node: Dict[str, Any]) -> Optional[RawOrder]:
    """Convert one orders-connection node into a RawOrder (None if unusable)."""
    edges = ((node.get("lineItems") or {}).get("edges") or [])
    return _build_order(node, (edge.get("node") or {} for edge in edges))


def parse_bulk_jsonl(text: str) -> List[RawOrder]:
    """
    Parse a bulk operation result.

    Each line is one object; LineItem rows point at their order through
    ``__parentId``. The product comes from the line item, or from its variant
    when the product reference is empty. Malformed lines are skipped.
    """
    orders: Dict[str, Dict[str, Any]] = {}
    items_by_order: Dict[str, List[Dict[str, Any]]] = {}

    for line in text.splitlines():
        if not line.strip():
            continue
        try:
            obj = json.loads(line)
        except ValueError:
            continue
        if not isinstance(obj, dict) or not obj.get("id"):
            continue

        typename = obj.get("__typename")
        parent = obj.get("__parentId")
        if typename == "Order":
            orders[obj["id"]] = obj
        elif typename == "LineItem" and parent:
            items_by_order.setdefault(parent, []).append(obj)

    result = []
    for order_id, order in orders.items():
        raw = _build_order(order, items_by_order.get(order_id, []))
        if raw is not None:
            result.append(raw)
    return result


class ShopifyConnector(BaseConnector):
    """Fetches orders for the owner's store."""

    REQUIRED_CREDENTIALS = ("store_url", "store_token")

    def __init__(
        self,
        session_factory=None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        super().__init__("Shopify", session_factory=session_factory)
        self.api_version = settings.shopify_api_version
        self.page_size = settings.shopify_page_size
        self.bulk_threshold_days = settings.shopify_bulk_threshold_days
        self.bulk_max_poll_seconds = settings.shopify_bulk_max_poll_seconds
        self.sleep = sleep

    def _endpoint(self, credentials: OwnerCredentials) -> str:
        shop = credentials.store_url.strip()
        for prefix in ("https://", "http://"):
            if shop.startswith(prefix):
                shop = shop[len(prefix):]
        shop = shop.rstrip("/")
        return f"https://{shop}/admin/api/{self.api_version}/graphql.json"

    def _headers(self, credentials: OwnerCredentials) -> Dict[str, str]:
        return {
            "X-Shopify-Access-Token": credentials.store_token,
            "Content-Type": "application/json",
        }

    def uses_bulk(self, date_range: DateRange) -> bool:
        return (date_range.end - date_range.start).days > self.bulk_threshold_days

    async def _fetch(self, credentials: OwnerCredentials, date_range: DateRange) -> List[RawOrder]:
        order_filter = build_order_filter(date_range)
        async with self._session() as session:
            if self.uses_bulk(date_range):
                log.info(f"Shopify: bulk query for {date_range.days} days")
                orders = await self._fetch_bulk(session, credentials, order_filter)
            else:
                log.info(f"Shopify: paged query for {date_range.days} days")
                orders = await self._fetch_paged(session, credentials, order_filter)
        log.info(f"Shopify: fetched {len(orders)} orders")
        return orders

    async def _graphql(self, session, credentials: OwnerCredentials, query: str,
                       variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"query": query}
        if variables:
            payload["variables"] = variables
        body = await self._request_json(
            session, "POST", self._endpoint(credentials),
            headers=self._headers(credentials), payload=payload,
        )
        errors = body.get("errors") if isinstance(body, dict) else None
        if errors:
            messages = [e.get("message", str(e)) if isinstance(e, dict) else str(e) for e in errors]
            if any("throttled" in m.lower() for m in messages):
                raise TransientSourceError(self.name, "throttled: " + "; ".join(messages))
            raise FatalSourceError(self.name, "GraphQL errors: " + "; ".join(messages))
        return (body or {}).get("data") or {}

    # ------------------------------------------------------------- paged path

    async def _fetch_paged(self, session, credentials: OwnerCredentials, order_filter: str) -> List[RawOrder]:
        orders: List[RawOrder] = []
        cursor = None
        pages = 0
        while True:
            data = await self._graphql(session, credentials, ORDERS_QUERY, {
                "filter": order_filter,
                "first": self.page_size,
                "after": cursor,
            })
            connection = data.get("orders") or {}
            for edge in connection.get("edges") or []:
                order = normalize_order_node(edge.get("node") or {})
                if order is not None:
                    orders.append(order)
            pages += 1

            page_info = connection.get("pageInfo") or {}
            if not page_info.get("hasNextPage") or not page_info.get("endCursor"):
                break
            cursor = page_info["endCursor"]

        log.debug(f"Shopify: drained {pages} pages")
        return orders

    # -------------------------------------------------------------- bulk path

    async def _fetch_bulk(self, session, credentials: OwnerCredentials, order_filter: str) -> List[RawOrder]:
        await self.ensure_no_active_bulk_operation(session, credentials)
        await self.start_bulk_operation(session, credentials, BULK_ORDERS_QUERY % escape_for_gql(order_filter))
        url = await self.poll_bulk_url(session, credentials)
        if not url:
            # Completed with no result file: the range has no orders
            return []
        # Retries only the download, not the bulk job
        text = await self._retry_operation(lambda: self._download(session, url), operation_name="bulk download")
        return parse_bulk_jsonl(text)

    async def _current_bulk_operation(self, session, credentials: OwnerCredentials) -> Optional[Dict[str, Any]]:
        data = await self._graphql(session, credentials, CURRENT_BULK_QUERY)
        return data.get("currentBulkOperation")

    async def ensure_no_active_bulk_operation(self, session, credentials: OwnerCredentials) -> None:
        """Cancel an in-flight bulk job and wait for it to settle."""
        op = await self._current_bulk_operation(session, credentials)
        if not op or op.get("status") not in ACTIVE_BULK_STATUSES:
            return

        log.info(f"Shopify: cancelling existing bulk operation ({op.get('status')})")
        await self._graphql(session, credentials, BULK_CANCEL_MUTATION, {"id": op.get("id")})

        for _ in range(BULK_CLEAR_POLLS):
            await self.sleep(BULK_CLEAR_INTERVAL)
            current = await self._current_bulk_operation(session, credentials)
            if not current or current.get("status") in TERMINAL_BULK_STATUSES:
                log.info(f"Shopify: previous bulk operation cleared ({(current or {}).get('status', 'none')})")
                return

        raise TransientSourceError(self.name, "failed to clear previous bulk operation")

    async def start_bulk_operation(self, session, credentials: OwnerCredentials, bulk_query: str) -> None:
        mutation = BULK_RUN_MUTATION % bulk_query
        for attempt in range(BULK_START_ATTEMPTS):
            log.info(f"Shopify: starting bulk operation (attempt {attempt + 1}/{BULK_START_ATTEMPTS})")
            try:
                data = await self._graphql(session, credentials, mutation)
            except TransientSourceError as e:
                if e.status_code != 429:
                    raise
                log.warning("Shopify: rate limited starting bulk operation")
                await self.sleep(3.0 * (attempt + 1))
                continue

            user_errors = (data.get("bulkOperationRunQuery") or {}).get("userErrors") or []
            if not user_errors:
                return

            messages = [e.get("message", "") for e in user_errors]
            if any("already in progress" in m for m in messages):
                log.info("Shopify: bulk operation already in progress, clearing")
                await self.ensure_no_active_bulk_operation(session, credentials)
                await self.sleep(BULK_CLEAR_INTERVAL)
                continue

            raise FatalSourceError(self.name, "bulk start rejected: " + "; ".join(messages))

        raise TransientSourceError(self.name, "bulk start failed after retries")

    async def poll_bulk_url(self, session, credentials: OwnerCredentials) -> Optional[str]:
        """Poll until the job completes; returns the result URL (None if the job produced no file)."""
        waited = 0.0
        attempt = 0
        while waited < self.bulk_max_poll_seconds:
            op = await self._current_bulk_operation(session, credentials)
            if not op:
                raise TransientSourceError(self.name, "no bulk operation found")

            status = op.get("status")
            if status == "COMPLETED":
                return op.get("url") or op.get("partialDataUrl")
            if status in ("FAILED", "CANCELED"):
                raise TransientSourceError(
                    self.name, f"bulk operation {status.lower()}: {op.get('errorCode') or 'unknown error'}"
                )

            if attempt % 5 == 0:
                log.info(f"Shopify: waiting for bulk operation ({status})")
            delay = bulk_poll_delay(attempt)
            await self.sleep(delay)
            waited += delay
            attempt += 1

        raise TransientSourceError(self.name, f"bulk operation exceeded {self.bulk_max_poll_seconds:.0f}s")

    async def _download(self, session, url: str) -> str:
        # Result files live on a signed storage URL; no Shopify auth headers
        try:
            async with session.get(url) as response:
                if response.status >= 400:
                    raise TransientSourceError(self.name, f"bulk download HTTP {response.status}",
                                               status_code=response.status)
                return await response.text()
        except asyncio.TimeoutError as e:
            raise TransientSourceError(self.name, "bulk download timed out") from e
