"""
Shiprocket logistics connector.

Pages through GET /shipments (newest first) and keeps shipments whose
order date falls on an IST day inside the range. Paging stops on a short
page, or once a whole page is older than the range start.
"""
from typing import Any, Dict, List, Optional

from profitfirst.config import get_settings
from profitfirst.connectors.base_connector import BaseConnector
from profitfirst.models.records import OwnerCredentials, RawShipment, ShipmentStatus
from profitfirst.utils.dates import IST, DateRange, ist_day, parse_instant
from profitfirst.utils.logger import log
from profitfirst.utils.normalize import to_decimal

settings = get_settings()

# Ordered: "RTO DELIVERED" is an RTO, not a delivery
_STATUS_RULES = (
    (ShipmentStatus.RTO, ("rto", "return to origin")),
    (ShipmentStatus.NDR, ("ndr", "undelivered", "delivery attempt", "failed delivery")),
    (ShipmentStatus.DELIVERED, ("delivered",)),
    (ShipmentStatus.IN_TRANSIT, ("transit", "shipped", "out for delivery", "picked up", "pickup", "dispatched")),
)


def classify_status(raw_status: Optional[str]) -> ShipmentStatus:
    text = (raw_status or "").strip().lower()
    if not text:
        return ShipmentStatus.OTHER
    for status, markers in _STATUS_RULES:
        if any(marker in text for marker in markers):
            return status
    return ShipmentStatus.OTHER


def _first(row: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = row.get(key)
        if value not in (None, ""):
            return value
    return None


def normalize_shipment(row: Dict[str, Any]) -> Optional[RawShipment]:
    """Build a RawShipment from an API row; None when it has no parseable order date."""
    # Shiprocket timestamps are local (IST) without an offset
    order_date = parse_instant(_first(row, "order_date", "created_at"), naive_tz=IST)
    if order_date is None:
        return None

    charges = row.get("charges") or {}
    raw_status = str(_first(row, "status", "shipment_status") or "")
    order_id = _first(row, "order_id", "channel_order_id")
    return RawShipment(
        order_id=str(order_id) if order_id is not None else None,
        order_date=order_date,
        status=classify_status(raw_status),
        raw_status=raw_status,
        awb=_first(row, "awb", "awb_code"),
        courier=_first(row, "courier", "courier_name", "sr_courier_name"),
        freight_charge=to_decimal(charges.get("freight_charges", row.get("freight_charges"))),
        cod_charge=to_decimal(charges.get("cod_charges", row.get("cod_charges"))),
    )


class ShiprocketConnector(BaseConnector):
    """Fetches shipments and their charges for the owner's Shiprocket account."""

    REQUIRED_CREDENTIALS = ("logistics_token",)

    def __init__(self, session_factory=None):
        super().__init__("Shiprocket", session_factory=session_factory)
        self.base_url = settings.shiprocket_base_url.rstrip("/")
        self.page_size = settings.shiprocket_page_size

    async def _fetch(self, credentials: OwnerCredentials, date_range: DateRange) -> List[RawShipment]:
        headers = {
            "Authorization": f"Bearer {credentials.logistics_token}",
            "Accept": "application/json",
        }
        shipments: List[RawShipment] = []
        skipped = 0
        page = 1

        async with self._session() as session:
            while True:
                body = await self._request_json(
                    session, "GET", f"{self.base_url}/shipments",
                    headers=headers,
                    params={
                        "per_page": self.page_size,
                        "page": page,
                        "sort": "desc",
                        "sort_by": "created_at",
                    },
                )
                rows = (body or {}).get("data") or []
                if not rows:
                    break

                older_than_range = 0
                for row in rows:
                    shipment = normalize_shipment(row) if isinstance(row, dict) else None
                    if shipment is None:
                        skipped += 1
                        continue
                    day = ist_day(shipment.order_date)
                    if day < date_range.start:
                        older_than_range += 1
                    elif day <= date_range.end:
                        shipments.append(shipment)

                if len(rows) < self.page_size or older_than_range == len(rows):
                    break
                page += 1

        if skipped:
            log.debug(f"Shiprocket: skipped {skipped} rows without an order date")
        log.info(f"Shiprocket: {len(shipments)} shipments in range over {page} pages")
        return shipments
