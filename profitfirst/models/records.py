"""
In-flight record types

Plain dataclasses produced by the source connectors and consumed by the
aggregation engine. Each type round-trips through to_dict()/from_dict() so
it can be stored as an opaque JSON cache payload.
"""
import enum
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional

from profitfirst.utils.dates import parse_instant
from profitfirst.utils.normalize import ZERO, to_decimal, to_int, to_optional_decimal


def _money(value: Optional[Decimal]) -> Optional[str]:
    return None if value is None else str(value)


@dataclass(frozen=True)
class OwnerCredentials:
    """Per-owner source credentials, supplied by the auth layer."""
    owner_id: str
    store_url: Optional[str] = None
    store_token: Optional[str] = None
    ad_account_id: Optional[str] = None
    ad_token: Optional[str] = None
    logistics_token: Optional[str] = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "OwnerCredentials":
        """Accepts snake_case or the camelCase keys the auth layer uses."""
        def pick(*keys):
            for key in keys:
                value = data.get(key)
                if value:
                    return str(value)
            return None

        owner_id = pick("owner_id", "ownerId", "user_id", "userId", "id")
        if not owner_id:
            raise ValueError("owner mapping has no owner id")
        return cls(
            owner_id=owner_id,
            store_url=pick("store_url", "storeUrl", "shopify_store"),
            store_token=pick("store_token", "storeToken", "shopify_token"),
            ad_account_id=pick("ad_account_id", "adAccountId"),
            ad_token=pick("ad_token", "adToken", "meta_token"),
            logistics_token=pick("logistics_token", "logisticsToken", "shiprocket_token"),
        )


@dataclass(frozen=True)
class RawLineItem:
    product_id: Optional[str]
    title: str
    quantity: int

    def to_dict(self) -> dict:
        return {"product_id": self.product_id, "title": self.title, "quantity": self.quantity}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RawLineItem":
        return cls(
            product_id=data.get("product_id"),
            title=data.get("title") or "",
            quantity=to_int(data.get("quantity")),
        )


@dataclass(frozen=True)
class RawOrder:
    id: str
    created_at: datetime
    total_amount: Decimal
    customer_id: Optional[str] = None
    line_items: List[RawLineItem] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "created_at": self.created_at.isoformat(),
            "total_amount": str(self.total_amount),
            "customer_id": self.customer_id,
            "line_items": [item.to_dict() for item in self.line_items],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RawOrder":
        return cls(
            id=str(data["id"]),
            created_at=parse_instant(data["created_at"]),
            total_amount=to_decimal(data.get("total_amount")),
            customer_id=data.get("customer_id"),
            line_items=[RawLineItem.from_dict(i) for i in data.get("line_items") or []],
        )


@dataclass(frozen=True)
class RawAdDaily:
    day: date
    spend: Decimal = ZERO
    reach: int = 0
    link_clicks: int = 0
    roas: Decimal = ZERO

    def to_dict(self) -> dict:
        return {
            "day": self.day.isoformat(),
            "spend": str(self.spend),
            "reach": self.reach,
            "link_clicks": self.link_clicks,
            "roas": str(self.roas),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RawAdDaily":
        return cls(
            day=date.fromisoformat(data["day"]),
            spend=to_decimal(data.get("spend")),
            reach=to_int(data.get("reach")),
            link_clicks=to_int(data.get("link_clicks")),
            roas=to_decimal(data.get("roas")),
        )


@dataclass(frozen=True)
class RawAdOverview:
    spend: Decimal = ZERO
    clicks: int = 0
    impressions: int = 0
    reach: int = 0
    cpc: Decimal = ZERO
    ctr: Decimal = ZERO
    cpm: Decimal = ZERO
    purchase_roas: Optional[Decimal] = None

    def to_dict(self) -> dict:
        return {
            "spend": str(self.spend),
            "clicks": self.clicks,
            "impressions": self.impressions,
            "reach": self.reach,
            "cpc": str(self.cpc),
            "ctr": str(self.ctr),
            "cpm": str(self.cpm),
            "purchase_roas": _money(self.purchase_roas),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RawAdOverview":
        return cls(
            spend=to_decimal(data.get("spend")),
            clicks=to_int(data.get("clicks")),
            impressions=to_int(data.get("impressions")),
            reach=to_int(data.get("reach")),
            cpc=to_decimal(data.get("cpc")),
            ctr=to_decimal(data.get("ctr")),
            cpm=to_decimal(data.get("cpm")),
            purchase_roas=to_optional_decimal(data.get("purchase_roas")),
        )


@dataclass(frozen=True)
class AdReport:
    """Ad-source result: range overview (None when the account reported nothing) plus daily rows."""
    overview: Optional[RawAdOverview] = None
    daily: List[RawAdDaily] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "overview": self.overview.to_dict() if self.overview else None,
            "daily": [d.to_dict() for d in self.daily],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AdReport":
        overview = data.get("overview")
        return cls(
            overview=RawAdOverview.from_dict(overview) if overview else None,
            daily=[RawAdDaily.from_dict(d) for d in data.get("daily") or []],
        )


class ShipmentStatus(str, enum.Enum):
    DELIVERED = "delivered"
    IN_TRANSIT = "in_transit"
    RTO = "rto"
    NDR = "ndr"
    OTHER = "other"


@dataclass(frozen=True)
class RawShipment:
    order_id: Optional[str]
    order_date: datetime
    status: ShipmentStatus = ShipmentStatus.OTHER
    raw_status: str = ""
    awb: Optional[str] = None
    courier: Optional[str] = None
    freight_charge: Decimal = ZERO
    cod_charge: Decimal = ZERO

    @property
    def shipping_cost(self) -> Decimal:
        return self.freight_charge + self.cod_charge

    def to_dict(self) -> dict:
        return {
            "order_id": self.order_id,
            "order_date": self.order_date.isoformat(),
            "status": self.status.value,
            "raw_status": self.raw_status,
            "awb": self.awb,
            "courier": self.courier,
            "freight_charge": str(self.freight_charge),
            "cod_charge": str(self.cod_charge),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RawShipment":
        try:
            status = ShipmentStatus(data.get("status") or "other")
        except ValueError:
            status = ShipmentStatus.OTHER
        return cls(
            order_id=data.get("order_id"),
            order_date=parse_instant(data["order_date"]),
            status=status,
            raw_status=data.get("raw_status") or "",
            awb=data.get("awb"),
            courier=data.get("courier"),
            freight_charge=to_decimal(data.get("freight_charge")),
            cod_charge=to_decimal(data.get("cod_charge")),
        )


def orders_to_payload(orders: List[RawOrder]) -> List[Dict[str, Any]]:
    return [o.to_dict() for o in orders]


def orders_from_payload(payload: List[Mapping[str, Any]]) -> List[RawOrder]:
    return [RawOrder.from_dict(o) for o in payload or []]


def shipments_to_payload(shipments: List[RawShipment]) -> List[Dict[str, Any]]:
    return [s.to_dict() for s in shipments]


def shipments_from_payload(payload: List[Mapping[str, Any]]) -> List[RawShipment]:
    return [RawShipment.from_dict(s) for s in payload or []]
