"""Database models and in-flight record types for the ProfitFirst dashboard"""

from profitfirst.models.cached_data import CachedData, CacheStatus, DataType

from profitfirst.models.product_cost import ProductCost

from profitfirst.models.records import (
    AdReport,
    OwnerCredentials,
    RawAdDaily,
    RawAdOverview,
    RawLineItem,
    RawOrder,
    RawShipment,
    ShipmentStatus,
)

__all__ = [
    "CachedData",
    "CacheStatus",
    "DataType",
    "ProductCost",
    "AdReport",
    "OwnerCredentials",
    "RawAdDaily",
    "RawAdOverview",
    "RawLineItem",
    "RawOrder",
    "RawShipment",
    "ShipmentStatus",
]
