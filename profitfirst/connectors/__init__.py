"""Source connectors for the ProfitFirst dashboard"""

from profitfirst.connectors.base_connector import BaseConnector
from profitfirst.connectors.shopify_connector import ShopifyConnector
from profitfirst.connectors.meta_ads_connector import MetaAdsConnector
from profitfirst.connectors.shiprocket_connector import ShiprocketConnector

__all__ = [
    "BaseConnector",
    "ShopifyConnector",
    "MetaAdsConnector",
    "ShiprocketConnector",
]
