"""Exchange market-data access for price feeds."""

from .bybit_v5 import BybitAPIError, BybitV5Client, EdgeProtectionError
from .feed import BybitPriceFeed, PriceFeed, StaticPriceFeed

__all__ = [
    "BybitAPIError",
    "BybitPriceFeed",
    "BybitV5Client",
    "EdgeProtectionError",
    "PriceFeed",
    "StaticPriceFeed",
]
