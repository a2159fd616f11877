"""
VeilFund Adapters - swap venue and market-data collaborators.
"""

from veilfund.adapters.market_data import MarketDataProvider, StaticMarketData
from veilfund.adapters.swaps import (
    InMemorySwapVenue,
    PoolKey,
    SwapDirection,
    SwapVenue,
)

__all__ = [
    "InMemorySwapVenue",
    "MarketDataProvider",
    "PoolKey",
    "StaticMarketData",
    "SwapDirection",
    "SwapVenue",
]
