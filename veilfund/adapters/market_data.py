"""
Market-data provider interface and a settable in-memory provider.

Prices are quoted in smallest stablecoin units per one whole token
(10 ** token.decimals smallest token units).
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Sequence, Tuple

from veilfund.core.exceptions import PriceFeedUnavailable


class MarketDataProvider(ABC):

    @abstractmethod
    def index_market_caps(self, tokens: Sequence[str]) -> Tuple[int, List[int]]:
        """Return (total market cap, per-token market caps) in token order."""

    @abstractmethod
    def token_price(self, token: str) -> int:
        """Return the oracle price of one whole token."""


class StaticMarketData(MarketDataProvider):

    def __init__(self) -> None:
        self._caps:   Dict[str, int] = {}
        self._prices: Dict[str, int] = {}

    def set_market_cap(self, token: str, market_cap: int) -> None:
        self._caps[token] = market_cap

    def set_index_market_caps(self, tokens: Sequence[str], market_caps: Sequence[int]) -> None:
        for token, cap in zip(tokens, market_caps):
            self._caps[token] = cap

    def set_price(self, token: str, price: int) -> None:
        self._prices[token] = price

    def index_market_caps(self, tokens: Sequence[str]) -> Tuple[int, List[int]]:
        missing = [t for t in tokens if t not in self._caps]
        if missing:
            raise PriceFeedUnavailable("No market cap for tokens", {"tokens": missing})
        caps = [self._caps[t] for t in tokens]
        return sum(caps), caps

    def token_price(self, token: str) -> int:
        price = self._prices.get(token, 0)
        if price <= 0:
            raise PriceFeedUnavailable("No price for token", {"token": token})
        return price
