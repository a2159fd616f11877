"""
Swap venue interface and an in-memory venue.

A pool pairs one index token with the fund's plain stablecoin. The fund
approves the venue on the token ledger and grants it a time-boxed spend
permit with approve_spend() before each swap.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Tuple

from veilfund.confidential.token import PlainToken
from veilfund.core.exceptions import (
    AuthorizationError,
    SlippageExceeded,
    ValidationError,
)
from veilfund.core.time import Clock


log = logging.getLogger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


class SwapDirection(Enum):
    STABLECOIN_TO_TOKEN = "stablecoin_to_token"
    TOKEN_TO_STABLECOIN = "token_to_stablecoin"


@dataclass(frozen=True)
class PoolKey:
    """Routing descriptor for one pool."""
    currency0:    str
    currency1:    str
    fee:          int = 0
    tick_spacing: int = 0
    hooks:        str = ZERO_ADDRESS

    def pairs(self, token: str, counter_asset: str) -> bool:
        return {self.currency0, self.currency1} == {token, counter_asset}

    def other(self, asset: str) -> str:
        if asset == self.currency0:
            return self.currency1
        if asset == self.currency1:
            return self.currency0
        raise ValidationError("Asset not in pool", {"asset": asset, "pool": self})

    def to_dict(self) -> dict:
        return {
            "currency0":    self.currency0,
            "currency1":    self.currency1,
            "fee":          self.fee,
            "tick_spacing": self.tick_spacing,
            "hooks":        self.hooks,
        }


class SwapVenue(ABC):
    """What the fund needs from a swap venue."""

    address: str

    def snapshot(self):
        """Venue-side state a failed fund call should put back; None if there is none."""
        return None

    def restore(self, snapshot) -> None:
        pass

    @abstractmethod
    def approve_spend(self, owner: str, token: str, amount: int, expiry: int) -> None:
        ...

    @abstractmethod
    def quote(self, pool_key: PoolKey, amount_in: int, direction: SwapDirection) -> int:
        ...

    @abstractmethod
    def swap(
        self,
        owner:          str,
        pool_key:       PoolKey,
        amount_in:      int,
        min_amount_out: int,
        deadline:       int,
        direction:      SwapDirection,
        counter_asset:  str,
    ) -> int:
        ...


class InMemorySwapVenue(SwapVenue):
    """
    Fixed-rate venue holding its own reserves.

    set_rate(pool, tokens, stablecoins) prices a pool as `tokens` smallest
    token units per `stablecoins` smallest stablecoin units.
    set_next_amount_out() overrides the output of the next swap only.
    """

    def __init__(self, tokens: Dict[str, PlainToken], clock: Clock, address: str = "venue:memory") -> None:
        self.tokens  = tokens
        self.clock   = clock
        self.address = address
        self.swaps_executed = 0
        self._rates:   Dict[PoolKey, Tuple[int, int]]        = {}
        self._permits: Dict[Tuple[str, str], Tuple[int, int]] = {}
        self._next_amount_out = None

    def register_token(self, token: PlainToken) -> None:
        self.tokens[token.address] = token

    def set_rate(self, pool_key: PoolKey, tokens: int, stablecoins: int) -> None:
        if tokens <= 0 or stablecoins <= 0:
            raise ValidationError("rate terms must be positive", {"tokens": tokens, "stablecoins": stablecoins})
        self._rates[pool_key] = (tokens, stablecoins)

    def set_next_amount_out(self, amount_out: int) -> None:
        self._next_amount_out = amount_out

    def approve_spend(self, owner: str, token: str, amount: int, expiry: int) -> None:
        self._permits[(owner, token)] = (amount, expiry)

    def quote(self, pool_key: PoolKey, amount_in: int, direction: SwapDirection) -> int:
        if self._next_amount_out is not None:
            return self._next_amount_out
        try:
            tokens, stablecoins = self._rates[pool_key]
        except KeyError:
            raise ValidationError("No liquidity for pool", {"pool": pool_key})
        if direction is SwapDirection.STABLECOIN_TO_TOKEN:
            return amount_in * tokens // stablecoins
        return amount_in * stablecoins // tokens

    def swap(
        self,
        owner:          str,
        pool_key:       PoolKey,
        amount_in:      int,
        min_amount_out: int,
        deadline:       int,
        direction:      SwapDirection,
        counter_asset:  str,
    ) -> int:
        if self.clock.now() > deadline:
            raise ValidationError("Swap deadline passed", {"deadline": deadline})

        index_token = pool_key.other(counter_asset)
        if direction is SwapDirection.STABLECOIN_TO_TOKEN:
            asset_in, asset_out = counter_asset, index_token
        else:
            asset_in, asset_out = index_token, counter_asset

        amount_out = self.quote(pool_key, amount_in, direction)
        if amount_out < min_amount_out:
            raise SlippageExceeded(
                "Swap output below minimum",
                {"amount_out": amount_out, "min_amount_out": min_amount_out},
            )

        self._consume_permit(owner, asset_in, amount_in)
        self.tokens[asset_in].transfer_from(self.address, owner, self.address, amount_in)
        self.tokens[asset_out].transfer(self.address, owner, amount_out)
        self._next_amount_out = None
        self.swaps_executed += 1

        log.debug("swap %s %d -> %d (%s)", direction.value, amount_in, amount_out, asset_out)
        return amount_out

    def snapshot(self) -> tuple:
        # token reserves live on the token ledgers, which roll back on their own
        return dict(self._permits), self._next_amount_out, self.swaps_executed

    def restore(self, snapshot: tuple) -> None:
        permits, self._next_amount_out, self.swaps_executed = snapshot
        self._permits = dict(permits)

    def _consume_permit(self, owner: str, token: str, amount: int) -> None:
        allowed, expiry = self._permits.get((owner, token), (0, 0))
        if amount > allowed or self.clock.now() > expiry:
            raise AuthorizationError(
                "Swap spend not approved",
                {"owner": owner, "token": token, "amount": amount, "permitted": allowed},
            )
        self._permits[(owner, token)] = (allowed - amount, expiry)
