"""
veilfund/factory.py

IndexFundFactory: whitelists swap pools and creates funds.

Each fund gets an immutable FactoryTerms snapshot of the factory's fee
divisor, protocol owner and default share price, its own share token
(minted and burned only by the fund) and its own event ledger.
"""

import logging
import threading
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Set, Tuple

from veilfund.adapters.market_data import MarketDataProvider
from veilfund.adapters.swaps import PoolKey, SwapVenue
from veilfund.confidential.ciphertext import FheContext
from veilfund.confidential.oracle import DecryptionOracle
from veilfund.confidential.token import ConfidentialToken, PlainToken
from veilfund.core.crypto import SigningKey
from veilfund.core.exceptions import (
    ConfigurationError,
    PoolNotWhitelisted,
    UnauthorizedCaller,
)
from veilfund.core.time import Clock
from veilfund.events.ledger import EventLedger
from veilfund.fund.state import FactoryTerms, FundState
from veilfund.settlement.engine import ConfidentialIndexFund, fund_address


log = logging.getLogger(__name__)

DEFAULT_FEE_DIVISOR  = 1000
DEFAULT_SHARE_PRICE  = 1
SHARE_TOKEN_DECIMALS = 6


class IndexFundFactory:

    def __init__(
        self,
        owner:               str,
        fhe:                 FheContext,
        oracle:              DecryptionOracle,
        swap_venue:          SwapVenue,
        market_data:         MarketDataProvider,
        clock:               Clock,
        fee_divisor:         int = DEFAULT_FEE_DIVISOR,
        default_share_price: int = DEFAULT_SHARE_PRICE,
        protocol_owner:      Optional[str] = None,
        signing_key:         Optional[SigningKey] = None,
        ledger_root:         Optional[str] = None,
    ) -> None:
        if fee_divisor < 1:
            raise ConfigurationError("fee_divisor must be >= 1", {"fee_divisor": fee_divisor})
        if default_share_price < 1:
            raise ConfigurationError(
                "default_share_price must be positive",
                {"default_share_price": default_share_price},
            )
        self.owner               = owner
        self.fhe                 = fhe
        self.oracle              = oracle
        self.swap_venue          = swap_venue
        self.market_data         = market_data
        self.clock               = clock
        self.fee_divisor         = fee_divisor
        self.default_share_price = default_share_price
        self.protocol_owner      = protocol_owner or owner
        self.signing_key         = signing_key or SigningKey.generate()
        self.ledger_root         = Path(ledger_root) if ledger_root is not None else None

        self._lock = threading.Lock()
        self._whitelist: Set[Tuple[str, PoolKey]]        = set()
        self._funds:     Dict[str, ConfidentialIndexFund] = {}
        self.fund_count  = 0

    # ── Pools ─────────────────────────────────────────────────

    def whitelist_pool(self, caller: str, token: str, pool_key: PoolKey) -> None:
        if caller != self.owner:
            raise UnauthorizedCaller("Only the factory owner can whitelist pools", {"caller": caller})
        self._whitelist.add((token, pool_key))
        log.info("whitelisted pool %s/%s for %s", pool_key.currency0, pool_key.currency1, token)

    def is_whitelisted(self, token: str, pool_key: PoolKey) -> bool:
        return (token, pool_key) in self._whitelist

    # ── Funds ─────────────────────────────────────────────────

    def create_fund(
        self,
        index_tokens:            Sequence[PlainToken],
        pool_keys:               Sequence[PoolKey],
        stablecoin:              ConfidentialToken,
        batch_size:              int,
        max_swap_amount:         int,
        max_mint_or_burn_amount: int,
        stablecoin_scale:        int = 1,
        **fund_options,
    ) -> ConfidentialIndexFund:
        """
        Create a fund over `index_tokens`, swapping through `pool_keys`
        (same order). fund_options go to ConfidentialIndexFund
        (deadlines, callback gas limit, two_step_mint).
        """
        plain_stablecoin = stablecoin.underlying
        if plain_stablecoin is None:
            raise ConfigurationError("stablecoin must wrap a plain token", {"stablecoin": stablecoin.symbol})
        if len(index_tokens) != len(pool_keys):
            raise ConfigurationError(
                "index_tokens and pool_keys must align",
                {"tokens": len(index_tokens), "pool_keys": len(pool_keys)},
            )
        for token, pool_key in zip(index_tokens, pool_keys):
            if not pool_key.pairs(token.address, plain_stablecoin.address):
                raise ConfigurationError(
                    "Pool does not pair token with the stablecoin",
                    {"token": token.symbol, "pool": pool_key.to_dict()},
                )
            if not self.is_whitelisted(token.address, pool_key):
                raise PoolNotWhitelisted(
                    "Pool not whitelisted for token",
                    {"token": token.symbol, "pool": pool_key.to_dict()},
                )

        with self._lock:
            number  = self.fund_count + 1
            fund_id = f"fund-{number}"
            share_token = ConfidentialToken(
                self.fhe,
                symbol=   f"VIF{number}",
                decimals= SHARE_TOKEN_DECIMALS,
                address=  f"shares:{fund_id}",
                minter=   fund_address(fund_id),
            )
            state = FundState(
                fund_id=                 fund_id,
                index_tokens=            tuple(index_tokens),
                pool_keys=               tuple(pool_keys),
                stablecoin=              stablecoin,
                plain_stablecoin=        plain_stablecoin,
                share_token=             share_token,
                terms=                   FactoryTerms(
                    fee_divisor=         self.fee_divisor,
                    protocol_owner=      self.protocol_owner,
                    default_share_price= self.default_share_price,
                ),
                batch_size=              batch_size,
                max_swap_amount=         max_swap_amount,
                max_mint_or_burn_amount= max_mint_or_burn_amount,
                stablecoin_scale=        stablecoin_scale,
            )
            ledger_path = str(self.ledger_root / fund_id) if self.ledger_root is not None else None
            fund = ConfidentialIndexFund(
                state,
                fhe=         self.fhe,
                oracle=      self.oracle,
                swap_venue=  self.swap_venue,
                market_data= self.market_data,
                events=      EventLedger(self.signing_key, fund_id, ledger_path),
                clock=       self.clock,
                **fund_options,
            )
            self.fund_count = number
            self._funds[fund_id] = fund

        log.info("created %s over %s", fund_id, ", ".join(t.symbol for t in index_tokens))
        return fund

    def get_fund(self, fund_id: str) -> ConfidentialIndexFund:
        try:
            return self._funds[fund_id]
        except KeyError:
            raise ConfigurationError("Unknown fund", {"fund_id": fund_id})

    @property
    def funds(self) -> List[ConfidentialIndexFund]:
        return list(self._funds.values())
