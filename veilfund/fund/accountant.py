"""
Net asset value and share pricing.

    NAV         = pending_stablecoin
                + sum(price(token) * holdings(token) // 10 ** decimals(token))
    share_price = NAV * stablecoin_scale // total_share_supply
    shares      = stablecoin_in * stablecoin_scale // share_price

share_price is fixed point with stablecoin_scale units per stablecoin unit.
holdings() excludes tokens the fund still holds but already owes to
burners, so pending redemptions are not valued twice. pending_stablecoin is
the mint bucket: deposits already converted to shares but not yet swapped,
counted at face value. Burners receive their pro-rata part of it, so the
same assets back both sides.
"""

from typing import Dict

from veilfund.adapters.market_data import MarketDataProvider
from veilfund.core.exceptions import ZeroSharePrice
from veilfund.fund.allocator import BatchAllocator
from veilfund.fund.state import FundState


class ShareAccountant:

    def __init__(self, market_data: MarketDataProvider, fund_address: str) -> None:
        self.market_data  = market_data
        self.fund_address = fund_address

    def holdings(self, state: FundState, token: str) -> int:
        balance = state.token(token).balance_of(self.fund_address)
        return balance - state.reserved_by_token[token]

    def pending_stablecoin(self, state: FundState) -> int:
        return sum(state.pending_mint_amount_by_token.values())

    def nav(self, state: FundState) -> int:
        total = self.pending_stablecoin(state)
        for token in state.index_tokens:
            amount = self.holdings(state, token.address)
            if amount == 0:
                continue
            price = self.market_data.token_price(token.address)
            total += price * amount // 10 ** token.decimals
        return total

    def compute_share_price(self, state: FundState) -> int:
        """Share price implied by current balances. No state change."""
        supply = state.share_token.total_supply
        if supply == 0:
            return state.share_price if state.share_price > 0 else state.terms.default_share_price
        return self.nav(state) * state.stablecoin_scale // supply

    def recompute_share_price(self, state: FundState, require_positive: bool = True) -> int:
        """Refresh state.share_price from current balances. Unchanged while supply is zero."""
        price = self.compute_share_price(state)
        if require_positive and price <= 0:
            raise ZeroSharePrice(
                "Share price is not positive",
                {"nav_price": price, "supply": state.share_token.total_supply},
            )
        state.share_price = price
        return price

    def shares_for(self, state: FundState, stablecoin_in: int, share_price: int) -> int:
        if share_price <= 0:
            raise ZeroSharePrice("Share price is not positive", {"share_price": share_price})
        return stablecoin_in * state.stablecoin_scale // share_price

    def bucket_share(self, state: FundState, shares: int, supply: int) -> Dict[str, int]:
        """Per-token part of the unswapped mint bucket that `shares` of `supply` own."""
        return {
            token: BatchAllocator.pro_rata(amount, shares, supply) if shares else 0
            for token, amount in state.pending_mint_amount_by_token.items()
        }
