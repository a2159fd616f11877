"""
Planning and executing a bucket flush.

plan_flush() does every check that can fail (bounds, prices, quotes)
without touching balances. execute_flush() then only moves tokens.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List

from veilfund.adapters.swaps import PoolKey, SwapDirection
from veilfund.confidential.token import PlainToken
from veilfund.core.exceptions import AmountExceedsBound, SlippageExceeded
from veilfund.fund.allocator import BatchAllocator


log = logging.getLogger(__name__)


@dataclass
class SwapOrder:
    token:          PlainToken
    pool_key:       PoolKey
    direction:      SwapDirection
    amount_in:      int
    min_amount_out: int
    expected_out:   int


def plan_flush(fund, bucket: Dict[str, int], direction: SwapDirection) -> List[SwapOrder]:
    state  = fund.state
    orders = []
    for token in state.index_tokens:
        amount = bucket.get(token.address, 0)
        if amount == 0:
            continue
        if amount > state.max_swap_amount:
            raise AmountExceedsBound(
                "Swap amount over bound",
                {"token": token.symbol, "amount": amount, "max_swap_amount": state.max_swap_amount},
            )
        pool      = state.pool_for(token.address)
        price     = fund.market_data.token_price(token.address)
        min_out   = BatchAllocator.min_amount_out(price, amount, token.decimals, direction)
        expected  = fund.swap_venue.quote(pool, amount, direction)
        if expected < min_out:
            raise SlippageExceeded(
                "Quoted output below slippage floor",
                {"token": token.symbol, "quote": expected, "min_amount_out": min_out},
            )
        orders.append(SwapOrder(token, pool, direction, amount, min_out, expected))
    return orders


def execute_flush(fund, orders: List[SwapOrder]) -> Dict[str, int]:
    """Run the planned swaps. Returns amount out per token address."""
    state    = fund.state
    venue    = fund.swap_venue
    stable   = state.plain_stablecoin
    deadline = fund.clock.now() + fund.swap_deadline_seconds

    outputs: Dict[str, int] = {}
    for order in orders:
        asset_in = stable if order.direction is SwapDirection.STABLECOIN_TO_TOKEN else order.token
        asset_in.approve(fund.address, venue.address, order.amount_in)
        venue.approve_spend(fund.address, asset_in.address, order.amount_in, deadline)
        outputs[order.token.address] = venue.swap(
            owner=          fund.address,
            pool_key=       order.pool_key,
            amount_in=      order.amount_in,
            min_amount_out= order.min_amount_out,
            deadline=       deadline,
            direction=      order.direction,
            counter_asset=  stable.address,
        )
    log.info(
        "fund %s flushed %d swaps (%s)",
        fund.fund_id, len(orders), orders[0].direction.value if orders else "empty",
    )
    return outputs
