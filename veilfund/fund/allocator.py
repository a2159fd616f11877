"""
Proportional allocation arithmetic.

Every function here is pure integer math with floor division. Rounding
residue stays with the fund and is bounded by len(weights) - 1 units per
allocation.
"""

from typing import List, Sequence

from veilfund.adapters.swaps import SwapDirection
from veilfund.core.exceptions import PriceFeedUnavailable, ValidationError


# 10% slippage tolerance: minimum output is 90% of the oracle-implied output
SLIPPAGE_NUMERATOR   = 9
SLIPPAGE_DENOMINATOR = 10


class BatchAllocator:
    """Stateless. Callers own bucket accumulation and flushing."""

    @staticmethod
    def allocate(amount: int, weights: Sequence[int], total_weight: int) -> List[int]:
        """
        Split `amount` across weights: amount * w // total_weight each.

        >>> BatchAllocator.allocate(999, [500, 500], 1000)
        [499, 499]
        """
        if amount < 0:
            raise ValidationError("amount must be non-negative", {"amount": amount})
        if total_weight <= 0 or any(w < 0 for w in weights):
            raise PriceFeedUnavailable(
                "Market caps unusable for allocation",
                {"total": total_weight, "weights": list(weights)},
            )
        if sum(weights) > total_weight:
            raise PriceFeedUnavailable(
                "Per-token market caps exceed reported total",
                {"total": total_weight, "sum": sum(weights)},
            )
        return [amount * w // total_weight for w in weights]

    @staticmethod
    def pro_rata(balance: int, part: int, whole: int) -> int:
        """balance * part // whole; the share of `balance` owned by `part` of `whole`."""
        if whole <= 0:
            raise ValidationError("whole must be positive", {"whole": whole})
        if part > whole:
            raise ValidationError("part exceeds whole", {"part": part, "whole": whole})
        return balance * part // whole

    @staticmethod
    def min_amount_out(
        price:          int,
        amount_in:      int,
        token_decimals: int,
        direction:      SwapDirection,
    ) -> int:
        """
        Minimum acceptable swap output at the fixed slippage tolerance.

        price is stablecoin units per whole token. Buying tokens divides by
        the price, selling tokens multiplies by it; both are scaled by the
        token's decimals.
        """
        if price <= 0:
            raise PriceFeedUnavailable("Price must be positive", {"price": price})
        scale = 10 ** token_decimals
        if direction is SwapDirection.STABLECOIN_TO_TOKEN:
            return amount_in * scale * SLIPPAGE_NUMERATOR // (price * SLIPPAGE_DENOMINATOR)
        return price * amount_in * SLIPPAGE_NUMERATOR // (scale * SLIPPAGE_DENOMINATOR)
