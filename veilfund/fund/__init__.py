"""
VeilFund Fund - state aggregate and the stateless accounting around it.
"""

from veilfund.fund.accountant import ShareAccountant
from veilfund.fund.allocator import BatchAllocator
from veilfund.fund.correlator import PendingRequest, RequestCorrelator, RequestKind
from veilfund.fund.state import (
    FactoryTerms,
    FundState,
    PendingMintAmount,
    PendingWithdrawal,
    SettledBurnBatch,
    WithdrawalKind,
)

__all__ = [
    "BatchAllocator",
    "FactoryTerms",
    "FundState",
    "PendingMintAmount",
    "PendingRequest",
    "PendingWithdrawal",
    "RequestCorrelator",
    "RequestKind",
    "SettledBurnBatch",
    "ShareAccountant",
    "WithdrawalKind",
]
