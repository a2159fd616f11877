"""
Mint pipeline.

    submit()   user deposit -> encrypted transfer in -> decryption request
    resolve()  oracle callback -> validate -> settle (or park, two-step mode)
    finish()   settle parked deposits (two-step mode)

plan() runs every check it can before anything moves. plan() and settle()
then run together in a transaction: a refundable failure anywhere in them
rolls the settlement back and refunds the deposit with a rejection event,
so a deposit is either refunded or fully settled.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from veilfund.adapters.swaps import SwapDirection
from veilfund.confidential.ciphertext import Ciphertext, ErrorCode
from veilfund.core.exceptions import (
    AmountExceedsBound,
    InsufficientBalance,
    NoPendingAction,
    PriceFeedUnavailable,
    SlippageExceeded,
    TransferValidationFailed,
    ZeroSharePrice,
)
from veilfund.events.models import EventType
from veilfund.fund.allocator import BatchAllocator
from veilfund.fund.correlator import PendingRequest, RequestKind
from veilfund.fund.state import PendingMintAmount
from veilfund.settlement.batching import SwapOrder, execute_flush, plan_flush
from veilfund.settlement.guard import transaction


log = logging.getLogger(__name__)

# Failures that refund the request instead of reverting the callback
REFUNDABLE_ERRORS = (
    AmountExceedsBound,
    InsufficientBalance,
    PriceFeedUnavailable,
    SlippageExceeded,
    ZeroSharePrice,
)


@dataclass
class MintPlan:
    amount:        int
    fee:           int
    stablecoin_in: int
    allocations:   List[int]
    share_price:   int
    shares:        int
    orders:        List[SwapOrder] = field(default_factory=list)


class MintPipeline:

    def __init__(self, fund) -> None:
        self.fund = fund

    def submit(self, user: str, encrypted_amount: Ciphertext, proof: bytes) -> int:
        fund  = self.fund
        state = fund.state

        (amount,) = fund.fhe.verify_input((encrypted_amount,), proof, user, fund.address)
        receipt = state.stablecoin.transfer_from_indexed(fund.address, user, fund.address, amount)
        error_code = state.stablecoin.error_at(receipt.error_id)

        deadline = fund.clock.now() + fund.decryption_deadline_seconds
        request_id = fund.oracle.request_decryption(
            [error_code, amount],
            callback=  fund.mint_callback,
            gas_limit= fund.callback_gas_limit,
            deadline=  deadline,
            trusted=   False,
        )
        state.requests.register(PendingRequest(
            request_id= request_id,
            user=       user,
            kind=       RequestKind.MINT,
            deadline=   deadline,
            refund=     receipt.transferred,
            error_id=   receipt.error_id,
        ))
        log.debug("mint request %d submitted by %s", request_id, user)
        return request_id

    def resolve(self, request_id: int, error_code: int, amount: int) -> Optional[int]:
        """Returns shares minted, or None when the deposit was rejected or parked."""
        fund    = self.fund
        state   = fund.state
        pending = state.requests.consume(request_id, RequestKind.MINT)

        if error_code != ErrorCode.NO_ERROR:
            fund.reject_request(pending, TransferValidationFailed(
                "Deposit transfer failed", {"error_code": int(error_code)}
            ))
            return None
        if amount > state.max_mint_or_burn_amount:
            fund.reject_request(pending, AmountExceedsBound(
                "Deposit over bound",
                {"amount": amount, "max_mint_or_burn_amount": state.max_mint_or_burn_amount},
            ))
            return None

        if fund.two_step_mint:
            state.pending_mints.setdefault(pending.user, []).append(
                PendingMintAmount(pending.user, amount, pending)
            )
            fund.events.emit(EventType.MINT_PENDING, {"user": pending.user, "request_id": request_id})
            return None

        return self._settle_or_refund(pending, amount)

    def finish(self, user: str) -> int:
        """Settle every parked deposit of `user`. Returns total shares minted."""
        state = self.fund.state
        parked = state.pending_mints.pop(user, None)
        if not parked:
            raise NoPendingAction("No pending mint", {"user": user})
        minted = 0
        for parked_mint in parked:
            minted += self._settle_or_refund(parked_mint.request, parked_mint.amount) or 0
        return minted

    def _settle_or_refund(self, pending: PendingRequest, amount: int) -> Optional[int]:
        fund = self.fund
        try:
            with transaction(fund):
                plan = self.plan(amount)
                return self.settle(pending.user, plan, pending.request_id)
        except REFUNDABLE_ERRORS as exc:
            fund.reject_request(pending, exc)
            return None

    def plan(self, amount: int) -> MintPlan:
        """
        Price the deposit on the fund as it stands before the deposit, so a
        depositor never pays into the price they are charged.
        """
        fund  = self.fund
        state = fund.state

        fee = amount // state.fee_divisor
        stablecoin_in = amount - fee

        total_cap, caps = fund.market_data.index_market_caps(state.token_ids)
        allocations = BatchAllocator.allocate(stablecoin_in, caps, total_cap)

        share_price = fund.accountant.compute_share_price(state)
        shares = fund.accountant.shares_for(state, stablecoin_in, share_price)
        if shares > state.max_mint_or_burn_amount:
            raise AmountExceedsBound(
                "Shares to mint over bound",
                {"shares": shares, "max_mint_or_burn_amount": state.max_mint_or_burn_amount},
            )

        orders: List[SwapOrder] = []
        if state.pending_mint_count + 1 >= state.batch_size:
            bucket = {
                token: state.pending_mint_amount_by_token[token] + allocated
                for token, allocated in zip(state.token_ids, allocations)
            }
            orders = plan_flush(fund, bucket, SwapDirection.STABLECOIN_TO_TOKEN)
        return MintPlan(amount, fee, stablecoin_in, allocations, share_price, shares, orders)

    def settle(self, user: str, plan: MintPlan, request_id: int) -> int:
        fund  = self.fund
        state = fund.state

        state.stablecoin.unwrap(fund.address, plan.amount)
        state.collected_fees += plan.fee

        flushed = None
        if state.add_mint_contribution(plan.allocations):
            batch_id = state.mint_batch_id
            bucket   = state.take_mint_bucket()
            flushed  = (batch_id, bucket, execute_flush(fund, plan.orders))

        state.share_token.mint(fund.address, user, plan.shares)
        price = fund.accountant.recompute_share_price(state)

        # events last: nothing below can fail and roll the settlement back
        if flushed is not None:
            batch_id, bucket, outputs = flushed
            fund.events.emit(EventType.MINT_SWAP_BATCH_EXECUTED, {
                "batch_id":    batch_id,
                "amounts_in":  bucket,
                "amounts_out": outputs,
            })
        fund.events.emit(EventType.SHARES_MINTED, {
            "user":        user,
            "request_id":  request_id,
            "shares":      plan.shares,
            "share_price": plan.share_price,
            "fee":         plan.fee,
        })
        log.info(
            "fund %s minted %d shares to %s at %d (now %d)",
            fund.fund_id, plan.shares, user, plan.share_price, price,
        )
        return plan.shares
