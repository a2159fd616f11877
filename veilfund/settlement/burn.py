"""
Burn pipeline.

    submit()            shares + redeem flag in, encrypted balance check,
                        decryption request
    resolve()           oracle callback: validate, burn, compute pro-rata
                        token amounts, then either reserve them for direct
                        redemption or push them into the burn bucket
    claim_underlying()  pay out released direct redemptions
    claim_stablecoin()  pay out a user's share of settled burn batches

A burner also takes their pro-rata part of the mint bucket that has not
been swapped yet. It leaves the bucket, is wrapped and is paid with the
claim, so no burn prices in stablecoin it cannot pay out.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from veilfund.adapters.swaps import SwapDirection
from veilfund.confidential.ciphertext import Ciphertext, ErrorCode
from veilfund.core.exceptions import (
    AmountExceedsBound,
    BatchNotReady,
    InsufficientBalance,
    NoPendingAction,
    TransferValidationFailed,
)
from veilfund.events.models import EventType
from veilfund.fund.allocator import BatchAllocator
from veilfund.fund.correlator import PendingRequest, RequestKind
from veilfund.fund.state import PendingWithdrawal, SettledBurnBatch, WithdrawalKind
from veilfund.settlement.batching import SwapOrder, execute_flush, plan_flush
from veilfund.settlement.guard import transaction
from veilfund.settlement.mint import REFUNDABLE_ERRORS


log = logging.getLogger(__name__)


@dataclass
class BurnPlan:
    amount:            int
    supply_before:     int
    redeem_underlying: bool
    amounts_by_token:  Dict[str, int]
    bucket_share:      Dict[str, int]
    orders:            List[SwapOrder] = field(default_factory=list)


class BurnPipeline:

    def __init__(self, fund) -> None:
        self.fund = fund

    def submit(
        self,
        user:                  str,
        encrypted_amount:      Ciphertext,
        encrypted_redeem_flag: Ciphertext,
        proof:                 bytes,
    ) -> int:
        fund   = self.fund
        state  = fund.state
        shares = state.share_token

        amount, redeem_flag = fund.fhe.verify_input(
            (encrypted_amount, encrypted_redeem_flag), proof, user, fund.address
        )
        has_balance = fund.fhe.le(amount, shares.balance_of(user))
        receipt = shares.transfer_from_indexed(fund.address, user, fund.address, amount)
        error_code = shares.error_at(receipt.error_id)

        deadline = fund.clock.now() + fund.decryption_deadline_seconds
        request_id = fund.oracle.request_decryption(
            [error_code, amount, redeem_flag, has_balance],
            callback=  fund.burn_callback,
            gas_limit= fund.callback_gas_limit,
            deadline=  deadline,
            trusted=   False,
        )
        state.requests.register(PendingRequest(
            request_id= request_id,
            user=       user,
            kind=       RequestKind.BURN,
            deadline=   deadline,
            refund=     receipt.transferred,
            error_id=   receipt.error_id,
        ))
        log.debug("burn request %d submitted by %s", request_id, user)
        return request_id

    def resolve(
        self,
        request_id:             int,
        error_code:             int,
        amount:                 int,
        redeem_underlying:      bool,
        has_sufficient_balance: bool,
    ) -> Optional[Dict[str, int]]:
        """Returns the per-token redemption amounts, or None when rejected."""
        fund    = self.fund
        state   = fund.state
        pending = state.requests.consume(request_id, RequestKind.BURN)

        if not has_sufficient_balance:
            fund.reject_request(pending, InsufficientBalance(
                "Burn exceeds share balance", {"amount": amount}
            ))
            return None
        if error_code != ErrorCode.NO_ERROR:
            fund.reject_request(pending, TransferValidationFailed(
                "Share transfer failed", {"error_code": int(error_code)}
            ))
            return None
        if amount > state.max_mint_or_burn_amount:
            fund.reject_request(pending, AmountExceedsBound(
                "Burn over bound",
                {"amount": amount, "max_mint_or_burn_amount": state.max_mint_or_burn_amount},
            ))
            return None

        try:
            with transaction(fund):
                plan = self.plan(amount, bool(redeem_underlying))
                self.settle(pending.user, plan, request_id)
        except REFUNDABLE_ERRORS as exc:
            fund.reject_request(pending, exc)
            return None
        return plan.amounts_by_token

    def plan(self, amount: int, redeem_underlying: bool) -> BurnPlan:
        fund  = self.fund
        state = fund.state

        supply = state.share_token.total_supply
        amounts = {
            token: (
                BatchAllocator.pro_rata(fund.accountant.holdings(state, token), amount, supply)
                if amount else 0
            )
            for token in state.token_ids
        }
        bucket_share = fund.accountant.bucket_share(state, amount, supply)
        # surfaces a missing price before anything moves
        fund.accountant.compute_share_price(state)

        orders: List[SwapOrder] = []
        if not redeem_underlying and state.pending_burn_count + 1 >= state.batch_size:
            bucket = {
                token: state.pending_burn_amount_by_token[token] + amounts[token]
                for token in state.token_ids
            }
            orders = plan_flush(fund, bucket, SwapDirection.TOKEN_TO_STABLECOIN)
        return BurnPlan(amount, supply, redeem_underlying, amounts, bucket_share, orders)

    def settle(self, user: str, plan: BurnPlan, request_id: int) -> None:
        fund  = self.fund
        state = fund.state

        fund.accountant.recompute_share_price(state, require_positive=False)
        state.share_token.burn(fund.address, fund.address, plan.amount)

        from_bucket = self._take_bucket_share(plan.bucket_share)

        flushed = None
        if plan.redeem_underlying:
            batch_id, released = state.add_redeem_contribution(plan.amounts_by_token)
            state.add_withdrawal(PendingWithdrawal(
                user, WithdrawalKind.UNDERLYING, batch_id, plan.amount, plan.amounts_by_token, from_bucket
            ))
            if released:
                log.info("fund %s released redemption batch %d", fund.fund_id, batch_id)
        else:
            batch_id = state.burn_batch_id
            state.add_withdrawal(PendingWithdrawal(
                user, WithdrawalKind.STABLECOIN, batch_id, plan.amount, plan.amounts_by_token, from_bucket
            ))
            if state.add_burn_contribution(plan.amounts_by_token):
                flushed = self._flush(plan.orders)

        price = fund.accountant.recompute_share_price(state, require_positive=False)

        # events last: nothing below can fail and roll the settlement back
        fund.events.emit(EventType.SHARES_BURNED, {
            "user":              user,
            "request_id":        request_id,
            "shares":            plan.amount,
            "share_price":       price,
            "redeem":            "underlying" if plan.redeem_underlying else "stablecoin",
            "amounts_by_token":  dict(plan.amounts_by_token),
            "stablecoin_amount": from_bucket,
        })
        if flushed is not None:
            fund.events.emit(EventType.BURN_SWAP_BATCH_EXECUTED, flushed)
        log.info("fund %s burned %d shares from %s", fund.fund_id, plan.amount, user)

    def _take_bucket_share(self, bucket_share: Dict[str, int]) -> int:
        """
        Move a burner's part of the unswapped mint bucket out of the bucket
        and into wrapped stablecoin the fund owes them. Returns the amount.
        """
        fund  = self.fund
        state = fund.state

        total = sum(bucket_share.values())
        if total == 0:
            return 0
        for token, amount in bucket_share.items():
            state.pending_mint_amount_by_token[token] -= amount
        state.plain_stablecoin.approve(fund.address, state.stablecoin.address, total)
        state.stablecoin.wrap(fund.address, total)
        state.stablecoin_owed += total
        return total

    def _flush(self, orders: List[SwapOrder]) -> dict:
        """Swap the burn bucket to stablecoin. Returns the batch event payload."""
        fund  = self.fund
        state = fund.state

        batch_id, bucket = state.take_burn_bucket()
        outputs = execute_flush(fund, orders)
        proceeds = sum(outputs.values())
        if proceeds:
            state.plain_stablecoin.approve(fund.address, state.stablecoin.address, proceeds)
            state.stablecoin.wrap(fund.address, proceeds)
        state.stablecoin_owed += proceeds
        state.settled_burn_batches[batch_id] = SettledBurnBatch(batch_id, bucket, outputs)
        return {
            "batch_id":       batch_id,
            "amounts_in":     bucket,
            "amounts_out":    outputs,
            "total_proceeds": proceeds,
        }

    def claim_underlying(self, user: str) -> Dict[str, int]:
        fund  = self.fund
        state = fund.state

        ready = self._ready_withdrawals(user, WithdrawalKind.UNDERLYING)
        paid = {token: 0 for token in state.token_ids}
        stablecoin = 0
        for withdrawal in ready:
            for token, amount in withdrawal.amounts_by_token.items():
                state.reserved_by_token[token] -= amount
                paid[token] += amount
            stablecoin += withdrawal.stablecoin_amount
            state.remove_withdrawal(withdrawal)

        for token, amount in paid.items():
            if amount:
                state.token(token).transfer(fund.address, user, amount)
        if stablecoin:
            self._pay_stablecoin(user, stablecoin)

        fund.events.emit(EventType.TOKENS_REDEEMED, {
            "user":             user,
            "batches":          sorted({w.batch_id for w in ready}),
            "amounts_by_token": paid,
        })
        return paid

    def claim_stablecoin(self, user: str) -> int:
        fund  = self.fund
        state = fund.state

        ready = self._ready_withdrawals(user, WithdrawalKind.STABLECOIN)
        payout = 0
        for withdrawal in ready:
            batch = state.settled_burn_batches[withdrawal.batch_id]
            payout += batch.payout_for(withdrawal.amounts_by_token) + withdrawal.stablecoin_amount
            state.remove_withdrawal(withdrawal)

        self._pay_stablecoin(user, payout)
        fund.events.emit(EventType.STABLECOIN_REDEEMED, {
            "user":    user,
            "batches": sorted({w.batch_id for w in ready}),
        })
        return payout

    def _pay_stablecoin(self, user: str, amount: int) -> None:
        fund  = self.fund
        state = fund.state
        state.stablecoin_owed -= amount
        state.stablecoin.transfer_indexed(fund.address, user, fund.fhe.encrypt(amount))

    def _ready_withdrawals(self, user: str, kind: WithdrawalKind) -> List[PendingWithdrawal]:
        state = self.fund.state
        records = state.withdrawals_of(user, kind)
        if not records:
            raise NoPendingAction(f"No pending {kind.value} redemption", {"user": user})
        ready = [w for w in records if state.is_withdrawal_ready(w)]
        if not ready:
            raise BatchNotReady(
                f"{kind.value} redemption batch not flushed yet",
                {"user": user, "batches": sorted({w.batch_id for w in records})},
            )
        return ready
