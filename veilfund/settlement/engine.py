"""
ConfidentialIndexFund: the entry points of one fund.

Every state-mutating entry point is @guarded (one call at a time per fund;
accounting and token ledgers restored if the call raises). Callbacks accept
only the oracle's identity; the fee sweep only the protocol owner.

Settlement failures the depositor did not cause (bounds, prices, slippage,
venue liquidity) roll the settlement back, refund the request and record a
rejection. Anything else rolls the whole call back and propagates, which
leaves the oracle request queued for another delivery.
"""

import logging
import threading
from typing import Dict, List, Optional, Union

from veilfund.adapters.market_data import MarketDataProvider
from veilfund.adapters.swaps import SwapVenue
from veilfund.confidential.ciphertext import Ciphertext, FheContext
from veilfund.confidential.oracle import DecryptionOracle
from veilfund.confidential.token import ConfidentialToken, PlainToken
from veilfund.core.exceptions import (
    NoPendingAction,
    RequestNotExpired,
    UnauthorizedCaller,
    VeilFundError,
)
from veilfund.core.time import Clock
from veilfund.events.ledger import EventLedger
from veilfund.events.models import EventType
from veilfund.fund.accountant import ShareAccountant
from veilfund.fund.correlator import PendingRequest, RequestKind
from veilfund.fund.state import FundState
from veilfund.settlement.burn import BurnPipeline
from veilfund.settlement.guard import guarded
from veilfund.settlement.mint import MintPipeline


log = logging.getLogger(__name__)

DEFAULT_SWAP_DEADLINE_SECONDS       = 300
DEFAULT_DECRYPTION_DEADLINE_SECONDS = 3600
DEFAULT_CALLBACK_GAS_LIMIT          = 500_000


def fund_address(fund_id: str) -> str:
    return f"fund:{fund_id}"


class ConfidentialIndexFund:

    def __init__(
        self,
        state:       FundState,
        fhe:         FheContext,
        oracle:      DecryptionOracle,
        swap_venue:  SwapVenue,
        market_data: MarketDataProvider,
        events:      EventLedger,
        clock:       Clock,
        swap_deadline_seconds:       int  = DEFAULT_SWAP_DEADLINE_SECONDS,
        decryption_deadline_seconds: int  = DEFAULT_DECRYPTION_DEADLINE_SECONDS,
        callback_gas_limit:          int  = DEFAULT_CALLBACK_GAS_LIMIT,
        two_step_mint:               bool = False,
    ) -> None:
        self.state       = state
        self.fund_id     = state.fund_id
        self.address     = fund_address(state.fund_id)
        self.fhe         = fhe
        self.oracle      = oracle
        self.swap_venue  = swap_venue
        self.market_data = market_data
        self.events      = events
        self.clock       = clock

        self.swap_deadline_seconds       = swap_deadline_seconds
        self.decryption_deadline_seconds = decryption_deadline_seconds
        self.callback_gas_limit          = callback_gas_limit
        self.two_step_mint               = two_step_mint

        self.accountant    = ShareAccountant(market_data, self.address)
        self.mint_pipeline = MintPipeline(self)
        self.burn_pipeline = BurnPipeline(self)

        self._call_lock = threading.Lock()
        self._active_thread: Optional[int] = None

    # ── Mint ──────────────────────────────────────────────────

    @guarded
    def mint_shares(self, user: str, encrypted_amount: Ciphertext, proof: bytes) -> int:
        """Start a deposit. Returns the decryption request id."""
        return self.mint_pipeline.submit(user, encrypted_amount, proof)

    @guarded
    def mint_callback(self, request_id: int, error_code: int, amount: int, *, caller: str) -> Optional[int]:
        self._require_oracle(caller)
        return self.mint_pipeline.resolve(request_id, error_code, amount)

    @guarded
    def finish_mint_shares(self, user: str) -> int:
        return self.mint_pipeline.finish(user)

    # ── Burn ──────────────────────────────────────────────────

    @guarded
    def burn_shares(
        self,
        user:                  str,
        encrypted_amount:      Ciphertext,
        encrypted_redeem_flag: Ciphertext,
        proof:                 bytes,
    ) -> int:
        """
        Start a redemption. The flag decrypts to True for redemption in
        underlying tokens, False for redemption in stablecoin.
        """
        return self.burn_pipeline.submit(user, encrypted_amount, encrypted_redeem_flag, proof)

    @guarded
    def burn_callback(
        self,
        request_id:             int,
        error_code:             int,
        amount:                 int,
        redeem_underlying:      bool,
        has_sufficient_balance: bool,
        *,
        caller:                 str,
    ) -> Optional[Dict[str, int]]:
        self._require_oracle(caller)
        return self.burn_pipeline.resolve(
            request_id, error_code, amount, redeem_underlying, has_sufficient_balance
        )

    @guarded
    def init_redeem_after_burn(self, user: str) -> Dict[str, int]:
        """Claim released underlying-token redemptions for `user`."""
        return self.burn_pipeline.claim_underlying(user)

    @guarded
    def finish_redeem_in_stablecoin_case(self, user: str) -> int:
        """Send `user` their confidential stablecoin from settled burn batches."""
        return self.burn_pipeline.claim_stablecoin(user)

    # ── Fees ──────────────────────────────────────────────────

    @guarded
    def send_fees_to_protocol_owner(self, caller: str) -> int:
        state = self.state
        if caller != state.protocol_owner:
            raise UnauthorizedCaller("Only the protocol owner can sweep fees", {"caller": caller})
        fees = state.collected_fees
        if fees == 0:
            raise NoPendingAction("No fees to sweep", {"fund_id": self.fund_id})

        state.collected_fees = 0
        state.plain_stablecoin.transfer(self.address, state.protocol_owner, fees)
        self.events.emit(EventType.FEE_COLLECTED, {"recipient": state.protocol_owner, "amount": fees})
        log.info("fund %s swept %d in fees to %s", self.fund_id, fees, state.protocol_owner)
        return fees

    # ── Unanswered requests ───────────────────────────────────

    @guarded
    def cancel_expired_request(self, request_id: int, caller: str) -> None:
        """
        Unwind a request the oracle never answered. Only its requester or
        the protocol owner may cancel, and only after its deadline.
        """
        pending = self.state.requests.peek(request_id)
        if caller not in (pending.user, self.state.protocol_owner):
            raise UnauthorizedCaller("Not allowed to cancel this request", {"caller": caller})
        if self.clock.now() <= pending.deadline:
            raise RequestNotExpired(
                "Request deadline has not passed",
                {"request_id": request_id, "deadline": pending.deadline},
            )
        self.state.requests.consume(request_id)
        self._refund(pending)
        self.events.emit(EventType.REQUEST_CANCELLED, {
            "user":       pending.user,
            "request_id": request_id,
            "kind":       pending.kind.value,
        })
        log.warning("fund %s cancelled expired request %d", self.fund_id, request_id)

    # ── Shared by the pipelines ───────────────────────────────

    def reject_request(self, pending: PendingRequest, error: VeilFundError) -> None:
        """Return whatever the request moved into the fund and record why."""
        self._refund(pending)
        event_type = (
            EventType.DEPOSIT_REJECTED if pending.kind is RequestKind.MINT
            else EventType.BURN_REJECTED
        )
        self.events.emit(event_type, {
            "user":       pending.user,
            "request_id": pending.request_id,
            "reason":     type(error).__name__,
            "detail":     error.message,
        })
        log.warning(
            "fund %s rejected %s request %d: %s",
            self.fund_id, pending.kind.value, pending.request_id, error,
        )

    def ledgers(self) -> List[Union[PlainToken, ConfidentialToken]]:
        """Token ledgers a settlement can touch; transaction() rolls these back."""
        state = self.state
        return [state.plain_stablecoin, state.stablecoin, state.share_token, *state.index_tokens]

    def _refund(self, pending: PendingRequest) -> None:
        token = self.state.stablecoin if pending.kind is RequestKind.MINT else self.state.share_token
        token.transfer_indexed(self.address, pending.user, pending.refund)

    def _require_oracle(self, caller: str) -> None:
        if caller != self.oracle.address:
            raise UnauthorizedCaller("Callback caller is not the decryption oracle", {"caller": caller})

    # ── Views ─────────────────────────────────────────────────

    @property
    def share_token(self):
        return self.state.share_token

    @property
    def share_price(self) -> int:
        return self.state.share_price

    def __repr__(self) -> str:
        return (
            f"ConfidentialIndexFund(fund_id={self.fund_id!r}, "
            f"tokens={len(self.state.index_tokens)}, pending={len(self.state.requests)})"
        )
