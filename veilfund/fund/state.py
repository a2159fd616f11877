"""
FundState: configuration and mutable accounting for one fund.

Collaborator handles (tokens, share ledger) are fixed at creation. The
accounting below them (buckets, counters, fees, pending records) is what
snapshot()/restore() cover, so a failed entry point leaves the fund exactly
as it found it.
"""

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Sequence, Set, Tuple

from veilfund.adapters.swaps import PoolKey
from veilfund.confidential.token import ConfidentialToken, PlainToken
from veilfund.core.exceptions import ConfigurationError
from veilfund.fund.correlator import PendingRequest, RequestCorrelator


@dataclass(frozen=True)
class FactoryTerms:
    """Factory configuration captured once when the fund is created."""
    fee_divisor:         int
    protocol_owner:      str
    default_share_price: int


class WithdrawalKind(Enum):
    UNDERLYING = "underlying"
    STABLECOIN = "stablecoin"


@dataclass
class PendingMintAmount:
    """A validated deposit waiting for finish_mint_shares()."""
    user:    str
    amount:  int
    request: PendingRequest


@dataclass
class PendingWithdrawal:
    """Redemption computed by a burn callback, paid out by a claim call."""
    user:              str
    kind:              WithdrawalKind
    batch_id:          int
    shares_burned:     int
    amounts_by_token:  Dict[str, int]
    # wrapped stablecoin from the unswapped mint bucket, owed on claim
    stablecoin_amount: int = 0


@dataclass
class SettledBurnBatch:
    """Inputs and proceeds of one token -> stablecoin flush."""
    batch_id:           int
    amount_in_by_token: Dict[str, int]
    proceeds_by_token:  Dict[str, int]

    @property
    def total_proceeds(self) -> int:
        return sum(self.proceeds_by_token.values())

    def payout_for(self, contribution: Dict[str, int]) -> int:
        payout = 0
        for token, amount in contribution.items():
            amount_in = self.amount_in_by_token.get(token, 0)
            if amount_in:
                payout += self.proceeds_by_token.get(token, 0) * amount // amount_in
        return payout


# Fields restored on failure. Everything else on FundState is immutable
# configuration or a collaborator handle.
_ACCOUNTING_FIELDS = (
    "share_price",
    "collected_fees",
    "pending_mint_count",
    "pending_burn_count",
    "pending_redeem_count",
    "pending_mint_amount_by_token",
    "pending_burn_amount_by_token",
    "reserved_by_token",
    "stablecoin_owed",
    "mint_batch_id",
    "burn_batch_id",
    "redeem_batch_id",
    "released_redeem_batches",
    "settled_burn_batches",
    "requests",
    "pending_mints",
    "pending_withdrawals",
)


@dataclass
class FundState:
    fund_id:                 str
    index_tokens:            Tuple[PlainToken, ...]
    pool_keys:               Tuple[PoolKey, ...]
    stablecoin:              ConfidentialToken
    plain_stablecoin:        PlainToken
    share_token:             ConfidentialToken
    terms:                   FactoryTerms
    batch_size:              int
    max_swap_amount:         int
    max_mint_or_burn_amount: int
    share_price:             int = 0
    stablecoin_scale:        int = 1

    collected_fees:       int = 0
    pending_mint_count:   int = 0
    pending_burn_count:   int = 0
    pending_redeem_count: int = 0
    pending_mint_amount_by_token: Dict[str, int] = field(default_factory=dict)
    pending_burn_amount_by_token: Dict[str, int] = field(default_factory=dict)
    # index tokens still held by the fund but owed to burners
    reserved_by_token:            Dict[str, int] = field(default_factory=dict)
    # wrapped stablecoin held by the fund but owed to burners
    stablecoin_owed:              int = 0

    mint_batch_id:   int = 0
    burn_batch_id:   int = 0
    redeem_batch_id: int = 0
    released_redeem_batches: Set[int]                   = field(default_factory=set)
    settled_burn_batches:    Dict[int, SettledBurnBatch] = field(default_factory=dict)

    requests:            RequestCorrelator                  = field(default_factory=RequestCorrelator)
    pending_mints:       Dict[str, List[PendingMintAmount]] = field(default_factory=dict)
    pending_withdrawals: Dict[str, List[PendingWithdrawal]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.index_tokens = tuple(self.index_tokens)
        self.pool_keys    = tuple(self.pool_keys)
        if not self.index_tokens:
            raise ConfigurationError("A fund needs at least one index token")
        if len(self.index_tokens) != len(self.pool_keys):
            raise ConfigurationError(
                "index_tokens and pool_keys must align",
                {"tokens": len(self.index_tokens), "pool_keys": len(self.pool_keys)},
            )
        if len(set(self.token_ids)) != len(self.token_ids):
            raise ConfigurationError("index tokens must be distinct")
        if self.batch_size < 1:
            raise ConfigurationError("batch_size must be >= 1", {"batch_size": self.batch_size})
        if self.terms.fee_divisor < 1:
            raise ConfigurationError("fee_divisor must be >= 1", {"fee_divisor": self.terms.fee_divisor})
        if self.stablecoin_scale < 1:
            raise ConfigurationError("stablecoin_scale must be >= 1")
        if self.share_price <= 0:
            self.share_price = self.terms.default_share_price
        if self.share_price <= 0:
            raise ConfigurationError("default share price must be positive")
        for token in self.token_ids:
            self.pending_mint_amount_by_token.setdefault(token, 0)
            self.pending_burn_amount_by_token.setdefault(token, 0)
            self.reserved_by_token.setdefault(token, 0)

    # ── Configuration views ───────────────────────────────────

    @property
    def token_ids(self) -> List[str]:
        return [t.address for t in self.index_tokens]

    @property
    def fee_divisor(self) -> int:
        return self.terms.fee_divisor

    @property
    def protocol_owner(self) -> str:
        return self.terms.protocol_owner

    def token(self, address: str) -> PlainToken:
        for t in self.index_tokens:
            if t.address == address:
                return t
        raise KeyError(address)

    def pool_for(self, address: str) -> PoolKey:
        return self.pool_keys[self.token_ids.index(address)]

    # ── Mint-side bucket ──────────────────────────────────────

    def add_mint_contribution(self, allocations: Sequence[int]) -> bool:
        """Accumulate one deposit's allocations. Returns True when the batch is full."""
        for token, amount in zip(self.token_ids, allocations):
            self.pending_mint_amount_by_token[token] += amount
        self.pending_mint_count += 1
        return self.pending_mint_count >= self.batch_size

    def take_mint_bucket(self) -> Dict[str, int]:
        """Hand over the accumulated bucket and reset counter and bucket to zero."""
        bucket = dict(self.pending_mint_amount_by_token)
        for token in self.token_ids:
            self.pending_mint_amount_by_token[token] = 0
        self.pending_mint_count = 0
        self.mint_batch_id += 1
        return bucket

    # ── Burn-side bucket ──────────────────────────────────────

    def add_burn_contribution(self, amounts: Dict[str, int]) -> bool:
        for token, amount in amounts.items():
            self.pending_burn_amount_by_token[token] += amount
            self.reserved_by_token[token] += amount
        self.pending_burn_count += 1
        return self.pending_burn_count >= self.batch_size

    def take_burn_bucket(self) -> Tuple[int, Dict[str, int]]:
        """Returns (batch id, bucket); the bucket's tokens stop being reserved."""
        batch_id = self.burn_batch_id
        bucket = dict(self.pending_burn_amount_by_token)
        for token in self.token_ids:
            self.reserved_by_token[token] -= bucket[token]
            self.pending_burn_amount_by_token[token] = 0
        self.pending_burn_count = 0
        self.burn_batch_id += 1
        return batch_id, bucket

    # ── Redemption batches (underlying tokens) ────────────────

    def add_redeem_contribution(self, amounts: Dict[str, int]) -> Tuple[int, bool]:
        """Reserve tokens for a direct redemption. Returns (batch id, batch released)."""
        batch_id = self.redeem_batch_id
        for token, amount in amounts.items():
            self.reserved_by_token[token] += amount
        self.pending_redeem_count += 1
        if self.pending_redeem_count >= self.batch_size:
            self.released_redeem_batches.add(batch_id)
            self.pending_redeem_count = 0
            self.redeem_batch_id += 1
            return batch_id, True
        return batch_id, False

    # ── Per-user records ──────────────────────────────────────

    def add_withdrawal(self, withdrawal: PendingWithdrawal) -> None:
        self.pending_withdrawals.setdefault(withdrawal.user, []).append(withdrawal)

    def withdrawals_of(self, user: str, kind: WithdrawalKind) -> List[PendingWithdrawal]:
        return [w for w in self.pending_withdrawals.get(user, []) if w.kind is kind]

    def remove_withdrawal(self, withdrawal: PendingWithdrawal) -> None:
        remaining = [w for w in self.pending_withdrawals.get(withdrawal.user, []) if w is not withdrawal]
        if remaining:
            self.pending_withdrawals[withdrawal.user] = remaining
        else:
            self.pending_withdrawals.pop(withdrawal.user, None)

    def is_withdrawal_ready(self, withdrawal: PendingWithdrawal) -> bool:
        if withdrawal.kind is WithdrawalKind.UNDERLYING:
            return withdrawal.batch_id in self.released_redeem_batches
        return withdrawal.batch_id in self.settled_burn_batches

    # ── Snapshot / restore ────────────────────────────────────

    def snapshot(self) -> dict:
        return {name: copy.deepcopy(getattr(self, name)) for name in _ACCOUNTING_FIELDS}

    def restore(self, snapshot: dict) -> None:
        for name, value in snapshot.items():
            setattr(self, name, value)

    def summary(self) -> dict:
        return {
            "fund_id":                      self.fund_id,
            "share_price":                  self.share_price,
            "share_supply":                 self.share_token.total_supply,
            "collected_fees":               self.collected_fees,
            "pending_mint_count":           self.pending_mint_count,
            "pending_burn_count":           self.pending_burn_count,
            "pending_redeem_count":         self.pending_redeem_count,
            "pending_mint_amount_by_token": dict(self.pending_mint_amount_by_token),
            "pending_burn_amount_by_token": dict(self.pending_burn_amount_by_token),
            "reserved_by_token":            dict(self.reserved_by_token),
            "stablecoin_owed":              self.stablecoin_owed,
            "pending_requests":             len(self.requests),
        }
