"""
veilfund/confidential/token.py

Plain and confidential token ledgers used by the fund.

ConfidentialToken keeps encrypted balances and allowances. A transfer never
reports its real outcome at the call site: it always returns True and
appends one encrypted ErrorCode to an append-only error log. Consumers read
the id of the entry their transfer appended and decrypt it later.

The *_indexed variants return that id from under the token lock, so no other
transfer can append between the transfer and the read.
"""

import threading
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from veilfund.confidential.ciphertext import (
    CipherKind,
    Ciphertext,
    ErrorCode,
    FheContext,
)
from veilfund.core.exceptions import (
    AuthorizationError,
    InsufficientBalance,
    ValidationError,
)


class PlainToken:
    """ERC20-like public ledger."""

    def __init__(self, symbol: str, decimals: int = 18, address: Optional[str] = None) -> None:
        self.symbol   = symbol
        self.decimals = decimals
        self.address  = address or f"token:{symbol}"
        self.total_supply = 0
        self.lock = threading.RLock()
        self._balances:   Dict[str, int]             = {}
        self._allowances: Dict[Tuple[str, str], int] = {}

    def balance_of(self, owner: str) -> int:
        return self._balances.get(owner, 0)

    def allowance(self, owner: str, spender: str) -> int:
        return self._allowances.get((owner, spender), 0)

    def mint(self, to: str, amount: int) -> None:
        _require_non_negative(amount)
        with self.lock:
            self._balances[to] = self.balance_of(to) + amount
            self.total_supply += amount

    def approve(self, owner: str, spender: str, amount: int) -> None:
        _require_non_negative(amount)
        with self.lock:
            self._allowances[(owner, spender)] = amount

    def transfer(self, sender: str, to: str, amount: int) -> None:
        _require_non_negative(amount)
        with self.lock:
            balance = self.balance_of(sender)
            if amount > balance:
                raise InsufficientBalance(
                    f"{self.symbol}: transfer exceeds balance",
                    {"owner": sender, "balance": balance, "amount": amount},
                )
            self._balances[sender] = balance - amount
            self._balances[to] = self.balance_of(to) + amount

    def transfer_from(self, spender: str, owner: str, to: str, amount: int) -> None:
        with self.lock:
            allowed = self.allowance(owner, spender)
            if amount > allowed:
                raise AuthorizationError(
                    f"{self.symbol}: transfer exceeds allowance",
                    {"owner": owner, "spender": spender, "allowance": allowed, "amount": amount},
                )
            self.transfer(owner, to, amount)
            self._allowances[(owner, spender)] = allowed - amount

    # ── Rollback ──────────────────────────────────────────────

    def snapshot(self) -> tuple:
        with self.lock:
            return dict(self._balances), dict(self._allowances), self.total_supply

    def restore(self, snapshot: tuple) -> None:
        with self.lock:
            balances, allowances, self.total_supply = snapshot
            self._balances   = dict(balances)
            self._allowances = dict(allowances)

    def __repr__(self) -> str:
        return f"PlainToken({self.symbol}, decimals={self.decimals})"


@dataclass(frozen=True)
class TransferReceipt:
    """
    What the indexed transfer variants hand back.

    ok is always True. error_id points at the encrypted ErrorCode this
    transfer appended; transferred is the encrypted amount that actually
    moved (the requested amount, or zero on failure).
    """
    ok:          bool
    error_id:    int
    transferred: Ciphertext


class ConfidentialToken:
    """
    Encrypted-balance token with the encrypted error-code channel.

    minter may mint/burn (share token hooks). underlying, when set, backs
    wrap()/unwrap() one to one.
    """

    def __init__(
        self,
        fhe:        FheContext,
        symbol:     str,
        decimals:   int = 6,
        address:    Optional[str] = None,
        underlying: Optional[PlainToken] = None,
        minter:     Optional[str] = None,
    ) -> None:
        self.fhe        = fhe
        self.symbol     = symbol
        self.decimals   = decimals
        self.address    = address or f"ctoken:{symbol}"
        self.underlying = underlying
        self.minter     = minter
        self.total_supply = 0

        self.lock = threading.RLock()
        self._balances:   Dict[str, Ciphertext]             = {}
        self._allowances: Dict[Tuple[str, str], Ciphertext] = {}
        self._error_log:  List[Ciphertext]                  = []
        self._zero = fhe.encrypt(0)

    # ── Views ─────────────────────────────────────────────────

    def balance_of(self, owner: str) -> Ciphertext:
        return self._balances.get(owner, self._zero)

    def allowance(self, owner: str, spender: str) -> Ciphertext:
        return self._allowances.get((owner, spender), self._zero)

    def error_log_length(self) -> int:
        return len(self._error_log)

    def error_at(self, error_id: int) -> Ciphertext:
        if not 0 <= error_id < len(self._error_log):
            raise ValidationError("Unknown error id", {"error_id": error_id})
        return self._error_log[error_id]

    # ── Allowances ────────────────────────────────────────────

    def approve(self, owner: str, spender: str, amount: Ciphertext) -> bool:
        with self.lock:
            self._allowances[(owner, spender)] = amount
        return True

    # ── Transfers ─────────────────────────────────────────────

    def transfer(self, sender: str, to: str, amount: Ciphertext) -> bool:
        self.transfer_indexed(sender, to, amount)
        return True

    def transfer_from(self, spender: str, owner: str, to: str, amount: Ciphertext) -> bool:
        self.transfer_from_indexed(spender, owner, to, amount)
        return True

    def transfer_indexed(self, sender: str, to: str, amount: Ciphertext) -> TransferReceipt:
        with self.lock:
            can_pay = self.fhe.le(amount, self.balance_of(sender))
            code = self.fhe.select(
                can_pay,
                self._code(ErrorCode.NO_ERROR),
                self._code(ErrorCode.UNSUFFICIENT_BALANCE),
            )
            return self._move(sender, to, amount, can_pay, code)

    def transfer_from_indexed(
        self,
        spender: str,
        owner:   str,
        to:      str,
        amount:  Ciphertext,
    ) -> TransferReceipt:
        with self.lock:
            allowed = self.allowance(owner, spender)
            can_pay     = self.fhe.le(amount, self.balance_of(owner))
            can_spend   = self.fhe.le(amount, allowed)
            ok          = self.fhe.and_(can_pay, can_spend)
            code = self.fhe.select(
                can_pay,
                self.fhe.select(
                    can_spend,
                    self._code(ErrorCode.NO_ERROR),
                    self._code(ErrorCode.UNSUFFICIENT_APPROVAL),
                ),
                self._code(ErrorCode.UNSUFFICIENT_BALANCE),
            )
            receipt = self._move(owner, to, amount, ok, code)
            self._allowances[(owner, spender)] = self.fhe.sub(allowed, receipt.transferred)
            return receipt

    def _move(
        self,
        sender: str,
        to:     str,
        amount: Ciphertext,
        ok:     Ciphertext,
        code:   Ciphertext,
    ) -> TransferReceipt:
        moved = self.fhe.select(ok, amount, self._zero)
        self._balances[sender] = self.fhe.sub(self.balance_of(sender), moved)
        self._balances[to]     = self.fhe.add(self.balance_of(to), moved)
        self._error_log.append(code)
        return TransferReceipt(ok=True, error_id=len(self._error_log) - 1, transferred=moved)

    def _code(self, code: ErrorCode) -> Ciphertext:
        return self.fhe.encrypt(int(code), CipherKind.UINT8)

    # ── Mint / burn hooks ─────────────────────────────────────

    def mint(self, caller: str, to: str, amount: int) -> None:
        self._require_minter(caller)
        _require_non_negative(amount)
        with self.lock:
            self._balances[to] = self.fhe.add(self.balance_of(to), self.fhe.encrypt(amount))
            self.total_supply += amount

    def burn(self, caller: str, owner: str, amount: int) -> None:
        """Burn a publicly known amount the caller has already validated."""
        self._require_minter(caller)
        _require_non_negative(amount)
        with self.lock:
            if amount > self.total_supply:
                raise InsufficientBalance(
                    f"{self.symbol}: burn exceeds total supply",
                    {"total_supply": self.total_supply, "amount": amount},
                )
            self._balances[owner] = self.fhe.sub(self.balance_of(owner), self.fhe.encrypt(amount))
            self.total_supply -= amount

    def _require_minter(self, caller: str) -> None:
        if self.minter is None or caller != self.minter:
            raise AuthorizationError(
                f"{self.symbol}: only the minter may mint or burn", {"caller": caller}
            )

    # ── Wrapping ──────────────────────────────────────────────

    def wrap(self, owner: str, amount: int) -> None:
        """Pull `amount` of the underlying from owner (needs allowance) and credit it encrypted."""
        underlying = self._require_underlying()
        with self.lock:
            underlying.transfer_from(self.address, owner, self.address, amount)
            self._balances[owner] = self.fhe.add(self.balance_of(owner), self.fhe.encrypt(amount))
            self.total_supply += amount

    def unwrap(self, owner: str, amount: int) -> None:
        """
        Release `amount` of the underlying to owner. The caller must already
        know (from a decrypted value) that owner holds at least `amount`.
        """
        underlying = self._require_underlying()
        with self.lock:
            if amount > self.total_supply:
                raise InsufficientBalance(
                    f"{self.symbol}: unwrap exceeds wrapped supply",
                    {"total_supply": self.total_supply, "amount": amount},
                )
            self._balances[owner] = self.fhe.sub(self.balance_of(owner), self.fhe.encrypt(amount))
            self.total_supply -= amount
            underlying.transfer(self.address, owner, amount)

    # ── Rollback ──────────────────────────────────────────────

    def snapshot(self) -> tuple:
        """
        Balances, allowances, error log and supply. Ciphertexts are
        immutable, so shallow copies are enough.
        """
        with self.lock:
            return (
                dict(self._balances),
                dict(self._allowances),
                list(self._error_log),
                self.total_supply,
            )

    def restore(self, snapshot: tuple) -> None:
        with self.lock:
            balances, allowances, error_log, self.total_supply = snapshot
            self._balances   = dict(balances)
            self._allowances = dict(allowances)
            self._error_log  = list(error_log)

    def _require_underlying(self) -> PlainToken:
        if self.underlying is None:
            raise ValidationError(f"{self.symbol} has no underlying token")
        return self.underlying

    def __repr__(self) -> str:
        return f"ConfidentialToken({self.symbol}, errors={len(self._error_log)})"


def _require_non_negative(amount: int) -> None:
    if not isinstance(amount, int) or amount < 0:
        raise ValidationError("amount must be a non-negative int", {"amount": amount})
