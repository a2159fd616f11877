"""
veilfund/confidential/ciphertext.py

In-memory stand-in for the encrypted-value coprocessor.

A Ciphertext is an opaque handle. The plaintext behind it lives in the
FheContext and is reachable only through FheContext.decrypt(), which only
the DecryptionOracle calls. Everything else (tokens, the fund) works on
handles with the encrypted operators below, so no call site ever branches
on a hidden value.
"""

import hashlib
import hmac
import secrets
import threading
from dataclasses import dataclass
from enum import IntEnum
from typing import Dict, Sequence, Tuple

from veilfund.core.exceptions import ValidationError


UINT64_MASK = (1 << 64) - 1


class ErrorCode(IntEnum):
    """Codes written to a confidential token's encrypted error log."""
    NO_ERROR              = 0
    UNSUFFICIENT_BALANCE  = 1
    UNSUFFICIENT_APPROVAL = 2


class CipherKind:
    UINT64 = "euint64"
    BOOL   = "ebool"
    UINT8  = "euint8"


@dataclass(frozen=True)
class Ciphertext:
    handle: int
    kind:   str = CipherKind.UINT64

    def __repr__(self) -> str:
        return f"Ciphertext({self.kind}#{self.handle})"


@dataclass(frozen=True)
class EncryptedInput:
    """User-supplied ciphertexts plus one proof binding them to (user, contract)."""
    handles: Tuple[Ciphertext, ...]
    proof:   bytes


class FheContext:
    """
    Holds plaintexts for every handle it issued and evaluates encrypted
    arithmetic. uint64 arithmetic wraps modulo 2**64.
    """

    def __init__(self) -> None:
        self._lock                         = threading.Lock()
        self._plaintexts: Dict[int, int]   = {}
        self._next_handle                  = 1
        self._input_secret                 = secrets.token_bytes(32)

    # ── Encryption ────────────────────────────────────────────

    def encrypt(self, value: int, kind: str = CipherKind.UINT64) -> Ciphertext:
        """Trivially encrypt a public value."""
        if kind == CipherKind.BOOL:
            value = 1 if value else 0
        elif value < 0 or value > UINT64_MASK:
            raise ValidationError("value out of uint64 range", {"value": value})
        with self._lock:
            handle = self._next_handle
            self._next_handle += 1
            self._plaintexts[handle] = int(value)
        return Ciphertext(handle=handle, kind=kind)

    def encrypt_bool(self, value: bool) -> Ciphertext:
        return self.encrypt(1 if value else 0, CipherKind.BOOL)

    def encrypt_input(self, user: str, contract: str, *values) -> EncryptedInput:
        """
        Client side: encrypt values for submission to `contract` by `user`.
        bool values become ebool, ints euint64. The proof only verifies for
        these exact handles, in this order, from this user to this contract.
        """
        handles = tuple(
            self.encrypt_bool(v) if isinstance(v, bool) else self.encrypt(v)
            for v in values
        )
        return EncryptedInput(handles=handles, proof=self._input_proof(handles, user, contract))

    def verify_input(
        self,
        handles:  Sequence[Ciphertext],
        proof:    bytes,
        user:     str,
        contract: str,
    ) -> Tuple[Ciphertext, ...]:
        """Contract side: accept user ciphertexts only with a matching proof."""
        handles  = tuple(handles)
        expected = self._input_proof(handles, user, contract)
        if not isinstance(proof, (bytes, bytearray)) or not hmac.compare_digest(expected, bytes(proof)):
            raise ValidationError("Invalid input proof", {"user": user, "contract": contract})
        return handles

    def _input_proof(self, handles: Sequence[Ciphertext], user: str, contract: str) -> bytes:
        body = ",".join(f"{ct.handle}/{ct.kind}" for ct in handles)
        message = f"{body}:{user}:{contract}".encode()
        return hmac.new(self._input_secret, message, hashlib.sha256).digest()

    # ── Encrypted operators ───────────────────────────────────

    def add(self, a: Ciphertext, b: Ciphertext) -> Ciphertext:
        x, y = self._pair(a, b)
        return self.encrypt((x + y) & UINT64_MASK)

    def sub(self, a: Ciphertext, b: Ciphertext) -> Ciphertext:
        x, y = self._pair(a, b)
        return self.encrypt((x - y) & UINT64_MASK)

    def le(self, a: Ciphertext, b: Ciphertext) -> Ciphertext:
        x, y = self._pair(a, b)
        return self.encrypt_bool(x <= y)

    def and_(self, a: Ciphertext, b: Ciphertext) -> Ciphertext:
        x, y = self._pair(a, b)
        return self.encrypt_bool(bool(x) and bool(y))

    def select(self, cond: Ciphertext, if_true: Ciphertext, if_false: Ciphertext) -> Ciphertext:
        with self._lock:
            chosen = if_true if self._plaintexts[cond.handle] else if_false
            value  = self._plaintexts[chosen.handle]
        return self.encrypt(value, chosen.kind)

    # ── Decryption (oracle only) ──────────────────────────────

    def decrypt(self, ct: Ciphertext) -> int:
        with self._lock:
            try:
                value = self._plaintexts[ct.handle]
            except KeyError:
                raise ValidationError("Unknown ciphertext handle", {"handle": ct.handle})
        return bool(value) if ct.kind == CipherKind.BOOL else value

    def _pair(self, a: Ciphertext, b: Ciphertext) -> Tuple[int, int]:
        with self._lock:
            return self._plaintexts[a.handle], self._plaintexts[b.handle]
