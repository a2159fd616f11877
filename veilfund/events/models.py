"""
veilfund/events/models.py

Fund event envelope.

CONTRACT 1: Signing
    bytes_signed = canonicalize(event.to_signing_dict())
    algorithm    = Ed25519, base64url without padding

CONTRACT 2: Chain
    causal_hash  = SHA-256(canonicalize(prev.to_signing_dict()))
    first event  = GENESIS_HASH ("0" * 64)

CONTRACT 3: Vocabulary
    event_type must be an EventType constant; enforced at create(),
    reported by validate_schema() for persisted data.
"""

import hashlib
import re
import secrets
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set

from veilfund.core.canonical import canonicalize
from veilfund.core.crypto import SigningKey
from veilfund.core.time import event_timestamp


GENESIS_HASH = "0" * 64

_NONCE_HEX_LENGTH = 32

_TIMESTAMP_RE = re.compile(
    r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z$"
)


class EventType:
    """Closed vocabulary of fund events."""
    DEPOSIT_REJECTED         = "deposit_rejected"
    MINT_PENDING             = "mint_pending"
    SHARES_MINTED            = "shares_minted"
    BURN_REJECTED            = "burn_rejected"
    SHARES_BURNED            = "shares_burned"
    MINT_SWAP_BATCH_EXECUTED = "mint_swap_batch_executed"
    BURN_SWAP_BATCH_EXECUTED = "burn_swap_batch_executed"
    TOKENS_REDEEMED          = "tokens_redeemed"
    STABLECOIN_REDEEMED      = "stablecoin_redeemed"
    FEE_COLLECTED            = "fee_collected"
    REQUEST_CANCELLED        = "request_cancelled"


_VALID_EVENT_TYPES: Set[str] = {
    value for name, value in vars(EventType).items() if name.isupper()
}


@dataclass
class SchemaValidationResult:
    """
    Result of FundEvent.validate_schema().
    bool(result) is True iff valid.
    """
    valid:  bool
    errors: List[str]

    def __bool__(self) -> bool:
        return self.valid


@dataclass
class FundEvent:
    """A single signed, chained fund event."""

    event_id:          str
    event_type:        str
    fund_id:           str
    signer_public_key: str
    sequence:          int
    nonce:             str
    timestamp:         str
    causal_hash:       str
    payload:           Dict[str, Any]
    signature:         Optional[str] = None

    @classmethod
    def create(
        cls,
        event_type:        str,
        fund_id:           str,
        signer_public_key: str,
        sequence:          int,
        payload:           Dict[str, Any],
        prev:              Optional["FundEvent"] = None,
    ) -> "FundEvent":
        """
        Create an unsigned event with the correct causal_hash.
        Call .sign(key) right after.
        """
        if event_type not in _VALID_EVENT_TYPES:
            raise ValueError(
                f"Invalid event_type '{event_type}'. "
                f"Valid: {sorted(_VALID_EVENT_TYPES)}"
            )
        if not isinstance(payload, dict):
            raise TypeError(f"payload must be dict, got {type(payload).__name__}")
        if not isinstance(sequence, int) or sequence < 0:
            raise ValueError(f"sequence must be non-negative int, got {sequence!r}")

        return cls(
            event_id=          f"evt-{uuid.uuid4()}",
            event_type=        event_type,
            fund_id=           fund_id,
            signer_public_key= signer_public_key,
            sequence=          sequence,
            nonce=             secrets.token_hex(_NONCE_HEX_LENGTH // 2),
            timestamp=         event_timestamp(),
            causal_hash=       cls._compute_causal_hash(prev),
            payload=           payload,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FundEvent":
        """
        Deserialize from a JSONL line dict. Trusts persisted data;
        callers must run validate_schema().
        """
        return cls(
            event_id=          data["event_id"],
            event_type=        data["event_type"],
            fund_id=           data["fund_id"],
            signer_public_key= data["signer_public_key"],
            sequence=          data["sequence"],
            nonce=             data["nonce"],
            timestamp=         data["timestamp"],
            causal_hash=       data["causal_hash"],
            payload=           data.get("payload", {}),
            signature=         data.get("signature"),
        )

    def validate_schema(self) -> SchemaValidationResult:
        errors: List[str] = []

        if self.event_type not in _VALID_EVENT_TYPES:
            errors.append(f"event_type '{self.event_type}' not in vocabulary")
        if not isinstance(self.event_id, str) or not self.event_id.startswith("evt-"):
            errors.append(f"event_id must start with 'evt-', got {self.event_id!r}")
        if not isinstance(self.fund_id, str) or not self.fund_id:
            errors.append("fund_id must be a non-empty string")
        if not isinstance(self.sequence, int) or self.sequence < 0:
            errors.append(f"sequence must be non-negative int, got {self.sequence!r}")
        if not _is_hex(self.nonce, _NONCE_HEX_LENGTH):
            errors.append(f"nonce must be {_NONCE_HEX_LENGTH} hex chars")
        if not _is_hex(self.signer_public_key, 64):
            errors.append("signer_public_key must be 64 hex chars")
        if not _is_hex(self.causal_hash, 64):
            errors.append("causal_hash must be 64 hex chars")
        if not isinstance(self.timestamp, str) or not _TIMESTAMP_RE.match(self.timestamp):
            errors.append(
                f"timestamp {self.timestamp!r} is not YYYY-MM-DDTHH:MM:SS.mmmZ"
            )
        if not isinstance(self.payload, dict):
            errors.append(f"payload must be dict, got {type(self.payload).__name__}")

        return SchemaValidationResult(valid=len(errors) == 0, errors=errors)

    def to_signing_dict(self) -> Dict[str, Any]:
        """Every field except the signature. Signed and chained."""
        return {
            "causal_hash":       self.causal_hash,
            "event_id":          self.event_id,
            "event_type":        self.event_type,
            "fund_id":           self.fund_id,
            "nonce":             self.nonce,
            "payload":           self.payload,
            "sequence":          self.sequence,
            "signer_public_key": self.signer_public_key,
            "timestamp":         self.timestamp,
        }

    def to_dict(self) -> Dict[str, Any]:
        """Full serialization including signature. JSONL persistence only."""
        d = self.to_signing_dict()
        d["signature"] = self.signature
        return d

    @staticmethod
    def _compute_causal_hash(prev: Optional["FundEvent"]) -> str:
        if prev is None:
            return GENESIS_HASH
        return hashlib.sha256(canonicalize(prev.to_signing_dict())).hexdigest()

    def sign(self, key: SigningKey) -> "FundEvent":
        """Sign in place. Returns self."""
        self.signature = key.sign(canonicalize(self.to_signing_dict()))
        return self

    def verify_signature(self) -> bool:
        if not self.signature:
            return False
        return SigningKey.verify_detached(
            canonicalize(self.to_signing_dict()),
            self.signature,
            self.signer_public_key,
        )

    def verify_chain(self, prev: Optional["FundEvent"]) -> bool:
        return self.causal_hash == self._compute_causal_hash(prev)


def _is_hex(value: Any, length: int) -> bool:
    if not isinstance(value, str) or len(value) != length:
        return False
    try:
        bytes.fromhex(value)
    except ValueError:
        return False
    return True
