"""
VeilFund Settlement Engine

Turns encrypted deposit and redemption intents into batched swaps and
share issuance/redemption.

Critical Invariants:
- A decryption request drives at most one callback
- Callbacks are accepted only from the decryption oracle
- A rejected request is refunded, never silently kept
- Buckets and counters are zero immediately after a flush
"""

from veilfund.settlement.engine import ConfidentialIndexFund, fund_address

__all__ = ["ConfidentialIndexFund", "fund_address"]
