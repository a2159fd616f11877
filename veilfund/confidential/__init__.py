"""
VeilFund Confidential - in-memory confidential value primitive.

Ciphertext handles, encrypted arithmetic, the encrypted error-code channel,
plain/confidential token ledgers and the decryption oracle.
"""

from veilfund.confidential.ciphertext import (
    CipherKind,
    Ciphertext,
    EncryptedInput,
    ErrorCode,
    FheContext,
)
from veilfund.confidential.oracle import ORACLE_ADDRESS, DecryptionOracle
from veilfund.confidential.token import ConfidentialToken, PlainToken, TransferReceipt

__all__ = [
    "CipherKind",
    "Ciphertext",
    "ConfidentialToken",
    "DecryptionOracle",
    "EncryptedInput",
    "ErrorCode",
    "FheContext",
    "ORACLE_ADDRESS",
    "PlainToken",
    "TransferReceipt",
]
