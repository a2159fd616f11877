"""
veilfund/core/crypto.py

Ed25519 signing for fund events.

Key contracts:
    public_key_hex       : @property, 64-char lowercase hex
    sign(data)           : bytes -> base64url str, no padding
    verify_detached(...) : @staticmethod, verifies with only a pubkey hex string

A fund event stores the signer's public key hex, not a key object, so
event verification always goes through verify_detached().
"""

import base64
from pathlib import Path

from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    PublicFormat,
    load_pem_private_key,
)


class SigningKey:
    """
    Ed25519 key used by an EventLedger to sign the events it emits.

        SigningKey.generate()               -> new random key
        SigningKey.from_file(path)          -> load PEM private key
        SigningKey.from_seed(seed)          -> load from raw 32-byte seed
        SigningKey.verify_detached(d, s, k) -> bool, no instance needed
    """

    def __init__(self, private_key: Ed25519PrivateKey) -> None:
        self._private_key = private_key
        self._public_key_hex: str = (
            private_key.public_key()
            .public_bytes(Encoding.Raw, PublicFormat.Raw)
            .hex()
        )

    @classmethod
    def generate(cls) -> "SigningKey":
        return cls(Ed25519PrivateKey.generate())

    @classmethod
    def from_seed(cls, seed: bytes) -> "SigningKey":
        if len(seed) != 32:
            raise ValueError(f"Ed25519 seed must be 32 bytes, got {len(seed)}")
        return cls(Ed25519PrivateKey.from_private_bytes(seed))

    @classmethod
    def from_file(cls, path: Path) -> "SigningKey":
        """
        Load an Ed25519 private key from a PEM file.
        Raises FileNotFoundError if path does not exist, ValueError if the
        file does not hold an Ed25519 key.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Key file not found: {path}")
        private_key = load_pem_private_key(path.read_bytes(), password=None)
        if not isinstance(private_key, Ed25519PrivateKey):
            raise ValueError(f"Key file {path} does not contain an Ed25519 private key")
        return cls(private_key)

    @property
    def public_key_hex(self) -> str:
        return self._public_key_hex

    def sign(self, data: bytes) -> str:
        """Sign data with Ed25519. Returns base64url string, no '=' padding."""
        raw_sig = self._private_key.sign(data)
        return base64.urlsafe_b64encode(raw_sig).rstrip(b"=").decode("ascii")

    @staticmethod
    def verify_detached(data: bytes, signature_b64: str, public_key_hex: str) -> bool:
        """
        Verify an Ed25519 signature using only a public key hex string.

        Returns False for ANY failure (wrong key, bad encoding, wrong length,
        corrupted signature). Never raises.
        """
        try:
            if not isinstance(public_key_hex, str) or len(public_key_hex) != 64:
                return False
            pub = Ed25519PublicKey.from_public_bytes(bytes.fromhex(public_key_hex))

            padding = 4 - len(signature_b64) % 4
            raw_sig = base64.urlsafe_b64decode(signature_b64 + "=" * (padding % 4))
            if len(raw_sig) != 64:
                return False

            pub.verify(raw_sig, data)
            return True
        except Exception:
            return False

    def save(self, path: Path) -> None:
        """Write the private key to disk as a PKCS8 PEM file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        pem = self._private_key.private_bytes(
            encoding=             Encoding.PEM,
            format=               PrivateFormat.PKCS8,
            encryption_algorithm= NoEncryption(),
        )
        path.write_bytes(pem)

    def __repr__(self) -> str:
        return f"SigningKey(public_key_hex={self._public_key_hex[:16]}...)"
