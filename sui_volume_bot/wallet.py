"""
Wallet Module - Ed25519 Keys and Transaction Signing
====================================================
Decodes the configured private key, derives the Sui address and signs
transaction bytes. Also hands out disposable wallets for the relay strategy.

Accepted key formats:
- Bech32 ``suiprivkey1...`` (what ``sui keytool export`` prints)
- Base64 ``flag || secret`` (sui.keystore entries)
- 32-byte hex, with or without 0x prefix
"""

import base64
import hashlib
from dataclasses import dataclass, field
from typing import Callable, Optional, Set

import bech32
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    PublicFormat,
)

from .utils import logger, format_address


BECH32_HRP = "suiprivkey"
ED25519_FLAG = 0x00

# Intent prefix for a transaction: scope TransactionData, version V0, app Sui
TRANSACTION_INTENT = bytes([0, 0, 0])


def _blake2b_256(data: bytes) -> bytes:
    return hashlib.blake2b(data, digest_size=32).digest()


def decode_private_key(encoded: str) -> bytes:
    """
    Decode a private key string to the 32-byte Ed25519 seed.

    Raises:
        ValueError: unknown format, bad checksum or unsupported key scheme
    """
    key = (encoded or "").strip()
    if not key:
        raise ValueError("empty private key")

    if key.startswith(BECH32_HRP + "1"):
        hrp, data = bech32.bech32_decode(key)
        if hrp != BECH32_HRP or data is None:
            raise ValueError("invalid bech32 private key")
        raw = bech32.convertbits(data, 5, 8, False)
        if raw is None:
            raise ValueError("invalid bech32 payload")
        return _split_flagged(bytes(raw))

    hex_key = key[2:] if key.startswith("0x") else key
    if len(hex_key) == 64:
        try:
            return bytes.fromhex(hex_key)
        except ValueError:
            raise ValueError("private key must be valid hex") from None

    try:
        raw = base64.b64decode(key, validate=True)
    except ValueError:
        raise ValueError("unrecognized private key format") from None
    return _split_flagged(raw)


def _split_flagged(raw: bytes) -> bytes:
    if len(raw) != 33:
        raise ValueError(f"expected 33 key bytes (flag + secret), got {len(raw)}")
    if raw[0] != ED25519_FLAG:
        raise ValueError(f"unsupported key scheme flag {raw[0]}, only ED25519 is supported")
    return raw[1:]


def encode_private_key(seed: bytes) -> str:
    """Encode a 32-byte seed as a ``suiprivkey1...`` string."""
    data = bech32.convertbits(bytes([ED25519_FLAG]) + seed, 8, 5, True)
    return bech32.bech32_encode(BECH32_HRP, data)


@dataclass
class Wallet:
    """An Ed25519 keypair plus its derived Sui address."""

    private_key: Ed25519PrivateKey = field(repr=False)
    address: str = ""

    def __post_init__(self):
        if not self.address:
            self.address = self.derive_address(self.public_key_bytes)

    @classmethod
    def generate(cls) -> "Wallet":
        """Create a fresh random wallet."""
        return cls(Ed25519PrivateKey.generate())

    @classmethod
    def from_private_key(cls, encoded: str) -> "Wallet":
        """Load a wallet from any supported private key string."""
        seed = decode_private_key(encoded)
        return cls(Ed25519PrivateKey.from_private_bytes(seed))

    @staticmethod
    def derive_address(public_key: bytes) -> str:
        """Sui address: blake2b-256 over the scheme flag and public key."""
        return "0x" + _blake2b_256(bytes([ED25519_FLAG]) + public_key).hex()

    @property
    def public_key_bytes(self) -> bytes:
        return self.private_key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)

    def export_private_key(self) -> str:
        seed = self.private_key.private_bytes(Encoding.Raw, PrivateFormat.Raw, NoEncryption())
        return encode_private_key(seed)

    def sign_transaction(self, tx_bytes: str) -> str:
        """
        Sign base64 transaction bytes.

        Returns:
            Base64 serialized signature: flag || signature || public key
        """
        raw = base64.b64decode(tx_bytes)
        digest = _blake2b_256(TRANSACTION_INTENT + raw)
        signature = self.private_key.sign(digest)
        serialized = bytes([ED25519_FLAG]) + signature + self.public_key_bytes
        return base64.b64encode(serialized).decode()


class DisposableWalletFactory:
    """
    Hands out single-use wallets and never the same address twice.

    The used-address set lives as long as the factory, so one factory per
    process keeps the guarantee across iterations.
    """

    def __init__(
        self,
        generator: Optional[Callable[[], Wallet]] = None,
        max_attempts: int = 10,
    ):
        self._generator = generator or Wallet.generate
        self.max_attempts = max_attempts
        self.used_addresses: Set[str] = set()

    def create(self) -> Wallet:
        """Generate a wallet whose address has not been handed out before."""
        for _ in range(self.max_attempts):
            wallet = self._generator()
            if wallet.address in self.used_addresses:
                logger.warning(f"Wallet {format_address(wallet.address)} already used, generating new one")
                continue
            self.used_addresses.add(wallet.address)
            return wallet
        raise RuntimeError(f"Could not generate an unused wallet in {self.max_attempts} attempts")

    def __len__(self) -> int:
        return len(self.used_addresses)
