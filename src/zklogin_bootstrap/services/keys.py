# src/zklogin_bootstrap/services/keys.py
"""Ephemeral Ed25519 key material for a single login attempt."""

from __future__ import annotations

import hashlib
import logging

from nacl.exceptions import CryptoError
from nacl.signing import SigningKey

from zklogin_bootstrap.core.errors import KeyGenerationError
from zklogin_bootstrap.utils.encoding import b64decode, b64encode

logger = logging.getLogger(__name__)

ED25519_FLAG = 0x00
PUBKEY_LENGTH_BYTES = 32
SEED_LENGTH_BYTES = 32
# IntentScope::TransactionData, IntentVersion::V0, AppId::Sui
TRANSACTION_INTENT = bytes([0, 0, 0])


class EphemeralKeyMaterial:
    """Short-lived Ed25519 keypair.

    The secret never leaves process memory: there is no serializer hook and
    ``repr`` only shows the public encoding.
    """

    __slots__ = ("_signing_key",)

    def __init__(self, signing_key: SigningKey) -> None:
        self._signing_key = signing_key

    def __repr__(self) -> str:
        return f"EphemeralKeyMaterial(public_key={self.public_key!r})"

    @property
    def raw_public_key(self) -> bytes:
        return bytes(self._signing_key.verify_key)

    @property
    def public_key(self) -> str:
        """Sui public-key bytes (scheme flag + raw key), base64 encoded."""
        return b64encode(bytes([ED25519_FLAG]) + self.raw_public_key)

    def export_secret(self) -> str:
        """Return the opaque in-memory form of the secret (flag + seed)."""
        return b64encode(bytes([ED25519_FLAG]) + bytes(self._signing_key))

    @classmethod
    def from_secret(cls, exported: str) -> EphemeralKeyMaterial:
        """Rebuild key material from :meth:`export_secret` output."""
        raw = b64decode(exported)
        if len(raw) != SEED_LENGTH_BYTES + 1 or raw[0] != ED25519_FLAG:
            raise ValueError("Ephemeral secret must be an Ed25519 flag byte plus a 32 byte seed")
        return cls(SigningKey(raw[1:]))

    def sign_transaction(self, tx_bytes: bytes) -> str:
        """Sign transaction bytes under the Sui transaction intent.

        Returns:
            Serialized signature: base64(flag || signature || public key)
        """
        digest = hashlib.blake2b(TRANSACTION_INTENT + tx_bytes, digest_size=32).digest()
        signature = self._signing_key.sign(digest).signature
        return b64encode(bytes([ED25519_FLAG]) + signature + self.raw_public_key)


def generate() -> EphemeralKeyMaterial:
    """Generate a fresh keypair from libsodium's CSPRNG.

    Raises:
        KeyGenerationError: if the platform cannot supply secure randomness
    """
    try:
        signing_key = SigningKey.generate()
    except (CryptoError, OSError) as err:
        logger.error("Secure random source unavailable: %s", err)
        raise KeyGenerationError(
            "Secure random source unavailable; cannot create an ephemeral key"
        ) from err
    return EphemeralKeyMaterial(signing_key)
