# src/zklogin_bootstrap/utils/encoding.py
"""Base64 helpers shared by the key, OAuth and proof client modules."""

from __future__ import annotations

import base64
import hashlib
import secrets


def b64encode(data: bytes) -> str:
    """Standard base64 with padding, as the Sui tooling expects."""
    return base64.b64encode(data).decode("ascii")


def b64decode(data: str) -> bytes:
    """Decode standard base64, accepting omitted padding."""
    padding = "=" * (-len(data) % 4)
    try:
        return base64.b64decode(data + padding, validate=True)
    except ValueError as err:
        raise ValueError(f"Invalid base64 encoding: {err}") from err


def b64url_encode(data: bytes) -> str:
    """URL-safe base64 without padding."""
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def random_token(nbytes: int = 32) -> str:
    """Return a URL-safe random token drawn from the OS CSPRNG."""
    return secrets.token_urlsafe(nbytes)


def pkce_challenge(verifier: str) -> str:
    """Return the S256 PKCE code challenge for ``verifier``."""
    return b64url_encode(hashlib.sha256(verifier.encode("ascii")).digest())
