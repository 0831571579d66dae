"""Pydantic schemas for zkLogin bootstrap."""

from .proof import ChainAddress, NonceRecord, SponsoredTransaction, SuiNetwork, ZkProof
from .session import IdentityClaims, Session

__all__ = [
    "ChainAddress",
    "IdentityClaims",
    "NonceRecord",
    "Session",
    "SponsoredTransaction",
    "SuiNetwork",
    "ZkProof",
]
