"""Schemas exchanged with the proof/relay service."""
from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class SuiNetwork(str, Enum):
    """Chain networks the proof service issues nonces for."""

    MAINNET = "mainnet"
    TESTNET = "testnet"
    DEVNET = "devnet"


class NonceRecord(BaseModel):
    """Nonce issued for one ephemeral public key, consumed by one OAuth request."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    nonce: str
    randomness: str
    epoch: int
    max_epoch: int = Field(alias="maxEpoch")
    estimated_expiration: int | None = Field(default=None, alias="estimatedExpiration")
    network: SuiNetwork
    ephemeral_public_key: str = Field(alias="ephemeralPublicKey")
    attempt_id: str = Field(alias="attemptId")


class ChainAddress(BaseModel):
    """Address bound to (issuer, subject, salt) by the proof service."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    address: str
    salt: str
    public_key: str | None = Field(default=None, alias="publicKey")
    client_id: str | None = Field(default=None, alias="clientId")
    legacy: bool = False


class ZkProof(BaseModel):
    """Zero-knowledge proof artifact for a bound session."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    proof_points: dict[str, Any] = Field(alias="proofPoints")
    iss_base64_details: dict[str, Any] = Field(alias="issBase64Details")
    header_base64: str = Field(alias="headerBase64")
    address_seed: str | None = Field(default=None, alias="addressSeed")


class SponsoredTransaction(BaseModel):
    """Sponsored transaction bytes returned by the relay."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    tx_bytes: str = Field(alias="bytes")
    digest: str
    proof: dict[str, Any] | None = None
