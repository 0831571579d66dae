"""Proof/relay service client for zkLogin.

This module provides the ProofServiceClient class that handles all
communication with the zkLogin proof and sponsorship service. It includes:

- HTTP client with bearer-key authentication
- Nonce, address, proof and sponsorship endpoints
- Mapping of transport and status failures onto the error taxonomy

Payload validation is left to the callers (nonce deriver, address resolver,
sponsor); this layer only guarantees a decoded JSON object or an error.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import httpx

from zklogin_bootstrap.core.errors import (
    ProofServiceRejected,
    ProofServiceUnavailable,
    ProtocolViolation,
)
from zklogin_bootstrap.core.settings import settings

# Configure logger for this module
logger = logging.getLogger(__name__)

JWT_HEADER = "zklogin-jwt"

NONCE_PATH = "/zklogin/nonce"
ADDRESSES_PATH = "/zklogin/addresses"
ZKP_PATH = "/zklogin/zkp"
SPONSOR_PATH = "/transaction-blocks/sponsor"


@dataclass(frozen=True)
class ProofServiceConfig:
    """Immutable configuration for proof service operations."""

    base_url: str
    public_key: str | None
    private_key: str | None
    timeout_seconds: float


def load_proof_service_config() -> ProofServiceConfig:
    """Build configuration object from global settings."""

    return ProofServiceConfig(
        base_url=settings.proof_service_base_url,
        public_key=settings.proof_service_public_key,
        private_key=settings.proof_service_private_key,
        timeout_seconds=float(settings.proof_service_timeout_seconds),
    )


class ProofServiceClient:
    """HTTP client wrapper for proof/relay service interactions."""

    def __init__(
        self,
        config: ProofServiceConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config or load_proof_service_config()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()

    async def _ensure_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    base_url=self.config.base_url.rstrip("/"),
                    timeout=httpx.Timeout(self.config.timeout_seconds),
                    transport=self._transport,
                )
        return self._client

    def _build_headers(self, *, id_token: str | None = None, elevated: bool = False) -> dict[str, str]:
        api_key = self.config.private_key if elevated else self.config.public_key
        if elevated and not api_key:
            raise ProtocolViolation("Sponsorship requires a private proof service API key")

        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        if id_token:
            headers[JWT_HEADER] = id_token
        return headers

    @dataclass
    class RequestParams:
        """Parameters for HTTP requests."""
        method: str
        path: str
        json_data: Any | None = None
        id_token: str | None = None
        elevated: bool = False

    async def _request(self, params: RequestParams) -> dict[str, Any]:
        client = await self._ensure_client()
        headers = self._build_headers(id_token=params.id_token, elevated=params.elevated)
        endpoint = f"{params.method} {params.path}"

        try:
            response = await client.request(
                params.method,
                params.path,
                json=params.json_data,
                headers=headers,
            )
        except httpx.HTTPError as exc:
            logger.warning("Proof service request %s failed: %s", endpoint, exc)
            raise ProofServiceUnavailable(f"Proof service request failed: {exc}") from exc

        if not response.is_success:
            detail = response.text.strip() or (
                f"Proof service request failed: {response.status_code}"
            )
            logger.warning(
                "Proof service %s responded with %s", endpoint, response.status_code
            )
            raise ProofServiceRejected(detail, response.status_code)

        try:
            body = response.json()
        except ValueError as exc:
            raise ProtocolViolation(f"Proof service returned invalid JSON for {endpoint}") from exc

        return _unwrap(body, endpoint)

    async def request_nonce(
        self, network: str, ephemeral_public_key: str, additional_epochs: int
    ) -> dict[str, Any]:
        """Ask the service for a nonce bound to ``ephemeral_public_key``."""

        return await self._request(
            self.RequestParams(
                method="POST",
                path=NONCE_PATH,
                json_data={
                    "network": network,
                    "ephemeralPublicKey": ephemeral_public_key,
                    "additionalEpochs": additional_epochs,
                },
            )
        )

    async def fetch_addresses(self, id_token: str) -> dict[str, Any]:
        """Fetch the chain addresses bound to the identity in ``id_token``."""

        return await self._request(
            self.RequestParams(method="GET", path=ADDRESSES_PATH, id_token=id_token)
        )

    async def create_zk_proof(
        self,
        *,
        network: str,
        ephemeral_public_key: str,
        max_epoch: int,
        randomness: str,
        id_token: str,
    ) -> dict[str, Any]:
        """Request the zero-knowledge proof for a bound session."""

        return await self._request(
            self.RequestParams(
                method="POST",
                path=ZKP_PATH,
                json_data={
                    "network": network,
                    "ephemeralPublicKey": ephemeral_public_key,
                    "maxEpoch": max_epoch,
                    "randomness": randomness,
                },
                id_token=id_token,
            )
        )

    async def sponsor_transaction(
        self,
        *,
        network: str,
        transaction_kind_bytes: str,
        sender: str,
        allowed_addresses: list[str],
        allowed_move_call_targets: list[str],
        id_token: str,
    ) -> dict[str, Any]:
        """Ask the relay to wrap transaction kind bytes with sponsored gas."""

        return await self._request(
            self.RequestParams(
                method="POST",
                path=SPONSOR_PATH,
                json_data={
                    "network": network,
                    "transactionBlockKindBytes": transaction_kind_bytes,
                    "sender": sender,
                    "allowedAddresses": allowed_addresses,
                    "allowedMoveCallTargets": allowed_move_call_targets,
                },
                id_token=id_token,
                elevated=True,
            )
        )

    async def close(self) -> None:
        """Clean up underlying HTTP client resources."""

        async with self._client_lock:
            if self._client is not None:
                await self._client.aclose()
                self._client = None


def _unwrap(body: Any, endpoint: str) -> dict[str, Any]:
    # Responses are either bare objects or wrapped in {"data": {...}}
    if isinstance(body, Mapping) and isinstance(body.get("data"), Mapping):
        body = body["data"]
    if not isinstance(body, Mapping):
        raise ProtocolViolation(f"Proof service returned a non-object payload for {endpoint}")
    return dict(body)
