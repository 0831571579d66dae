# src/zklogin_bootstrap/services/nonce.py
"""Nonce derivation against the proof service."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from zklogin_bootstrap.core.errors import (
    NonceRequestFailed,
    NonceRequestRejected,
    ProofServiceRejected,
    ProofServiceUnavailable,
    ProtocolViolation,
)
from zklogin_bootstrap.core.settings import settings
from zklogin_bootstrap.schemas.proof import NonceRecord, SuiNetwork
from zklogin_bootstrap.services.proof_client import ProofServiceClient
from zklogin_bootstrap.utils.encoding import random_token

logger = logging.getLogger(__name__)


def parse_network(network: str | SuiNetwork) -> SuiNetwork:
    """Return ``network`` as a SuiNetwork, rejecting unsupported values."""
    if isinstance(network, SuiNetwork):
        return network
    try:
        return SuiNetwork(str(network).strip().lower())
    except ValueError as err:
        supported = ", ".join(n.value for n in SuiNetwork)
        raise ValueError(f"Unsupported network {network!r}; expected one of: {supported}") from err


def _require_str(payload: Mapping[str, Any], field: str) -> str:
    value = payload.get(field)
    if not isinstance(value, str) or not value:
        raise ProtocolViolation(f"Nonce response is missing '{field}'")
    return value


def _require_int(payload: Mapping[str, Any], field: str, *, required: bool = True) -> int | None:
    value = payload.get(field)
    if value is None:
        if required:
            raise ProtocolViolation(f"Nonce response is missing '{field}'")
        return None
    # bool is an int subclass; a boolean epoch is never valid
    if isinstance(value, bool):
        raise ProtocolViolation(f"Nonce response field '{field}' is not an integer")
    try:
        return int(value)
    except (TypeError, ValueError) as err:
        raise ProtocolViolation(f"Nonce response field '{field}' is not an integer") from err


class NonceDeriver:
    """Obtains a NonceRecord for an ephemeral public key."""

    def __init__(self, client: ProofServiceClient, *, additional_epochs: int | None = None) -> None:
        self.client = client
        self.additional_epochs = (
            settings.additional_epochs if additional_epochs is None else additional_epochs
        )

    async def derive_nonce(
        self,
        network: str | SuiNetwork,
        public_key: str,
        *,
        attempt_id: str | None = None,
    ) -> NonceRecord:
        """Request a nonce for ``public_key`` on ``network``.

        Args:
            network: One of the supported Sui networks.
            public_key: The exact encoding later submitted with the token.
            attempt_id: Identifier of the login attempt consuming the nonce.

        Returns:
            A single-use NonceRecord bound to ``public_key``.

        Raises:
            NonceRequestFailed: the service could not be reached (retryable).
            NonceRequestRejected: the service returned a non-success status.
            ProtocolViolation: the response lacked a required field.
        """
        net = parse_network(network)
        if not public_key:
            raise ProtocolViolation("An ephemeral public key is required to derive a nonce")

        try:
            payload = await self.client.request_nonce(net.value, public_key, self.additional_epochs)
        except ProofServiceUnavailable as err:
            raise NonceRequestFailed(err.message) from err
        except ProofServiceRejected as err:
            raise NonceRequestRejected(err.message, status_code=err.status_code) from err

        record = NonceRecord(
            nonce=_require_str(payload, "nonce"),
            randomness=_require_str(payload, "randomness"),
            epoch=_require_int(payload, "epoch"),
            max_epoch=_require_int(payload, "maxEpoch"),
            estimated_expiration=_require_int(payload, "estimatedExpiration", required=False),
            network=net,
            ephemeral_public_key=public_key,
            attempt_id=attempt_id or random_token(12),
        )
        if record.max_epoch < record.epoch:
            raise ProtocolViolation("Nonce response has maxEpoch before the current epoch")

        logger.info(
            "Derived nonce for attempt %s on %s (max epoch %s)",
            record.attempt_id,
            net.value,
            record.max_epoch,
        )
        return record
