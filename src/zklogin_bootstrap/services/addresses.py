# src/zklogin_bootstrap/services/addresses.py
"""Resolution of the chain addresses bound to an identity token."""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

from pydantic import ValidationError

from zklogin_bootstrap.core.errors import (
    AddressResolutionFailed,
    ProofServiceError,
    ProtocolViolation,
    SessionChanged,
)
from zklogin_bootstrap.schemas.proof import ChainAddress
from zklogin_bootstrap.schemas.session import Session
from zklogin_bootstrap.services.proof_client import ProofServiceClient

if TYPE_CHECKING:  # pragma: no cover - typing helper
    from zklogin_bootstrap.services.session_store import SessionStore

logger = logging.getLogger(__name__)

SUI_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{1,64}$")


def validate_address(address: str) -> str:
    """Return ``address`` unchanged if it is a well-formed Sui hex address."""
    if not SUI_ADDRESS_RE.match(address):
        raise ValueError(f"Invalid Sui address: {address!r}")
    return address


class AddressResolver:
    """Looks up zkLogin addresses for a token via the proof service."""

    def __init__(self, client: ProofServiceClient) -> None:
        self.client = client

    async def resolve(self, id_token: str) -> list[ChainAddress]:
        """Return the addresses bound to ``id_token`` (possibly none).

        Raises:
            AddressResolutionFailed: on any transport, status or payload error.
        """
        try:
            payload = await self.client.fetch_addresses(id_token)
        except (ProofServiceError, ProtocolViolation) as err:
            raise AddressResolutionFailed(f"Could not resolve addresses: {err.message}") from err

        entries = payload.get("addresses")
        if entries is None:
            return []
        if not isinstance(entries, list):
            raise AddressResolutionFailed("Address response 'addresses' is not a list")

        resolved: list[ChainAddress] = []
        for entry in entries:
            try:
                item = ChainAddress.model_validate(entry)
                validate_address(item.address)
            except (ValidationError, ValueError) as err:
                raise AddressResolutionFailed(f"Malformed address entry: {err}") from err
            resolved.append(item)
        return resolved

    async def resolve_for(self, store: SessionStore) -> Session:
        """Resolve addresses for the stored session and merge them in.

        The session must already be bound; the merged result is stored.

        Raises:
            AddressResolutionFailed: the lookup failed.
            SessionChanged: the session was cleared or re-bound during the
                lookup; the resolved addresses are dropped.
        """
        session = store.get()
        if session is None:
            raise ProtocolViolation("Addresses can only be resolved for a bound session")

        resolved = await self.resolve(session.id_token)

        current = store.get()
        merged = current.with_addresses(resolved) if current is not None else None
        if merged is None or not store.replace(session, merged):
            logger.info("Session changed while resolving addresses; dropping result")
            raise SessionChanged("The session was signed out or replaced while resolving addresses")
        logger.info(
            "Resolved %d address(es) for subject %s", len(resolved), session.identity.sub
        )
        return merged
