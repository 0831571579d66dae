# src/zklogin_bootstrap/services/sponsor.py
"""Sponsored transactions and proof artifacts for a bound session."""

from __future__ import annotations

import logging

from pydantic import ValidationError

from zklogin_bootstrap.core.errors import ProtocolViolation
from zklogin_bootstrap.schemas.proof import SponsoredTransaction, ZkProof
from zklogin_bootstrap.schemas.session import Session
from zklogin_bootstrap.services.keys import EphemeralKeyMaterial
from zklogin_bootstrap.services.login import require_active_session
from zklogin_bootstrap.services.proof_client import ProofServiceClient
from zklogin_bootstrap.services.rpc import SuiRpcClient
from zklogin_bootstrap.services.session_store import SessionStore
from zklogin_bootstrap.utils.encoding import b64decode, b64encode

logger = logging.getLogger(__name__)


class TransactionSponsor:
    """Consumes the stored session to obtain proofs and sponsored bytes.

    Every operation re-checks the session's max epoch against the chain
    before using it.
    """

    def __init__(
        self,
        store: SessionStore,
        proof_client: ProofServiceClient,
        rpc: SuiRpcClient,
    ) -> None:
        self.store = store
        self.proof_client = proof_client
        self.rpc = rpc

    async def create_zk_proof(self) -> ZkProof:
        """Request the zero-knowledge proof for the current session."""
        session = await require_active_session(self.store, self.rpc)
        payload = await self.proof_client.create_zk_proof(
            network=session.network.value,
            ephemeral_public_key=session.ephemeral_public_key,
            max_epoch=session.max_epoch,
            randomness=session.randomness,
            id_token=session.id_token,
        )
        try:
            return ZkProof.model_validate(payload)
        except ValidationError as err:
            raise ProtocolViolation(f"Proof response is malformed: {err}") from err

    async def sponsor(
        self,
        transaction_kind_bytes: bytes | str,
        allowed_move_call_targets: list[str],
        *,
        allowed_addresses: list[str] | None = None,
    ) -> SponsoredTransaction:
        """Ask the relay to pay gas for ``transaction_kind_bytes``.

        Args:
            transaction_kind_bytes: Kind-only transaction bytes, raw or base64.
            allowed_move_call_targets: Move functions the sponsor may pay for.
            allowed_addresses: Addresses the transaction may touch; defaults to
                the session's selected address.
        """
        session = await require_active_session(self.store, self.rpc)
        sender = _require_address(session)

        if isinstance(transaction_kind_bytes, bytes):
            transaction_kind_bytes = b64encode(transaction_kind_bytes)

        payload = await self.proof_client.sponsor_transaction(
            network=session.network.value,
            transaction_kind_bytes=transaction_kind_bytes,
            sender=sender,
            allowed_addresses=allowed_addresses if allowed_addresses is not None else [sender],
            allowed_move_call_targets=list(allowed_move_call_targets),
            id_token=session.id_token,
        )
        try:
            sponsored = SponsoredTransaction.model_validate(payload)
        except ValidationError as err:
            raise ProtocolViolation(f"Sponsor response is malformed: {err}") from err

        logger.info("Sponsored transaction %s for %s", sponsored.digest, sender)
        return sponsored

    async def sign(self, sponsored: SponsoredTransaction) -> str:
        """Sign sponsored bytes with the session's in-memory ephemeral key."""
        session = await require_active_session(self.store, self.rpc, need_key=True)
        key_material = EphemeralKeyMaterial.from_secret(session.ephemeral_secret or "")
        if key_material.public_key != session.ephemeral_public_key:
            raise ProtocolViolation("Ephemeral key does not match the session's public key")
        try:
            tx_bytes = b64decode(sponsored.tx_bytes)
        except ValueError as err:
            raise ProtocolViolation(f"Sponsored transaction bytes are not base64: {err}") from err
        return key_material.sign_transaction(tx_bytes)


def _require_address(session: Session) -> str:
    if not session.address:
        raise ProtocolViolation("The session has no resolved chain address yet")
    return session.address
