"""Session binding: verify the nonce in the ID token and build the Session."""
from __future__ import annotations

import hmac
import logging
from typing import TYPE_CHECKING, Any

from jose import jwt
from jose.exceptions import JOSEError
from pydantic import ValidationError

from zklogin_bootstrap.core.errors import NonceBindingMismatch, ProtocolViolation
from zklogin_bootstrap.schemas.proof import NonceRecord
from zklogin_bootstrap.schemas.session import IdentityClaims, Session
from zklogin_bootstrap.services.keys import EphemeralKeyMaterial

if TYPE_CHECKING:  # pragma: no cover - typing helper
    from zklogin_bootstrap.services.session_store import SessionStore

logger = logging.getLogger(__name__)


def decode_identity_token(id_token: str) -> dict[str, Any]:
    """Decode ID token claims without verifying the signature.

    Signature verification belongs to the relying service; the decoded claims
    are for display and derivation only and prove nothing on their own.
    """
    try:
        claims = jwt.get_unverified_claims(id_token)
    except JOSEError as err:
        raise ProtocolViolation(f"Identity token could not be decoded: {err}") from err
    if not isinstance(claims, dict):
        raise ProtocolViolation("Identity token claims are not a JSON object")
    return claims


class SessionBinder:
    """Binds an identity token to the nonce and key of one login attempt."""

    def __init__(self, store: SessionStore) -> None:
        self.store = store

    def bind(
        self,
        id_token: str,
        nonce_record: NonceRecord,
        key_material: EphemeralKeyMaterial,
        *,
        access_token: str | None = None,
    ) -> Session:
        """Verify the nonce binding and store the resulting Session.

        Binding the same inputs twice overwrites the stored session with an
        equal value.

        Raises:
            ProtocolViolation: the token is undecodable or lacks identity claims.
            NonceBindingMismatch: the token's nonce (or the key) does not match.
        """
        claims = decode_identity_token(id_token)

        token_nonce = claims.get("nonce")
        if not isinstance(token_nonce, str) or not hmac.compare_digest(
            token_nonce.encode("utf-8"), nonce_record.nonce.encode("utf-8")
        ):
            logger.warning("Nonce mismatch for attempt %s; discarding", nonce_record.attempt_id)
            raise NonceBindingMismatch(
                "The identity token was not issued for this sign-in attempt"
            )
        if key_material.public_key != nonce_record.ephemeral_public_key:
            raise NonceBindingMismatch("The nonce was issued for a different ephemeral key")

        try:
            identity = IdentityClaims.model_validate(claims)
        except ValidationError as err:
            raise ProtocolViolation(f"Identity token is missing required claims: {err}") from err

        session = Session(
            identity=identity,
            ephemeral_public_key=key_material.public_key,
            ephemeral_secret=key_material.export_secret(),
            randomness=nonce_record.randomness,
            epoch=nonce_record.epoch,
            max_epoch=nonce_record.max_epoch,
            id_token=id_token,
            access_token=access_token,
            network=nonce_record.network,
        )
        self.store.set(session)
        logger.info("Bound session for subject %s (max epoch %s)", identity.sub, session.max_epoch)
        return session
