"""Login flow orchestration for zkLogin.

This module wires the protocol steps of one sign-in attempt together:

- Generate an ephemeral keypair and derive its nonce
- Run the OAuth exchange with the nonce in the authorization request
- Bind the returned ID token to the attempt and persist the Session
- Resolve chain addresses as a soft, retryable enrichment

Only one attempt is live at a time. Starting a new one supersedes the
previous attempt's keypair and nonce; completing a superseded attempt is
rejected.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from zklogin_bootstrap.core.errors import (
    AddressResolutionFailed,
    AttemptSuperseded,
    ProtocolViolation,
    ProviderCancelled,
    SessionExpired,
    SessionKeyUnavailable,
    ZkLoginError,
)
from zklogin_bootstrap.core.settings import settings
from zklogin_bootstrap.schemas.proof import NonceRecord, SuiNetwork
from zklogin_bootstrap.schemas.session import Session
from zklogin_bootstrap.services import keys
from zklogin_bootstrap.services.addresses import AddressResolver
from zklogin_bootstrap.services.binder import SessionBinder
from zklogin_bootstrap.services.keys import EphemeralKeyMaterial
from zklogin_bootstrap.services.nonce import NonceDeriver, parse_network
from zklogin_bootstrap.services.oauth import (
    AuthorizationRequest,
    IdentityProvider,
    ProviderResult,
    TokenExchanger,
)
from zklogin_bootstrap.services.proof_client import ProofServiceClient
from zklogin_bootstrap.services.rpc import SuiRpcClient
from zklogin_bootstrap.services.session_store import SessionStore
from zklogin_bootstrap.utils.encoding import random_token

# Configure logger for this module
logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoginAttempt:
    """Key material, nonce and authorization request of one attempt."""

    attempt_id: str
    key_material: EphemeralKeyMaterial = field(repr=False)
    nonce_record: NonceRecord
    request: AuthorizationRequest


@dataclass(frozen=True)
class SignInResult:
    """Outcome of a completed sign-in.

    ``warnings`` carries soft failures (address resolution) that must not
    block the user.
    """

    session: Session
    warnings: tuple[str, ...] = ()

    @property
    def address(self) -> str | None:
        return self.session.address


class LoginFlow:
    """Drives sign-in, sign-out and session restore against one store."""

    def __init__(
        self,
        store: SessionStore,
        proof_client: ProofServiceClient,
        exchanger: TokenExchanger,
        *,
        network: str | SuiNetwork | None = None,
        key_generator: Callable[[], EphemeralKeyMaterial] = keys.generate,
    ) -> None:
        self.store = store
        self.exchanger = exchanger
        self.network = parse_network(network or settings.network)
        self.nonce_deriver = NonceDeriver(proof_client)
        self.binder = SessionBinder(store)
        self.resolver = AddressResolver(proof_client)
        self._key_generator = key_generator
        self._current_attempt_id: str | None = None
        self._attempt: LoginAttempt | None = None

    @property
    def attempt(self) -> LoginAttempt | None:
        return self._attempt

    @property
    def in_progress(self) -> bool:
        """True while an attempt is between start and completion."""
        return self._current_attempt_id is not None

    def restore(self) -> Session | None:
        """Load the persisted session at startup."""
        return self.store.load()

    async def start_attempt(self) -> LoginAttempt:
        """Create a fresh keypair and nonce and dispatch the OAuth request.

        Raises:
            KeyGenerationError: no secure random source.
            NonceRequestFailed / NonceRequestRejected / ProtocolViolation:
                the nonce could not be derived; the attempt is discarded.
            AttemptSuperseded: another attempt started while this one waited.
        """
        attempt_id = random_token(12)
        if self._current_attempt_id is not None:
            logger.info("Superseding login attempt %s", self._current_attempt_id)
        self._current_attempt_id = attempt_id
        self._attempt = None

        try:
            key_material = self._key_generator()
            nonce_record = await self.nonce_deriver.derive_nonce(
                self.network, key_material.public_key, attempt_id=attempt_id
            )
        except ZkLoginError:
            self._abandon(attempt_id)
            raise

        if self._current_attempt_id != attempt_id:
            raise AttemptSuperseded("A newer sign-in attempt replaced this one")

        request = self.exchanger.start(nonce_record)
        attempt = LoginAttempt(
            attempt_id=attempt_id,
            key_material=key_material,
            nonce_record=nonce_record,
            request=request,
        )
        self._attempt = attempt
        return attempt

    async def complete_attempt(
        self, attempt: LoginAttempt, result: ProviderResult
    ) -> SignInResult | None:
        """Finish ``attempt`` with the provider's outcome.

        Returns:
            The sign-in result, or None when the user cancelled.

        Raises:
            AttemptSuperseded: ``attempt`` is no longer the live attempt.
            ProviderError: the provider reported a failure.
            ProtocolViolation: no token, or a malformed token.
            NonceBindingMismatch: the token was issued for another nonce.
            SessionChanged: the user signed out while addresses were resolving.
        """
        self._require_current(attempt)

        try:
            grant = await self.exchanger.complete(result)
        except ProviderCancelled:
            logger.info("Login attempt %s cancelled by the user", attempt.attempt_id)
            self._abandon(attempt.attempt_id)
            return None
        except ZkLoginError:
            self._abandon(attempt.attempt_id)
            raise

        self._require_current(attempt)
        try:
            session = self.binder.bind(
                grant.id_token,
                attempt.nonce_record,
                attempt.key_material,
                access_token=grant.access_token,
            )
        finally:
            # Single use: the nonce and keypair never serve a second attempt
            self._abandon(attempt.attempt_id)

        warnings: list[str] = []
        try:
            session = await self.resolver.resolve_for(self.store)
        except AddressResolutionFailed as err:
            logger.warning("Address resolution failed for %s: %s", session.identity.sub, err.message)
            warnings.append(err.message)

        return SignInResult(session=session, warnings=tuple(warnings))

    async def sign_in(self, provider: IdentityProvider) -> SignInResult | None:
        """Run a full sign-in through ``provider``.

        Returns None when the user cancelled at the provider.
        """
        attempt = await self.start_attempt()
        result = await provider.authorize(attempt.request)
        return await self.complete_attempt(attempt, result)

    async def refresh_addresses(self) -> Session:
        """Retry address resolution for the bound session.

        Raises SessionChanged if the session is signed out or re-bound before
        the lookup returns.
        """
        return await self.resolver.resolve_for(self.store)

    def sign_out(self) -> None:
        """Discard any in-flight attempt and clear the stored session."""
        if self._current_attempt_id is not None:
            self._abandon(self._current_attempt_id)
        self.exchanger.reset()
        self.store.clear()
        logger.info("Signed out")

    def _require_current(self, attempt: LoginAttempt) -> None:
        if self._current_attempt_id != attempt.attempt_id:
            raise AttemptSuperseded("This sign-in attempt was superseded or already finished")

    def _abandon(self, attempt_id: str) -> None:
        if self._current_attempt_id == attempt_id:
            self._current_attempt_id = None
            self._attempt = None
            self.exchanger.reset()


async def require_active_session(
    store: SessionStore,
    rpc: SuiRpcClient | None = None,
    *,
    current_epoch: int | None = None,
    need_key: bool = False,
) -> Session:
    """Return the stored session if it may still be used to sign.

    The current epoch comes from ``current_epoch`` or, failing that, from
    ``rpc``. An expired session is cleared from the store.

    Raises:
        ProtocolViolation: nobody is signed in.
        SessionExpired: the chain is past the session's max epoch.
        SessionKeyUnavailable: ``need_key`` and the ephemeral key is not in memory.
    """
    session = store.get()
    if session is None:
        raise ProtocolViolation("No signed-in session")

    if current_epoch is None and rpc is not None:
        current_epoch = await rpc.get_current_epoch()
    if current_epoch is None:
        raise ProtocolViolation("Current epoch is required to check session expiry")

    if session.is_expired(current_epoch):
        logger.info(
            "Session for %s expired at epoch %s (now %s)",
            session.identity.sub,
            session.max_epoch,
            current_epoch,
        )
        store.clear()
        raise SessionExpired("Your session has expired; please sign in again")

    if need_key and not session.ephemeral_secret:
        raise SessionKeyUnavailable(
            "The signing key for this session is not available; please sign in again"
        )
    return session
