"""OAuth identity token exchange for zkLogin.

The redirect flow is modelled as an explicit state machine so it can be
driven and tested without a browser:

    IDLE --start--> AWAITING_PROVIDER --complete--> SUCCESS
                                               \\--> CANCELLED (reset to IDLE)
                                               \\--> PROVIDER_ERROR (reset to IDLE)

The derived nonce travels in the dedicated ``nonce`` authorization parameter,
which the provider signs into the ``nonce`` claim of the ID token.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol
from urllib.parse import parse_qsl, urlencode, urlparse

import httpx

from zklogin_bootstrap.core.errors import (
    AttemptSuperseded,
    ProtocolViolation,
    ProviderCancelled,
    ProviderError,
)
from zklogin_bootstrap.core.settings import settings
from zklogin_bootstrap.schemas.proof import NonceRecord
from zklogin_bootstrap.utils.encoding import pkce_challenge, random_token

logger = logging.getLogger(__name__)

CANCEL_ERROR_CODES = frozenset({"access_denied", "user_cancelled", "cancel"})


class ExchangeState(str, Enum):
    """States of a single OAuth attempt."""

    IDLE = "idle"
    AWAITING_PROVIDER = "awaiting_provider"
    SUCCESS = "success"
    CANCELLED = "cancelled"
    PROVIDER_ERROR = "provider_error"


class ResultType(str, Enum):
    """Terminal outcomes reported by a provider."""

    SUCCESS = "success"
    CANCEL = "cancel"
    ERROR = "error"


@dataclass(frozen=True)
class OAuthClientConfig:
    """Immutable configuration for the OAuth client registration."""

    client_id: str
    redirect_uri: str
    authorize_url: str
    token_url: str
    scopes: tuple[str, ...]
    response_type: str = "code"
    client_secret: str | None = None


def load_oauth_config() -> OAuthClientConfig:
    """Build configuration object from global settings."""

    if not settings.oauth_client_id:
        raise ProtocolViolation("OAUTH_CLIENT_ID is not configured")
    return OAuthClientConfig(
        client_id=settings.oauth_client_id,
        redirect_uri=settings.oauth_redirect_uri,
        authorize_url=settings.oauth_authorize_url,
        token_url=settings.oauth_token_url,
        scopes=tuple(settings.oauth_scopes),
        response_type=settings.oauth_response_type,
        client_secret=settings.oauth_client_secret,
    )


@dataclass(frozen=True)
class AuthorizationRequest:
    """Everything a provider needs to run one authorization round-trip."""

    attempt_id: str
    url: str
    nonce: str
    state: str
    redirect_uri: str
    code_verifier: str | None = None


@dataclass(frozen=True)
class ProviderResult:
    """What came back from the provider redirect."""

    type: ResultType
    id_token: str | None = None
    access_token: str | None = None
    code: str | None = None
    state: str | None = None
    error_message: str | None = None
    params: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class TokenGrant:
    """Tokens extracted from a successful attempt."""

    attempt_id: str
    id_token: str
    access_token: str | None = None


class IdentityProvider(Protocol):
    """Drives the user through the provider and reports the outcome."""

    async def authorize(self, request: AuthorizationRequest) -> ProviderResult: ...


class CodeExchanger(Protocol):
    async def exchange_code(self, code: str, request: AuthorizationRequest) -> ProviderResult: ...


def build_authorization_url(
    config: OAuthClientConfig, *, nonce: str, state: str, code_challenge: str | None
) -> str:
    """Return the provider authorization URL for one attempt."""
    params = {
        "client_id": config.client_id,
        "redirect_uri": config.redirect_uri,
        "response_type": config.response_type,
        "scope": " ".join(config.scopes),
        "nonce": nonce,
        "state": state,
    }
    if code_challenge:
        params["code_challenge"] = code_challenge
        params["code_challenge_method"] = "S256"
    separator = "&" if "?" in config.authorize_url else "?"
    return f"{config.authorize_url}{separator}{urlencode(params)}"


def parse_redirect(redirect_url: str) -> ProviderResult:
    """Turn the URL the provider redirected to into a ProviderResult.

    Implicit-flow tokens arrive in the fragment, code-flow values in the
    query string; both are merged with the fragment taking precedence.
    """
    parsed = urlparse(redirect_url.strip())
    params = dict(parse_qsl(parsed.query))
    params.update(parse_qsl(parsed.fragment))

    error = params.get("error")
    if error:
        if error in CANCEL_ERROR_CODES:
            return ProviderResult(type=ResultType.CANCEL, state=params.get("state"), params=params)
        return ProviderResult(
            type=ResultType.ERROR,
            state=params.get("state"),
            error_message=params.get("error_description") or error,
            params=params,
        )

    return ProviderResult(
        type=ResultType.SUCCESS,
        id_token=params.get("id_token"),
        access_token=params.get("access_token"),
        code=params.get("code"),
        state=params.get("state"),
        params=params,
    )


class TokenExchanger:
    """State machine over one OAuth redirect attempt at a time."""

    def __init__(self, config: OAuthClientConfig, *, code_exchanger: CodeExchanger | None = None) -> None:
        self.config = config
        self.code_exchanger = code_exchanger
        self._state = ExchangeState.IDLE
        self._pending: AuthorizationRequest | None = None
        self._used_nonces: set[str] = set()

    @property
    def state(self) -> ExchangeState:
        return self._state

    @property
    def pending(self) -> AuthorizationRequest | None:
        return self._pending

    def start(self, nonce_record: NonceRecord) -> AuthorizationRequest:
        """Dispatch an authorization request carrying ``nonce_record.nonce``.

        Starting while another request is pending supersedes it.
        """
        if nonce_record.nonce in self._used_nonces:
            raise ProtocolViolation("Nonce was already used for a previous authorization request")
        if self._state == ExchangeState.AWAITING_PROVIDER and self._pending is not None:
            logger.info("Superseding pending authorization for attempt %s", self._pending.attempt_id)

        state = random_token(16)
        code_verifier = random_token(48) if self.config.response_type == "code" else None
        request = AuthorizationRequest(
            attempt_id=nonce_record.attempt_id,
            url=build_authorization_url(
                self.config,
                nonce=nonce_record.nonce,
                state=state,
                code_challenge=pkce_challenge(code_verifier) if code_verifier else None,
            ),
            nonce=nonce_record.nonce,
            state=state,
            redirect_uri=self.config.redirect_uri,
            code_verifier=code_verifier,
        )
        self._used_nonces.add(nonce_record.nonce)
        self._pending = request
        self._state = ExchangeState.AWAITING_PROVIDER
        return request

    async def complete(self, result: ProviderResult) -> TokenGrant:
        """Apply the provider outcome to the pending request.

        Raises:
            ProviderCancelled: the user dismissed the provider (not a failure).
            ProviderError: the provider reported a failure.
            ProtocolViolation: success without a token, or a state mismatch.
            AttemptSuperseded: a newer start() or reset() replaced the request
                while the code was being exchanged.
        """
        request = self._pending
        if self._state != ExchangeState.AWAITING_PROVIDER or request is None:
            raise ProtocolViolation("No authorization request is awaiting the provider")

        if result.type == ResultType.CANCEL:
            self._state = ExchangeState.CANCELLED
            self.reset()
            raise ProviderCancelled("Sign-in was cancelled")

        if result.type == ResultType.ERROR:
            self._state = ExchangeState.PROVIDER_ERROR
            self.reset()
            raise ProviderError(result.error_message or "Authentication failed")

        try:
            grant = await self._extract_grant(request, result)
        except Exception as err:
            if self._pending is not request:
                raise AttemptSuperseded("A newer authorization request replaced this one") from err
            self.reset()
            raise

        # start() or reset() may have run during the code exchange
        if self._pending is not request:
            raise AttemptSuperseded("A newer authorization request replaced this one")

        self._state = ExchangeState.SUCCESS
        self._pending = None
        return grant

    async def _extract_grant(self, request: AuthorizationRequest, result: ProviderResult) -> TokenGrant:
        if result.state != request.state:
            raise ProtocolViolation("Authorization response state does not match the request")

        if not result.id_token and result.code:
            if self.code_exchanger is None:
                raise ProtocolViolation("Received an authorization code but no code exchanger is set")
            result = await self.code_exchanger.exchange_code(result.code, request)
            if result.type == ResultType.ERROR:
                raise ProviderError(result.error_message or "Token exchange failed")

        if not result.id_token:
            raise ProtocolViolation("Provider reported success without an ID token")

        return TokenGrant(
            attempt_id=request.attempt_id,
            id_token=result.id_token,
            access_token=result.access_token,
        )

    def reset(self) -> None:
        """Return to IDLE and drop the pending request."""
        self._pending = None
        self._state = ExchangeState.IDLE


class GoogleOAuthProvider:
    """Authorization-code adapter for Google (and other OIDC providers).

    ``open_url`` presents the URL to the user and resolves with the URL the
    provider redirected back to.
    """

    def __init__(
        self,
        config: OAuthClientConfig,
        open_url: Callable[[str], Any],
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout_seconds: float = 15.0,
    ) -> None:
        self.config = config
        self.open_url = open_url
        self._transport = transport
        self._timeout = timeout_seconds

    async def authorize(self, request: AuthorizationRequest) -> ProviderResult:
        redirected = self.open_url(request.url)
        if asyncio.iscoroutine(redirected):
            redirected = await redirected
        if not redirected:
            return ProviderResult(type=ResultType.CANCEL)
        return parse_redirect(str(redirected))

    async def exchange_code(self, code: str, request: AuthorizationRequest) -> ProviderResult:
        """Redeem an authorization code at the token endpoint."""
        form = {
            "grant_type": "authorization_code",
            "code": code,
            "client_id": self.config.client_id,
            "redirect_uri": request.redirect_uri,
        }
        if request.code_verifier:
            form["code_verifier"] = request.code_verifier
        if self.config.client_secret:
            form["client_secret"] = self.config.client_secret

        async with httpx.AsyncClient(
            timeout=httpx.Timeout(self._timeout), transport=self._transport
        ) as client:
            try:
                response = await client.post(self.config.token_url, data=form)
            except httpx.HTTPError as exc:
                return ProviderResult(type=ResultType.ERROR, error_message=f"Token exchange failed: {exc}")

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        if not response.is_success:
            message = body.get("error_description") or body.get("error") or response.text
            return ProviderResult(type=ResultType.ERROR, error_message=message or "Token exchange failed")

        return ProviderResult(
            type=ResultType.SUCCESS,
            id_token=body.get("id_token"),
            access_token=body.get("access_token"),
        )


class ManualRedirectProvider(GoogleOAuthProvider):
    """Terminal adapter: prints the URL and reads back the redirected URL."""

    def __init__(self, config: OAuthClientConfig, **kwargs: Any) -> None:
        super().__init__(config, self._prompt, **kwargs)

    @staticmethod
    async def _prompt(url: str) -> str:
        return await asyncio.to_thread(_read_redirect, url)


def _read_redirect(url: str) -> str:
    print("Open this URL in a browser and sign in:\n")
    print(f"  {url}\n")
    print("Paste the URL you were redirected to (empty to cancel): ", end="", flush=True)
    return sys.stdin.readline().strip()
