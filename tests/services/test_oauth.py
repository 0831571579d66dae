import asyncio
import io
import sys
from collections.abc import Callable
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from tests.conftest import CLIENT_ID, HeldCodeExchanger
from zklogin_bootstrap.core.errors import (
    AttemptSuperseded,
    ProtocolViolation,
    ProviderCancelled,
    ProviderError,
)
from zklogin_bootstrap.schemas.proof import NonceRecord
from zklogin_bootstrap.services.oauth import (
    ExchangeState,
    GoogleOAuthProvider,
    ManualRedirectProvider,
    OAuthClientConfig,
    ProviderResult,
    ResultType,
    TokenExchanger,
    parse_redirect,
)
from zklogin_bootstrap.utils.encoding import pkce_challenge


def _query(url: str) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}


def test_start_puts_nonce_in_dedicated_parameter(
    exchanger: TokenExchanger, make_nonce_record: Callable[..., NonceRecord]
) -> None:
    request = exchanger.start(make_nonce_record())

    params = _query(request.url)
    assert params["nonce"] == "abc"
    assert params["client_id"] == CLIENT_ID
    assert params["state"] == request.state
    assert params["scope"] == "openid profile email"
    assert exchanger.state is ExchangeState.AWAITING_PROVIDER


def test_code_flow_adds_pkce_challenge(
    oauth_config: OAuthClientConfig, make_nonce_record: Callable[..., NonceRecord]
) -> None:
    config = OAuthClientConfig(
        client_id=oauth_config.client_id,
        redirect_uri=oauth_config.redirect_uri,
        authorize_url=oauth_config.authorize_url,
        token_url=oauth_config.token_url,
        scopes=oauth_config.scopes,
        response_type="code",
    )
    request = TokenExchanger(config).start(make_nonce_record())

    params = _query(request.url)
    assert request.code_verifier
    assert params["code_challenge"] == pkce_challenge(request.code_verifier)
    assert params["code_challenge_method"] == "S256"


def test_nonce_record_cannot_be_reused(
    exchanger: TokenExchanger, make_nonce_record: Callable[..., NonceRecord]
) -> None:
    record = make_nonce_record()
    exchanger.start(record)
    exchanger.reset()

    with pytest.raises(ProtocolViolation):
        exchanger.start(record)


@pytest.mark.asyncio
async def test_success_yields_token_grant(
    exchanger: TokenExchanger, make_nonce_record: Callable[..., NonceRecord]
) -> None:
    request = exchanger.start(make_nonce_record())

    grant = await exchanger.complete(
        ProviderResult(type=ResultType.SUCCESS, id_token="id.tok.en", access_token="at", state=request.state)
    )

    assert grant.id_token == "id.tok.en"
    assert grant.access_token == "at"
    assert grant.attempt_id == "attempt-1"
    assert exchanger.state is ExchangeState.SUCCESS


@pytest.mark.asyncio
async def test_success_without_token_is_protocol_violation(
    exchanger: TokenExchanger, make_nonce_record: Callable[..., NonceRecord]
) -> None:
    request = exchanger.start(make_nonce_record())

    with pytest.raises(ProtocolViolation):
        await exchanger.complete(ProviderResult(type=ResultType.SUCCESS, state=request.state))
    assert exchanger.state is ExchangeState.IDLE


@pytest.mark.asyncio
async def test_state_mismatch_is_protocol_violation(
    exchanger: TokenExchanger, make_nonce_record: Callable[..., NonceRecord]
) -> None:
    exchanger.start(make_nonce_record())

    with pytest.raises(ProtocolViolation):
        await exchanger.complete(
            ProviderResult(type=ResultType.SUCCESS, id_token="id.tok.en", state="forged")
        )


@pytest.mark.asyncio
async def test_cancel_resets_to_idle_without_failure(
    exchanger: TokenExchanger, make_nonce_record: Callable[..., NonceRecord]
) -> None:
    exchanger.start(make_nonce_record())

    with pytest.raises(ProviderCancelled) as exc_info:
        await exchanger.complete(ProviderResult(type=ResultType.CANCEL))

    assert exc_info.value.is_failure is False
    assert exchanger.state is ExchangeState.IDLE
    assert exchanger.pending is None


@pytest.mark.asyncio
async def test_provider_error_message_is_verbatim(
    exchanger: TokenExchanger, make_nonce_record: Callable[..., NonceRecord]
) -> None:
    exchanger.start(make_nonce_record())

    with pytest.raises(ProviderError) as exc_info:
        await exchanger.complete(
            ProviderResult(type=ResultType.ERROR, error_message="Popup closed by Google: try again")
        )

    assert exc_info.value.message == "Popup closed by Google: try again"
    assert exchanger.state is ExchangeState.IDLE


@pytest.mark.asyncio
async def test_complete_without_start_is_protocol_violation(exchanger: TokenExchanger) -> None:
    with pytest.raises(ProtocolViolation):
        await exchanger.complete(ProviderResult(type=ResultType.SUCCESS, id_token="x"))


def test_parse_redirect_reads_fragment_token() -> None:
    result = parse_redirect("http://127.0.0.1:8765/callback#id_token=aaa.bbb.ccc&state=s1")

    assert result.type is ResultType.SUCCESS
    assert result.id_token == "aaa.bbb.ccc"
    assert result.state == "s1"


def test_parse_redirect_maps_access_denied_to_cancel() -> None:
    result = parse_redirect("http://127.0.0.1:8765/callback?error=access_denied&state=s1")
    assert result.type is ResultType.CANCEL


def test_parse_redirect_keeps_error_description() -> None:
    result = parse_redirect(
        "http://127.0.0.1:8765/callback?error=invalid_request&error_description=Missing+nonce"
    )
    assert result.type is ResultType.ERROR
    assert result.error_message == "Missing nonce"


@pytest.mark.asyncio
async def test_code_is_exchanged_for_id_token(
    oauth_config: OAuthClientConfig, make_nonce_record: Callable[..., NonceRecord]
) -> None:
    config = OAuthClientConfig(
        client_id=oauth_config.client_id,
        redirect_uri=oauth_config.redirect_uri,
        authorize_url=oauth_config.authorize_url,
        token_url=oauth_config.token_url,
        scopes=oauth_config.scopes,
        response_type="code",
    )
    seen: list[httpx.Request] = []

    def _token_endpoint(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"id_token": "id.from.code", "access_token": "at"})

    provider = GoogleOAuthProvider(
        config,
        open_url=lambda url: None,
        transport=httpx.MockTransport(_token_endpoint),
    )
    exchanger = TokenExchanger(config, code_exchanger=provider)
    request = exchanger.start(make_nonce_record())

    grant = await exchanger.complete(
        ProviderResult(type=ResultType.SUCCESS, code="auth-code", state=request.state)
    )

    assert grant.id_token == "id.from.code"
    form = parse_qs(seen[0].content.decode())
    assert form["code"] == ["auth-code"]
    assert form["code_verifier"] == [request.code_verifier]


@pytest.mark.asyncio
async def test_provider_without_redirect_reports_cancel(
    oauth_config: OAuthClientConfig, make_nonce_record: Callable[..., NonceRecord]
) -> None:
    provider = GoogleOAuthProvider(oauth_config, open_url=lambda url: "")
    request = TokenExchanger(oauth_config).start(make_nonce_record())

    result = await provider.authorize(request)

    assert result.type is ResultType.CANCEL


@pytest.mark.asyncio
async def test_success_without_state_is_protocol_violation(
    exchanger: TokenExchanger, make_nonce_record: Callable[..., NonceRecord]
) -> None:
    exchanger.start(make_nonce_record())

    with pytest.raises(ProtocolViolation):
        await exchanger.complete(ProviderResult(type=ResultType.SUCCESS, id_token="id.tok.en"))
    assert exchanger.state is ExchangeState.IDLE
    assert exchanger.pending is None


@pytest.mark.asyncio
async def test_restart_during_code_exchange_keeps_newer_request(
    oauth_config: OAuthClientConfig,
    make_nonce_record: Callable[..., NonceRecord],
    make_id_token: Callable[..., str],
) -> None:
    held = HeldCodeExchanger(make_id_token)
    exchanger = TokenExchanger(oauth_config, code_exchanger=held)
    first = exchanger.start(make_nonce_record())

    task = asyncio.create_task(
        exchanger.complete(ProviderResult(type=ResultType.SUCCESS, code="c1", state=first.state))
    )
    await held.entered.wait()
    second = exchanger.start(make_nonce_record(nonce="n2", attempt_id="attempt-2"))
    held.release.set()

    with pytest.raises(AttemptSuperseded):
        await task
    assert exchanger.pending == second
    assert exchanger.state is ExchangeState.AWAITING_PROVIDER

    grant = await exchanger.complete(
        ProviderResult(type=ResultType.SUCCESS, id_token="id.tok.en", state=second.state)
    )
    assert grant.attempt_id == "attempt-2"
    assert held.codes == ["c1"]


@pytest.mark.asyncio
async def test_manual_provider_reads_redirect_off_the_loop(
    mocker,
    monkeypatch: pytest.MonkeyPatch,
    oauth_config: OAuthClientConfig,
    make_nonce_record: Callable[..., NonceRecord],
    capsys,
) -> None:
    monkeypatch.setattr(
        sys, "stdin", io.StringIO("http://127.0.0.1:8765/callback#id_token=a.b.c&state=s1\n")
    )
    to_thread = mocker.spy(asyncio, "to_thread")
    request = TokenExchanger(oauth_config).start(make_nonce_record())

    result = await ManualRedirectProvider(oauth_config).authorize(request)

    assert result.type is ResultType.SUCCESS
    assert result.id_token == "a.b.c"
    assert result.state == "s1"
    to_thread.assert_called_once()
    assert request.url in capsys.readouterr().out
