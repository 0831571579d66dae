# tests/conftest.py
from __future__ import annotations

import asyncio
import json
import os
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
import pytest
from jose import jwt
from nacl.signing import SigningKey

os.environ.setdefault("SESSION_STORAGE_BACKEND", "memory")

from zklogin_bootstrap.schemas.proof import NonceRecord, SuiNetwork
from zklogin_bootstrap.services.keys import EphemeralKeyMaterial
from zklogin_bootstrap.services.oauth import (
    AuthorizationRequest,
    OAuthClientConfig,
    ProviderResult,
    ResultType,
    TokenExchanger,
)
from zklogin_bootstrap.services.proof_client import ProofServiceClient, ProofServiceConfig
from zklogin_bootstrap.services.session_store import MemoryStorage, SessionStore

PROVIDER_SECRET = "provider-test-secret"
ISSUER = "https://accounts.google.com"
CLIENT_ID = "client-123"
PROOF_BASE_URL = "https://proof.test/v1"

Responder = httpx.Response | Callable[[httpx.Request], httpx.Response | Awaitable[httpx.Response]]


class ProofServiceStub:
    """Routes requests for the fake proof service by (method, path)."""

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Responder] = {}
        self.requests: list[httpx.Request] = []

    def add(self, method: str, path: str, responder: Responder) -> None:
        self.routes[(method, "/v1" + path)] = responder

    def add_json(self, method: str, path: str, body: Any, status_code: int = 200) -> None:
        self.add(method, path, httpx.Response(status_code, json=body))

    def calls(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == "/v1" + path]

    def handler(self, request: httpx.Request) -> httpx.Response | Awaitable[httpx.Response]:
        self.requests.append(request)
        responder = self.routes.get((request.method, request.url.path))
        if responder is None:
            return httpx.Response(404, text=f"no route for {request.method} {request.url.path}")
        if callable(responder):
            return responder(request)
        return responder


class HeldResponse:
    """Responder that parks the request until ``release`` is set."""

    def __init__(self, response: httpx.Response) -> None:
        self.response = response
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.entered.set()
        await self.release.wait()
        return self.response


class HeldCodeExchanger:
    """Code exchanger that mints a token for the request's nonce once released."""

    def __init__(self, mint: Callable[..., str]) -> None:
        self.mint = mint
        self.entered = asyncio.Event()
        self.release = asyncio.Event()
        self.codes: list[str] = []

    async def exchange_code(self, code: str, request: AuthorizationRequest) -> ProviderResult:
        self.codes.append(code)
        self.entered.set()
        await self.release.wait()
        return ProviderResult(type=ResultType.SUCCESS, id_token=self.mint(nonce=request.nonce))


def request_json(request: httpx.Request) -> dict[str, Any]:
    return json.loads(request.content.decode("utf-8"))


def nonce_payload(
    nonce: str = "abc", randomness: str = "r1", epoch: int = 118, max_epoch: int = 120
) -> dict[str, Any]:
    return {
        "data": {
            "nonce": nonce,
            "randomness": randomness,
            "epoch": epoch,
            "maxEpoch": max_epoch,
            "estimatedExpiration": 1_700_100_000_000,
        }
    }


@pytest.fixture()
def proof_stub() -> ProofServiceStub:
    return ProofServiceStub()


@pytest.fixture()
def proof_client(proof_stub: ProofServiceStub) -> ProofServiceClient:
    config = ProofServiceConfig(
        base_url=PROOF_BASE_URL,
        public_key="enoki_public_test",
        private_key="enoki_private_test",
        timeout_seconds=5.0,
    )
    return ProofServiceClient(config, transport=httpx.MockTransport(proof_stub.handler))


@pytest.fixture()
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture()
def store(storage: MemoryStorage) -> SessionStore:
    return SessionStore(storage, key="auth-storage")


@pytest.fixture()
def key_material() -> EphemeralKeyMaterial:
    return EphemeralKeyMaterial(SigningKey(bytes(range(32))))


@pytest.fixture()
def make_nonce_record(key_material: EphemeralKeyMaterial) -> Callable[..., NonceRecord]:
    def _make(**overrides: Any) -> NonceRecord:
        values: dict[str, Any] = {
            "nonce": "abc",
            "randomness": "r1",
            "epoch": 118,
            "max_epoch": 120,
            "estimated_expiration": None,
            "network": SuiNetwork.TESTNET,
            "ephemeral_public_key": key_material.public_key,
            "attempt_id": "attempt-1",
        }
        values.update(overrides)
        return NonceRecord(**values)

    return _make


@pytest.fixture()
def make_id_token() -> Callable[..., str]:
    """Mint a provider-style ID token; pass ``claim=None`` to drop a claim."""

    def _make(**claims: Any) -> str:
        payload: dict[str, Any] = {
            "iss": ISSUER,
            "sub": "u1",
            "aud": CLIENT_ID,
            "email": "a@b.com",
            "nonce": "abc",
            "iat": 1_700_000_000,
            "exp": 1_700_003_600,
        }
        payload.update(claims)
        payload = {k: v for k, v in payload.items() if v is not None}
        return jwt.encode(payload, PROVIDER_SECRET, algorithm="HS256")

    return _make


@pytest.fixture()
def oauth_config() -> OAuthClientConfig:
    return OAuthClientConfig(
        client_id=CLIENT_ID,
        redirect_uri="http://127.0.0.1:8765/callback",
        authorize_url="https://accounts.example/o/oauth2/v2/auth",
        token_url="https://accounts.example/token",
        scopes=("openid", "profile", "email"),
        response_type="id_token",
    )


@pytest.fixture()
def exchanger(oauth_config: OAuthClientConfig) -> TokenExchanger:
    return TokenExchanger(oauth_config)
