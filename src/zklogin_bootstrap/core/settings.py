"""Library settings and configuration.

This module defines all configuration options for zkLogin bootstrap.
Settings are loaded from environment variables with sensible defaults.
"""

from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

FULLNODE_URL_TEMPLATE = "https://fullnode.{network}.sui.io:443"


class Settings(BaseSettings):
    """Settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    """

    # Proof / relay service
    proof_service_base_url: str = Field(
        default="https://api.enoki.mystenlabs.com/v1",
        alias="PROOF_SERVICE_BASE_URL",
    )
    proof_service_public_key: str | None = Field(default=None, alias="PROOF_SERVICE_PUBLIC_KEY")
    proof_service_private_key: str | None = Field(
        default=None,
        alias="PROOF_SERVICE_PRIVATE_KEY",
    )
    proof_service_timeout_seconds: float = Field(
        default=15.0,
        alias="PROOF_SERVICE_TIMEOUT_SECONDS",
    )

    # Chain
    network: str = Field(default="testnet", alias="SUI_NETWORK")
    additional_epochs: int = Field(default=2, alias="ZKLOGIN_ADDITIONAL_EPOCHS")
    rpc_url: str | None = Field(default=None, alias="SUI_RPC_URL")
    rpc_timeout_seconds: float = Field(default=15.0, alias="SUI_RPC_TIMEOUT_SECONDS")

    # OAuth provider (Google by default)
    oauth_client_id: str | None = Field(default=None, alias="OAUTH_CLIENT_ID")
    oauth_client_secret: str | None = Field(default=None, alias="OAUTH_CLIENT_SECRET")
    oauth_redirect_uri: str = Field(
        default="http://127.0.0.1:8765/callback",
        alias="OAUTH_REDIRECT_URI",
    )
    oauth_authorize_url: str = Field(
        default="https://accounts.google.com/o/oauth2/v2/auth",
        alias="OAUTH_AUTHORIZE_URL",
    )
    oauth_token_url: str = Field(
        default="https://oauth2.googleapis.com/token",
        alias="OAUTH_TOKEN_URL",
    )
    oauth_scopes: Annotated[list[str], NoDecode] = Field(
        default=["openid", "profile", "email"],
        alias="OAUTH_SCOPES",
    )
    oauth_response_type: str = Field(default="code", alias="OAUTH_RESPONSE_TYPE")

    # Session persistence
    storage_backend: str = Field(default="file", alias="SESSION_STORAGE_BACKEND")
    storage_path: str = Field(default="~/.zklogin_bootstrap", alias="SESSION_STORAGE_PATH")
    storage_key: str = Field(default="auth-storage", alias="SESSION_STORAGE_KEY")
    redis_url: str = Field(default="redis://localhost:6379", alias="REDIS_URL")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("network")
    @classmethod
    def normalize_network(cls, v: str) -> str:
        return (v or "").strip().lower()

    @field_validator("storage_backend")
    @classmethod
    def normalize_backend(cls, v: str) -> str:
        v = (v or "").strip().lower()
        if v not in ("memory", "file", "redis"):
            raise ValueError("SESSION_STORAGE_BACKEND must be one of: memory, file, redis")
        return v

    @field_validator("oauth_scopes", mode="before")
    @classmethod
    def normalize_scopes(cls, v):
        # OAUTH_SCOPES is comma or space separated
        if isinstance(v, str):
            parts = [p.strip() for p in v.replace(" ", ",").split(",") if p.strip()]
            return parts or ["openid"]
        return v

    @property
    def effective_rpc_url(self) -> str:
        """Return the JSON-RPC endpoint, defaulting to the public fullnode.

        Returns:
            The configured RPC URL, or the Mysten fullnode for the active network
        """
        if self.rpc_url:
            return self.rpc_url
        return FULLNODE_URL_TEMPLATE.format(network=self.network)


settings = Settings()
