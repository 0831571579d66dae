"""Schemas describing a bound zkLogin session."""
from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from zklogin_bootstrap.schemas.proof import ChainAddress, SuiNetwork


class IdentityClaims(BaseModel):
    """Identity claims decoded from an OAuth ID token (unverified)."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    iss: str | None = None
    sub: str
    aud: str | list[str] | None = None
    email: str | None = None
    name: str | None = None
    picture: str | None = None
    nonce: str | None = None
    iat: int | None = None
    exp: int | None = None

    @model_validator(mode="before")
    @classmethod
    def _default_name(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("name") and data.get("email"):
            data = {**data, "name": data["email"]}
        return data


class Session(BaseModel):
    """Aggregate of a verified nonce binding.

    ``ephemeral_secret`` and ``access_token`` live in memory only and are
    excluded from every serialized form of the session.
    """

    model_config = ConfigDict(frozen=True)

    identity: IdentityClaims
    ephemeral_public_key: str
    ephemeral_secret: str | None = Field(default=None, exclude=True, repr=False)
    randomness: str
    epoch: int
    max_epoch: int
    id_token: str = Field(repr=False)
    access_token: str | None = Field(default=None, exclude=True, repr=False)
    network: SuiNetwork
    address: str | None = None
    addresses: tuple[ChainAddress, ...] = ()

    def is_expired(self, current_epoch: int) -> bool:
        """Return True once the chain has moved past ``max_epoch``."""
        return current_epoch > self.max_epoch

    def with_addresses(self, resolved: Iterable[ChainAddress]) -> Session:
        """Return a copy with ``resolved`` merged in, append-only.

        Known addresses keep their position; the first resolved address becomes
        the selected one when nothing is selected yet.
        """
        merged = list(self.addresses)
        seen = {item.address for item in merged}
        for item in resolved:
            if item.address in seen:
                continue
            merged.append(item)
            seen.add(item.address)

        selected = self.address or (merged[0].address if merged else None)
        return self.model_copy(update={"addresses": tuple(merged), "address": selected})

    def without_secrets(self) -> Session:
        """Return a copy holding only public, persistable fields."""
        return self.model_copy(update={"ephemeral_secret": None, "access_token": None})
