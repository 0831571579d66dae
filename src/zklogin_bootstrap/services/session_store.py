"""Persisted session store for zkLogin.

The store owns the single current Session of the process. It keeps the full
Session (including the in-memory ephemeral secret) while the process runs and
writes only the public fields to a key-value backend so the UI can restore
who is signed in after a restart.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from threading import Lock
from typing import Any, Final, Protocol

import redis
from pydantic import ValidationError

from zklogin_bootstrap.core.settings import Settings, settings
from zklogin_bootstrap.schemas.session import Session

logger = logging.getLogger(__name__)

STORAGE_VERSION: Final[int] = 1
# Fields that must never survive a round-trip through storage
_SECRET_FIELDS: Final[tuple[str, ...]] = ("ephemeral_secret", "access_token")


class KeyValueStorage(Protocol):
    """Minimal string key-value persistence."""

    def read(self, key: str) -> str | None: ...

    def write(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryStorage:
    """In-process storage, mainly for tests and short-lived tools."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}
        self._lock = Lock()

    def read(self, key: str) -> str | None:
        with self._lock:
            return self._data.get(key)

    def write(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)


class FileStorage:
    """One JSON file per key inside a private directory."""

    def __init__(self, directory: str | os.PathLike[str]) -> None:
        self.directory = Path(directory).expanduser()

    def _path(self, key: str) -> Path:
        safe = "".join(c if c.isalnum() or c in "-_." else "_" for c in key)
        return self.directory / f"{safe}.json"

    def read(self, key: str) -> str | None:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def write(self, key: str, value: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True, mode=0o700)
        fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=".tmp-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(value)
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, self._path(key))
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def delete(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


class RedisStorage:
    """Redis-backed storage for shared or server-side deployments."""

    def __init__(self, client: redis.Redis, *, namespace: str = "zklogin") -> None:
        self._redis = client
        self.namespace = namespace

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> RedisStorage:
        return cls(redis.from_url(url), **kwargs)  # type: ignore[no-untyped-call]

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    def read(self, key: str) -> str | None:
        value = self._redis.get(self._key(key))
        if value is None:
            return None
        return value.decode("utf-8") if isinstance(value, bytes) else str(value)

    def write(self, key: str, value: str) -> None:
        self._redis.set(self._key(key), value)

    def delete(self, key: str) -> None:
        self._redis.delete(self._key(key))


def build_storage(config: Settings | None = None) -> KeyValueStorage:
    """Return the storage backend selected in settings."""
    config = config or settings
    if config.storage_backend == "memory":
        return MemoryStorage()
    if config.storage_backend == "redis":
        return RedisStorage.from_url(config.redis_url)
    return FileStorage(config.storage_path)


class SessionStore:
    """Process-wide holder of the current Session.

    Lifecycle: ``load()`` at startup, ``set()`` on bind and address merges,
    ``clear()`` on sign-out or expiry.
    """

    def __init__(self, storage: KeyValueStorage, *, key: str | None = None) -> None:
        self.storage = storage
        self.key = key or settings.storage_key
        self._session: Session | None = None
        self._lock = Lock()

    def get(self) -> Session | None:
        with self._lock:
            return self._session

    def set(self, session: Session) -> None:
        payload = serialize_session(session)
        with self._lock:
            self.storage.write(self.key, payload)
            self._session = session

    def replace(self, expected: Session, session: Session) -> bool:
        """Store ``session`` only if the current session is still ``expected``.

        Sessions match on their ID token and ephemeral public key. Returns
        False, leaving the store untouched, after a sign-out or a new bind.
        """
        payload = serialize_session(session)
        with self._lock:
            current = self._session
            if current is None or not _same_binding(current, expected):
                return False
            self.storage.write(self.key, payload)
            self._session = session
            return True

    def clear(self) -> None:
        with self._lock:
            self.storage.delete(self.key)
            self._session = None

    def load(self) -> Session | None:
        """Restore the persisted session, replacing any in-memory one.

        The restored session never carries an ephemeral secret. Unreadable
        data is discarded so a corrupt slot cannot block sign-in.
        """
        raw = self.storage.read(self.key)
        if raw is None:
            with self._lock:
                self._session = None
            return None

        try:
            session = deserialize_session(raw)
        except (ValueError, ValidationError) as err:
            logger.warning("Discarding unreadable persisted session: %s", err)
            self.clear()
            return None

        with self._lock:
            self._session = session
        logger.info("Restored session for subject %s", session.identity.sub)
        return session


def _same_binding(left: Session, right: Session) -> bool:
    return (
        left.id_token == right.id_token
        and left.ephemeral_public_key == right.ephemeral_public_key
    )


def serialize_session(session: Session) -> str:
    """Return the privacy-filtered storage form of ``session``."""
    data = session.without_secrets().model_dump(mode="json")
    for name in _SECRET_FIELDS:
        data.pop(name, None)
    return json.dumps({"version": STORAGE_VERSION, "session": data}, separators=(",", ":"))


def deserialize_session(raw: str) -> Session:
    """Parse a stored envelope, nulling secrets even if a stale form has them."""
    envelope = json.loads(raw)
    if not isinstance(envelope, dict) or not isinstance(envelope.get("session"), dict):
        raise ValueError("Persisted session envelope is malformed")
    if envelope.get("version") != STORAGE_VERSION:
        raise ValueError(f"Unsupported persisted session version: {envelope.get('version')!r}")

    data = dict(envelope["session"])
    for name in _SECRET_FIELDS:
        if data.pop(name, None) is not None:
            logger.warning("Persisted session contained %s; ignoring it", name)
    return Session.model_validate(data).without_secrets()

