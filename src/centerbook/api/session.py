"""
Token persistence.

The access/refresh token pair survives process restarts by living in a small
key-value store. SessionStore is the only object that reads or writes those
keys; the HTTP client and the auth service get it injected.
"""

import json
import logging
import os
from pathlib import Path
from typing import Optional, Protocol

from .base import ConfigError

logger = logging.getLogger(__name__)

ACCESS_TOKEN_KEY = "accessToken"
REFRESH_TOKEN_KEY = "refreshToken"


class KeyValueStorage(Protocol):
    def get(self, key: str) -> Optional[str]: ...
    def set(self, key: str, value: str) -> None: ...
    def remove(self, key: str) -> None: ...


class MemoryStorage:
    """Non-durable storage, handy for tests and one-shot scripts."""

    def __init__(self, initial: Optional[dict] = None):
        self._data = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStorage:
    """Key-value storage backed by a single JSON object on disk."""

    def __init__(self, path):
        self.path = Path(path).expanduser()

    def _load(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            with open(self.path) as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Session file {self.path} is not valid JSON: {e}")
        if not isinstance(data, dict):
            raise ConfigError(f"Session file {self.path} must contain a JSON object")
        return data

    def _dump(self, data: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w") as f:
            json.dump(data, f)
        os.replace(tmp_path, self.path)

    def get(self, key: str) -> Optional[str]:
        return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self._dump(data)

    def remove(self, key: str) -> None:
        data = self._load()
        if key in data:
            del data[key]
            self._dump(data)


class SessionStore:
    """Holds the current access and refresh tokens."""

    def __init__(self, storage: Optional[KeyValueStorage] = None):
        self.storage = storage if storage is not None else MemoryStorage()

    @property
    def access_token(self) -> Optional[str]:
        return self.storage.get(ACCESS_TOKEN_KEY)

    @property
    def refresh_token(self) -> Optional[str]:
        return self.storage.get(REFRESH_TOKEN_KEY)

    @property
    def is_authenticated(self) -> bool:
        return bool(self.access_token or self.refresh_token)

    def save(self, access_token: str, refresh_token: str) -> None:
        """Store a fresh token pair (login)."""
        self.storage.set(ACCESS_TOKEN_KEY, access_token)
        self.storage.set(REFRESH_TOKEN_KEY, refresh_token)

    def update_access_token(self, access_token: str) -> None:
        self.storage.set(ACCESS_TOKEN_KEY, access_token)
        logger.debug("Access token rotated")

    def clear(self) -> None:
        """Forget both tokens (logout)."""
        self.storage.remove(ACCESS_TOKEN_KEY)
        self.storage.remove(REFRESH_TOKEN_KEY)
