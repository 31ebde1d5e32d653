"""
Factory for creating a configured backend client.

Settings come from a JSON config file; environment variables override it:

    {"base_url": "http://localhost:8000/", "timeout": 20, "session_path": "~/.centerbook/session.json"}
"""

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

import httpx

from .base import ConfigError
from .http_client import DEFAULT_BASE_URL, DEFAULT_TIMEOUT, AuthenticatedClient
from .session import JsonFileStorage, SessionStore

DEFAULT_SESSION_PATH = "~/.centerbook/session.json"

ENV_OVERRIDES = {
    "base_url": "CENTERBOOK_API_BASE_URL",
    "timeout": "CENTERBOOK_TIMEOUT",
    "session_path": "CENTERBOOK_SESSION_PATH",
}


@dataclass
class ClientConfig:
    base_url: str = DEFAULT_BASE_URL
    timeout: float = DEFAULT_TIMEOUT
    session_path: str = DEFAULT_SESSION_PATH


def load_config(config_path: Optional[str] = None, environ: Optional[dict] = None) -> ClientConfig:
    """
    Load client settings.

    Args:
        config_path: Path to a JSON config file; a missing file means defaults
        environ: Environment mapping (defaults to os.environ)

    Returns:
        The resolved ClientConfig

    Raises:
        ConfigError: If the file is not a JSON object or a value is invalid
    """
    environ = os.environ if environ is None else environ
    values: dict = {}

    if config_path and Path(config_path).exists():
        with open(config_path) as f:
            try:
                values = json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigError(f"{config_path} is not valid JSON: {e}")
        if not isinstance(values, dict):
            raise ConfigError(f"{config_path} must contain a JSON object")

    for key, env_name in ENV_OVERRIDES.items():
        if environ.get(env_name):
            values[key] = environ[env_name]

    unknown = set(values) - set(ENV_OVERRIDES)
    if unknown:
        raise ConfigError(f"Unknown config keys: {', '.join(sorted(unknown))}")

    try:
        timeout = float(values.get("timeout", DEFAULT_TIMEOUT))
    except (TypeError, ValueError):
        raise ConfigError(f"timeout must be a number, got {values['timeout']!r}")
    if timeout <= 0:
        raise ConfigError("timeout must be positive")

    base_url = values.get("base_url", DEFAULT_BASE_URL)
    if not isinstance(base_url, str) or not base_url.startswith(("http://", "https://")):
        raise ConfigError(f"base_url must be an http(s) URL, got {base_url!r}")

    return ClientConfig(
        base_url=base_url,
        timeout=timeout,
        session_path=str(values.get("session_path", DEFAULT_SESSION_PATH)),
    )


def create_client(
    config: ClientConfig,
    on_session_expired: Optional[Callable[[], None]] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> AuthenticatedClient:
    """Create an AuthenticatedClient whose tokens persist in the configured session file."""
    session = SessionStore(JsonFileStorage(config.session_path))
    return AuthenticatedClient(
        session,
        base_url=config.base_url,
        timeout=config.timeout,
        transport=transport,
        on_session_expired=on_session_expired,
    )


def load_client_from_config(config_path: Optional[str] = None) -> AuthenticatedClient:
    return create_client(load_config(config_path))
