"""Config Loader - Loads dispatcher configuration and builds httpx clients.

Handles loading YAML config files with environment variable substitution
and translating a DispatcherConfig into httpx client settings, including
TLS options.
"""

from __future__ import annotations

import os
import re
import ssl
from pathlib import Path
from threading import Lock
from typing import Any

import httpx
import yaml
from pydantic import ValidationError

from cosy_network.models import DispatcherConfig


class ConfigError(Exception):
    """Raised when configuration loading fails."""


_ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")

_shared_client: httpx.Client | None = None
_shared_client_lock = Lock()


def load_dispatcher_config(config_path: Path) -> DispatcherConfig:
    """Read a YAML dispatcher config. String settings may reference ${ENV_VAR}."""
    try:
        text = config_path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {config_path}") from e

    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file: {e}") from e

    # An empty file means all defaults
    document = {} if document is None else document
    if not isinstance(document, dict):
        raise ConfigError("Config file must be a YAML mapping")

    settings = {key: _expand_env(value) for key, value in document.items()}
    try:
        return DispatcherConfig.model_validate(settings)
    except ValidationError as e:
        raise ConfigError(f"Invalid config structure: {e}") from e


def build_client_kwargs(config: DispatcherConfig) -> dict[str, Any]:
    """Build kwargs for httpx.Client / httpx.AsyncClient including TLS configuration."""
    kwargs: dict[str, Any] = {
        "headers": config.headers,
        "timeout": config.timeout,
        "follow_redirects": config.follow_redirects,
    }

    # Handle client certificate (mTLS)
    if config.cert and config.key:
        if config.key_password:
            kwargs["cert"] = (config.cert, config.key, config.key_password)
        else:
            kwargs["cert"] = (config.cert, config.key)

    # Handle ciphers - requires creating a custom SSL context
    if config.ciphers:
        ssl_context = ssl.create_default_context()
        try:
            ssl_context.set_ciphers(config.ciphers)
        except ssl.SSLError as e:
            raise ConfigError(f"Invalid cipher string '{config.ciphers}': {e}") from e

        if config.ca_bundle:
            ssl_context.load_verify_locations(config.ca_bundle)
        elif not config.verify_ssl:
            ssl_context.check_hostname = False
            ssl_context.verify_mode = ssl.CERT_NONE

        kwargs["verify"] = ssl_context
    # Handle server verification without custom ciphers
    elif config.ca_bundle:
        kwargs["verify"] = config.ca_bundle
    elif not config.verify_ssl:
        kwargs["verify"] = False
    # else: use httpx default (True)

    return kwargs


def create_client(config: DispatcherConfig) -> httpx.Client:
    return httpx.Client(**build_client_kwargs(config))


def create_async_client(config: DispatcherConfig) -> httpx.AsyncClient:
    return httpx.AsyncClient(**build_client_kwargs(config))


def shared_client() -> httpx.Client:
    """Return the process-wide client, creating it with default settings on first use."""
    global _shared_client
    with _shared_client_lock:
        if _shared_client is None or _shared_client.is_closed:
            _shared_client = create_client(DispatcherConfig())
        return _shared_client


def _expand_env(value: Any) -> Any:
    """Expand ${ENV_VAR} references in one setting.

    headers is the only nested mapping in DispatcherConfig, so one level of
    dict is expanded and everything that is not a string passes through.
    """
    if isinstance(value, dict):
        return {name: _expand_env(item) for name, item in value.items()}
    if not isinstance(value, str):
        return value

    for var_name in _ENV_VAR_PATTERN.findall(value):
        if var_name not in os.environ:
            raise ConfigError(f"Environment variable '{var_name}' is not set")
    return _ENV_VAR_PATTERN.sub(lambda match: os.environ[match.group(1)], value)
