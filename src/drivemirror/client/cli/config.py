"""Configuration utilities for drivemirror CLI.

This module provides shared configuration functions used across CLI
commands. Settings are stored as JSON in ~/.drivemirror/config.json:

    {
      "credentials": {"client_id": ..., "client_secret": ..., "refresh_token": ...},
      "proxy": {"host": ..., "port": ..., "username": ..., "password": ..., "active": ...},
      "tmp_dir": "...",
      "limits": {"chunk_size": ..., "large_file_threshold": ..., "max_retries": ...}
    }
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from drivemirror.client.auth import Credentials
from drivemirror.core.config import ProxySettings, UploaderConfig

logger = logging.getLogger(__name__)

# Keys of the "limits" section mapped onto UploaderConfig fields
LIMIT_KEYS = (
    "max_retries",
    "large_file_threshold",
    "chunk_size",
    "max_chunk_retries",
    "max_backoff",
    "max_token_refreshes",
    "timeout",
    "api_url",
    "token_url",
)


def get_config_dir() -> Path:
    """Get the configuration directory for drivemirror.

    Returns:
        Path to ~/.drivemirror.
    """
    return Path.home() / ".drivemirror"


def get_config_file() -> Path:
    """Get the path to the config file."""
    return get_config_dir() / "config.json"


def load_config() -> dict[str, Any]:
    """Load configuration from config file."""
    config_file = get_config_file()
    if config_file.exists():
        return dict(json.loads(config_file.read_text()))
    return {}


def save_config(config: dict[str, Any]) -> None:
    """Save configuration to config file."""
    config_file = get_config_file()
    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(json.dumps(config, indent=2))
    config_file.chmod(0o600)


def get_tmp_dir() -> Path:
    """Get the checkpoint directory.

    Returns:
        Configured tmp_dir, or ~/.drivemirror/tmp.
    """
    config = load_config()
    if config.get("tmp_dir"):
        return Path(config["tmp_dir"]).expanduser().resolve()
    return get_config_dir() / "tmp"


def load_proxy() -> ProxySettings | None:
    """Get the stored proxy settings, if any."""
    data = load_config().get("proxy")
    if not data or not data.get("host"):
        return None
    return ProxySettings(
        host=data["host"],
        port=int(data.get("port", 80)),
        username=data.get("username") or None,
        password=data.get("password") or None,
        active=bool(data.get("active", True)),
    )


def load_uploader_config() -> UploaderConfig:
    """Build the uploader configuration from the config file.

    Raises:
        ValueError: If a stored limit is invalid.
    """
    limits = load_config().get("limits", {})
    unknown = set(limits) - set(LIMIT_KEYS)
    if unknown:
        logger.warning(f"Ignoring unknown settings: {', '.join(sorted(unknown))}")
    overrides = {key: limits[key] for key in LIMIT_KEYS if key in limits}
    return UploaderConfig(tmp_dir=get_tmp_dir(), proxy=load_proxy(), **overrides)


def load_credentials() -> Credentials:
    """Get the stored credentials (empty values when not configured)."""
    data = load_config().get("credentials", {})
    return Credentials(
        access_token=data.get("access_token", ""),
        refresh_token=data.get("refresh_token", ""),
        token_type=data.get("token_type", "Bearer"),
        client_id=data.get("client_id", ""),
        client_secret=data.get("client_secret", ""),
    )


def save_credentials(credentials: Credentials) -> None:
    """Store credentials in the config file."""
    config = load_config()
    config["credentials"] = {
        "client_id": credentials.client_id,
        "client_secret": credentials.client_secret,
        "refresh_token": credentials.refresh_token,
        "token_type": credentials.token_type,
    }
    save_config(config)
