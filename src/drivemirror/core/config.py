"""Shared configuration classes for drivemirror.

This module defines the settings consumed by the sync core: where
checkpoints live, how to reach the remote store (optionally through a
proxy), and the tunable limits of the retry and chunked-upload logic.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import quote

# Remote store endpoints
DEFAULT_API_URL = "https://www.googleapis.com"
DEFAULT_TOKEN_URL = "https://accounts.google.com/o/oauth2/token"

# Resumable upload chunks must be a multiple of this unit (the last one may be shorter)
CHUNK_ALIGNMENT = 256 * 1024  # 256 KiB

DEFAULT_CHUNK_SIZE = 10 * 1024 * 1024  # 10 MiB
DEFAULT_LARGE_FILE_THRESHOLD = 30 * 1024 * 1024  # 30 MiB
DEFAULT_MAX_RETRIES = 10
DEFAULT_MAX_CHUNK_RETRIES = 5
DEFAULT_MAX_BACKOFF = 64.0  # seconds
DEFAULT_MAX_TOKEN_REFRESHES = 3


def default_tmp_dir() -> Path:
    """Get the default directory for upload checkpoints.

    Returns:
        Path to ~/.drivemirror/tmp.
    """
    return Path.home() / ".drivemirror" / "tmp"


@dataclass
class ProxySettings:
    """HTTP proxy settings.

    Attributes:
        host: Proxy host name.
        port: Proxy port.
        username: Optional user name for proxy authentication.
        password: Optional password for proxy authentication.
        active: Whether the proxy should be used at all.
        scheme: Proxy URL scheme.
    """

    host: str
    port: int = 80
    username: str | None = None
    password: str | None = None
    active: bool = True
    scheme: str = "http"

    def __post_init__(self) -> None:
        """Validate proxy settings."""
        if self.active and not self.host:
            raise ValueError("An active proxy needs a host")
        if not 0 < self.port < 65536:
            raise ValueError(f"Invalid proxy port: {self.port}")

    @property
    def url(self) -> str:
        """Get the proxy URL, including credentials when set."""
        auth = ""
        if self.username:
            auth = quote(self.username, safe="")
            if self.password:
                auth += ":" + quote(self.password, safe="")
            auth += "@"
        return f"{self.scheme}://{auth}{self.host}:{self.port}"


@dataclass
class UploaderConfig:
    """Configuration of the sync core.

    Attributes:
        tmp_dir: Writable directory holding upload checkpoint files.
        proxy: Optional HTTP proxy settings.
        api_url: Base URL of the remote store API.
        token_url: OAuth token endpoint used to refresh access tokens.
        timeout: HTTP request timeout in seconds.
        max_retries: Retry ceiling for remote calls (queries, inserts, trash).
        large_file_threshold: Files above this size use the resumable protocol.
        chunk_size: Size of one resumable chunk, a multiple of CHUNK_ALIGNMENT.
        max_chunk_retries: Backoff attempts per chunk before giving up.
        max_backoff: Upper bound of one backoff sleep in seconds.
        max_token_refreshes: Token renewals allowed per chunk.
    """

    tmp_dir: Path = field(default_factory=default_tmp_dir)
    proxy: ProxySettings | None = None
    api_url: str = DEFAULT_API_URL
    token_url: str = DEFAULT_TOKEN_URL
    timeout: float = 30.0
    max_retries: int = DEFAULT_MAX_RETRIES
    large_file_threshold: int = DEFAULT_LARGE_FILE_THRESHOLD
    chunk_size: int = DEFAULT_CHUNK_SIZE
    max_chunk_retries: int = DEFAULT_MAX_CHUNK_RETRIES
    max_backoff: float = DEFAULT_MAX_BACKOFF
    max_token_refreshes: int = DEFAULT_MAX_TOKEN_REFRESHES

    def __post_init__(self) -> None:
        """Normalize URLs and validate limits."""
        self.tmp_dir = Path(self.tmp_dir).expanduser()
        self.api_url = self.api_url.rstrip("/")
        if self.chunk_size <= 0 or self.chunk_size % CHUNK_ALIGNMENT != 0:
            raise ValueError(
                f"Chunk size must be a positive multiple of {CHUNK_ALIGNMENT} bytes, "
                f"got {self.chunk_size}"
            )
        if self.max_retries < 0 or self.max_chunk_retries < 0:
            raise ValueError("Retry limits cannot be negative")
        if self.large_file_threshold < 0:
            raise ValueError("Large-file threshold cannot be negative")

    @property
    def proxy_url(self) -> str | None:
        """Get the proxy URL if a proxy is active."""
        if self.proxy is not None and self.proxy.active:
            return self.proxy.url
        return None

    def ensure_tmp_dir(self) -> Path:
        """Create the checkpoint directory if needed and return it."""
        self.tmp_dir.mkdir(parents=True, exist_ok=True)
        return self.tmp_dir
