"""HTTP client factory.

All remote calls (store API, resumable sessions, token refresh) go through
an httpx client built here, so proxy and timeout settings apply everywhere.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import httpx

if TYPE_CHECKING:
    from drivemirror.core.config import UploaderConfig

logger = logging.getLogger(__name__)

USER_AGENT = "drivemirror"


def build_http_client(config: UploaderConfig, base_url: str | None = None) -> httpx.Client:
    """Create an HTTP client honoring the configured proxy and timeout.

    Args:
        config: Uploader configuration.
        base_url: Base URL for relative requests (defaults to the API URL).

    Returns:
        Configured httpx client. The caller owns it and must close it.
    """
    proxy = config.proxy_url
    if proxy is not None:
        logger.debug(f"Using proxy {config.proxy.host}:{config.proxy.port}")  # type: ignore[union-attr]
    return httpx.Client(
        base_url=base_url if base_url is not None else config.api_url,
        timeout=config.timeout,
        proxy=proxy,
        headers={"User-Agent": USER_AGENT},
    )
