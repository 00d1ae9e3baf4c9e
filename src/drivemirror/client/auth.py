"""Access token management.

This module provides:
- Credentials: OAuth client and token values supplied by the user
- TokenProvider: thread-safe holder of the current access token that
  renews it with the refresh token
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from typing import Callable

import httpx

from drivemirror.client.api import AuthenticationError

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_ATTEMPTS = 3


@dataclass
class Credentials:
    """OAuth credentials.

    Attributes:
        access_token: Current access token (may be empty).
        refresh_token: Long-lived refresh token.
        token_type: Token type used in the Authorization header.
        client_id: OAuth client id.
        client_secret: OAuth client secret.
    """

    access_token: str = ""
    refresh_token: str = ""
    token_type: str = "Bearer"
    client_id: str = ""
    client_secret: str = ""

    @property
    def is_complete(self) -> bool:
        """Check if the credentials allow a token refresh."""
        return bool(self.refresh_token and self.client_id and self.client_secret)


CredentialSource = Callable[[], Credentials]


class TokenProvider:
    """Shared access token holder.

    Tokens are seeded from a credential source. A failed refresh clears
    every token, so the next refresh reads the credential source again.
    """

    def __init__(
        self,
        credential_source: CredentialSource,
        http: httpx.Client,
        token_url: str,
        max_attempts: int = DEFAULT_REFRESH_ATTEMPTS,
    ) -> None:
        """Initialize the provider and obtain a fresh access token.

        Args:
            credential_source: Callable returning the stored credentials.
            http: HTTP client used to reach the token endpoint.
            token_url: OAuth token endpoint.
            max_attempts: Refresh attempts made at construction.

        Raises:
            AuthenticationError: If no attempt succeeds.
        """
        self._source = credential_source
        self._http = http
        self._token_url = token_url
        self._lock = threading.Lock()
        self._credentials = Credentials()

        for attempt in range(1, max_attempts + 1):
            if self.refresh():
                break
            logger.warning(f"Token refresh attempt {attempt}/{max_attempts} failed")
        else:
            raise AuthenticationError(
                f"Could not obtain an access token after {max_attempts} attempts"
            )

    @property
    def access_token(self) -> str:
        """Get the current access token."""
        with self._lock:
            return self._credentials.access_token

    @property
    def auth_header(self) -> str:
        """Get the Authorization header value."""
        with self._lock:
            creds = self._credentials
            return f"{creds.token_type or 'Bearer'} {creds.access_token}"

    def refresh(self) -> bool:
        """Renew the access token.

        Returns:
            True if a new access token was obtained.
        """
        with self._lock:
            if not self._credentials.refresh_token:
                self._credentials = replace(self._source())
            creds = self._credentials
            if not creds.is_complete:
                logger.error("Credentials are incomplete, cannot refresh access token")
                self._clear()
                return False

            try:
                response = self._http.post(
                    self._token_url,
                    data={
                        "client_id": creds.client_id,
                        "client_secret": creds.client_secret,
                        "refresh_token": creds.refresh_token,
                        "grant_type": "refresh_token",
                    },
                )
            except httpx.HTTPError as e:
                logger.warning(f"Token refresh failed: {e}")
                self._clear()
                return False

            if response.status_code != 200:
                logger.warning(f"Token refresh rejected with HTTP {response.status_code}")
                self._clear()
                return False

            try:
                data = response.json()
                access_token = data["access_token"]
            except (ValueError, KeyError):
                logger.warning("Token refresh response has no access token")
                self._clear()
                return False

            creds.access_token = access_token
            creds.token_type = data.get("token_type", creds.token_type)
            creds.refresh_token = data.get("refresh_token", creds.refresh_token)
            logger.debug("Access token refreshed")
            return True

    def _clear(self) -> None:
        """Forget all tokens. Caller holds the lock."""
        self._credentials = Credentials()
