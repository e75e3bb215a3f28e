"""OAuth token refresh against the API's token endpoint.

Only the refresh-token grant is implemented; tokens are first obtained out of
band and seeded into storage.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

from .config_manager import DEFAULT_TOKEN_URL
from .errors import AuthenticationError, CredentialsUnavailableError

logger = logging.getLogger(__name__)

EXPIRY_SKEW_SECONDS = 300


@dataclass
class TokenSet:
    access_token: str
    refresh_token: str
    expires_at: int
    token_type: str = "Bearer"

    @classmethod
    def from_response(cls, data: Dict[str, Any]) -> "TokenSet":
        """Build from a token endpoint payload.

        ``expires_at`` is preferred; ``expires_in`` is used when it is missing.
        """
        try:
            access_token = data["access_token"]
            refresh_token = data["refresh_token"]
        except KeyError as e:
            raise CredentialsUnavailableError(f"Token response missing {e.args[0]}") from e

        expires_at = data.get("expires_at")
        if not expires_at:
            expires_at = int(time.time()) + int(data.get("expires_in") or 0)

        return cls(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=int(expires_at),
            token_type=data.get("token_type") or "Bearer",
        )

    def expires_within(self, seconds: float, now: Optional[float] = None) -> bool:
        now = time.time() if now is None else now
        return now + seconds >= self.expires_at


def is_token_expired(expires_at: int, now: Optional[float] = None) -> bool:
    """True when the token is expired or expires within five minutes."""
    now = time.time() if now is None else now
    return now > expires_at - EXPIRY_SKEW_SECONDS


def refresh_access_token(
    client_id: str,
    client_secret: str,
    refresh_token: str,
    token_url: str = DEFAULT_TOKEN_URL,
    session: Optional[requests.Session] = None,
    timeout: int = 30,
) -> TokenSet:
    """Exchange a refresh token for a new token set.

    Raises:
        AuthenticationError: The endpoint rejected the credentials
        CredentialsUnavailableError: The endpoint could not be reached or answered badly
    """
    if not refresh_token:
        raise CredentialsUnavailableError("No refresh token available")

    http = session or requests
    payload = {
        "client_id": client_id,
        "client_secret": client_secret,
        "grant_type": "refresh_token",
        "refresh_token": refresh_token,
    }

    try:
        response = http.post(token_url, data=payload, timeout=timeout)
    except requests.exceptions.RequestException as e:
        raise CredentialsUnavailableError(f"Token refresh failed: {e}", e) from e

    if response.status_code in (400, 401, 403):
        raise AuthenticationError(
            f"Token refresh rejected with status {response.status_code}",
            status_code=response.status_code,
        )
    if response.status_code != 200:
        raise CredentialsUnavailableError(
            f"Token refresh failed with status {response.status_code}"
        )

    try:
        data = response.json()
    except ValueError as e:
        raise CredentialsUnavailableError(f"Invalid JSON from token endpoint: {e}", e) from e

    tokens = TokenSet.from_response(data)
    logger.info("Refreshed access token")
    return tokens
