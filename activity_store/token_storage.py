"""
Token persistence in the singleton ``auth_config`` row.
"""

import logging
import threading
import time
from typing import Callable, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from activity_api.auth import TokenSet, is_token_expired, refresh_access_token
from activity_api.errors import CredentialsUnavailableError

from .database import DatabaseManager, PersistenceError
from .models import AuthConfigRecord

logger = logging.getLogger(__name__)

Refresher = Callable[[str, str, str], TokenSet]


class TokenStorage:
    """Credential collaborator backed by the database.

    Hands out access tokens and refreshes them through the token endpoint
    when they are about to expire. Refreshes are serialized across threads.
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        refresher: Optional[Refresher] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.db = db_manager
        self.refresher = refresher or refresh_access_token
        self.clock = clock
        self._refresh_lock = threading.Lock()

    def seed(
        self,
        client_id: str,
        client_secret: str,
        access_token: Optional[str] = None,
        refresh_token: Optional[str] = None,
        expires_at: Optional[int] = None,
    ) -> None:
        """Store client credentials and, optionally, an initial token set."""
        if not client_id or not client_secret:
            raise ValueError("client_id and client_secret are required")

        try:
            with self.db.session_scope() as session:
                record = AuthConfigRecord.load(session)
                if record is None:
                    record = AuthConfigRecord(id=1)
                    session.add(record)
                record.client_id = client_id
                record.client_secret = client_secret
                if refresh_token:
                    record.access_token = access_token
                    record.refresh_token = refresh_token
                    # Unknown expiry forces a refresh on first use
                    record.expires_at = expires_at or 0
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to save client credentials: {e}", e) from e
        logger.info("Stored client credentials")

    def save_tokens(self, tokens: TokenSet) -> None:
        try:
            with self.db.session_scope() as session:
                record = AuthConfigRecord.load(session)
                if record is None:
                    raise CredentialsUnavailableError("No client credentials stored; seed them first")
                record.access_token = tokens.access_token
                record.refresh_token = tokens.refresh_token
                record.expires_at = tokens.expires_at
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to save tokens: {e}", e) from e

    def load_tokens(self) -> Optional[TokenSet]:
        with self.db.session_scope() as session:
            record = AuthConfigRecord.load(session)
            if record is None or not record.refresh_token:
                return None
            return TokenSet(
                access_token=record.access_token or "",
                refresh_token=record.refresh_token,
                expires_at=int(record.expires_at or 0),
            )

    def load_client_credentials(self) -> Tuple[str, str]:
        with self.db.session_scope() as session:
            record = AuthConfigRecord.load(session)
            if record is None:
                raise CredentialsUnavailableError("No client credentials stored")
            return record.client_id, record.client_secret

    def delete(self) -> None:
        with self.db.session_scope() as session:
            record = AuthConfigRecord.load(session)
            if record is not None:
                session.delete(record)

    def valid_access_token(self) -> str:
        """Current access token, refreshed first if it has expired.

        Raises:
            CredentialsUnavailableError: No tokens are stored or refresh failed
        """
        tokens = self.load_tokens()
        if tokens is None:
            raise CredentialsUnavailableError("Not authenticated: no tokens stored")

        if tokens.access_token and not is_token_expired(tokens.expires_at, now=self.clock()):
            return tokens.access_token

        return self._refresh(expected=tokens).access_token

    def refresh_if_expiring(self, lead_seconds: float) -> bool:
        """Refresh when the token expires within ``lead_seconds``.

        Returns:
            True if a refresh happened
        """
        tokens = self.load_tokens()
        if tokens is None:
            raise CredentialsUnavailableError("Not authenticated: no tokens stored")

        if not tokens.expires_within(lead_seconds, now=self.clock()):
            remaining = tokens.expires_at - self.clock()
            logger.debug(f"Access token valid for another {remaining:.0f}s")
            return False

        logger.info("Access token expiring soon, refreshing")
        self._refresh(expected=tokens)
        return True

    def _refresh(self, expected: TokenSet) -> TokenSet:
        with self._refresh_lock:
            # Another thread may have refreshed while this one waited
            current = self.load_tokens()
            if current is not None and current.refresh_token != expected.refresh_token:
                return current
            if current is not None and current.expires_at != expected.expires_at:
                return current

            client_id, client_secret = self.load_client_credentials()
            new_tokens = self.refresher(client_id, client_secret, expected.refresh_token)
            self.save_tokens(new_tokens)

        logger.info(f"Token refreshed, expires at {new_tokens.expires_at}")
        return new_tokens
