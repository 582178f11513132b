"""Persistence of the single user's OAuth credential, with refresh on demand."""

import logging
import threading
from datetime import datetime, timedelta

import httpx

from .db import Database, from_db_time, to_db_time, utcnow
from .errors import (
    ReauthenticationRequiredError,
    RemoteError,
    UnauthenticatedError,
)
from .models import Credential
from .oauth import OAuthClient, TokenGrant

logger = logging.getLogger(__name__)

REFRESH_WINDOW = timedelta(minutes=5)


class CredentialStore:
    """Owns the `oauth_tokens` singleton row.

    `oauth` is only needed for operations that talk to the token endpoint
    (refresh and login); reading the stored credential works without it.
    """

    def __init__(self, db: Database, oauth: OAuthClient | None = None):
        self.db = db
        self.oauth = oauth
        self._refresh_lock = threading.Lock()

    def load(self) -> Credential | None:
        row = self.db.fetchone("SELECT * FROM oauth_tokens WHERE id = 1")
        if row is None:
            return None
        return Credential(
            access_token=row["access_token"],
            refresh_token=row["refresh_token"],
            expires_at=from_db_time(row["expires_at"]),
            scope=row["scope"],
            user_id=row["user_id"] or "",
            username=row["username"] or "",
        )

    def store(self, credential: Credential) -> None:
        """Replace the stored credential (insert or overwrite)."""
        with self.db.transaction() as conn:
            conn.execute(
                """
                INSERT INTO oauth_tokens
                  (id, access_token, refresh_token, expires_at, scope, user_id, username, updated_at)
                VALUES (1, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                  access_token = excluded.access_token,
                  refresh_token = excluded.refresh_token,
                  expires_at = excluded.expires_at,
                  scope = excluded.scope,
                  user_id = excluded.user_id,
                  username = excluded.username,
                  updated_at = excluded.updated_at
                """,
                (
                    credential.access_token,
                    credential.refresh_token,
                    to_db_time(credential.expires_at),
                    credential.scope,
                    credential.user_id,
                    credential.username,
                    to_db_time(utcnow()),
                ),
            )

    def clear(self) -> None:
        with self.db.transaction() as conn:
            conn.execute("DELETE FROM oauth_tokens WHERE id = 1")

    logout = clear

    def is_authenticated(self) -> bool:
        return self.db.fetchone("SELECT 1 FROM oauth_tokens WHERE id = 1") is not None

    def identity(self) -> tuple[str, str] | None:
        row = self.db.fetchone("SELECT user_id, username FROM oauth_tokens WHERE id = 1")
        return (row["user_id"], row["username"]) if row else None

    def get_valid_token(self, now: datetime | None = None) -> str:
        """Return an access token that is not about to expire.

        Refreshes first when the token expires within REFRESH_WINDOW and a
        refresh token is available. Never returns a stale token.
        """
        now = now or utcnow()
        credential = self.load()
        if credential is None:
            raise UnauthenticatedError()
        if not self._needs_refresh(credential, now):
            return credential.access_token

        with self._refresh_lock:
            # Another thread may have refreshed while we waited.
            credential = self.load()
            if credential is None:
                raise UnauthenticatedError()
            if not self._needs_refresh(credential, now):
                return credential.access_token

            if not credential.refresh_token:
                if credential.expires_at is not None and credential.expires_at <= now:
                    raise ReauthenticationRequiredError()
                return credential.access_token

            return self._refresh(credential, now)

    def complete_login(self, code: str, state: str) -> tuple[str, str]:
        """Finish the OAuth callback: exchange the code, look up the user, store."""
        oauth = self._require_oauth()
        verifier = oauth.pop_verifier(state)
        grant = oauth.exchange_code(code, verifier)
        who = oauth.fetch_identity(grant.access_token)
        self.store(
            Credential(
                access_token=grant.access_token,
                refresh_token=grant.refresh_token,
                expires_at=utcnow() + timedelta(seconds=grant.expires_in),
                scope=grant.scope,
                user_id=who.user_id,
                username=who.username,
            )
        )
        logger.info("Authenticated as @%s", who.username)
        return who.user_id, who.username

    @staticmethod
    def _needs_refresh(credential: Credential, now: datetime) -> bool:
        if credential.expires_at is None:
            return False
        return now >= credential.expires_at - REFRESH_WINDOW

    def _refresh(self, credential: Credential, now: datetime) -> str:
        oauth = self._require_oauth()
        try:
            grant: TokenGrant = oauth.refresh(credential.refresh_token)
        except (RemoteError, httpx.HTTPError) as e:
            logger.warning("Token refresh failed: %s", e)
            raise ReauthenticationRequiredError() from e

        expires_at = now + timedelta(seconds=grant.expires_in)
        with self.db.transaction() as conn:
            # Compare-and-swap on the token we refreshed from.
            cur = conn.execute(
                """
                UPDATE oauth_tokens
                SET access_token = ?, refresh_token = ?, expires_at = ?, updated_at = ?
                WHERE id = 1 AND access_token = ?
                """,
                (
                    grant.access_token,
                    grant.refresh_token or credential.refresh_token,
                    to_db_time(expires_at),
                    to_db_time(utcnow()),
                    credential.access_token,
                ),
            )
        if cur.rowcount == 0:
            # Lost the race: someone else replaced the row; use theirs.
            current = self.load()
            if current is None:
                raise UnauthenticatedError()
            if self._needs_refresh(current, now):
                raise ReauthenticationRequiredError()
            return current.access_token

        logger.debug("Refreshed access token, expires at %s", expires_at.isoformat())
        return grant.access_token

    def _require_oauth(self) -> OAuthClient:
        if self.oauth is None:
            raise ValueError("OAuth client not configured (set x.client_id)")
        return self.oauth
