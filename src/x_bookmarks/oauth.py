"""OAuth 2.0 authorization-code flow with PKCE against X.

`OAuthClient` only talks to the token and identity endpoints. Persisting
the resulting credential is the job of `credentials.CredentialStore`.
"""

import base64
import hashlib
import logging
import secrets
import threading
import time
from dataclasses import dataclass
from urllib.parse import urlencode

import httpx

from .errors import RemoteError, ValidationError

logger = logging.getLogger(__name__)

AUTHORIZE_URL = "https://twitter.com/i/oauth2/authorize"
TOKEN_URL = "https://api.twitter.com/2/oauth2/token"
IDENTITY_URL = "https://api.x.com/2/users/me"

SCOPES = "tweet.read users.read bookmark.read bookmark.write offline.access"
DEFAULT_EXPIRES_IN = 7200
PENDING_TTL_SECONDS = 10 * 60


@dataclass
class AuthRequest:
    url: str
    state: str


@dataclass
class TokenGrant:
    access_token: str
    refresh_token: str | None
    expires_in: int
    scope: str | None


@dataclass
class Identity:
    user_id: str
    username: str


def _code_challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


class OAuthClient:
    """Builds authorization URLs and performs the token exchanges."""

    def __init__(
        self,
        client_id: str,
        client_secret: str = "",
        redirect_uri: str = "http://localhost:5173/callback",
    ):
        if not client_id:
            raise ValueError(
                "X client_id not configured. Get it from https://developer.twitter.com"
            )
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        # state -> (code_verifier, created_at); lost on restart
        self._pending: dict[str, tuple[str, float]] = {}
        self._pending_lock = threading.Lock()
        self._client = httpx.Client(timeout=30.0)

    def get_auth_url(self) -> AuthRequest:
        """Start a login attempt: a fresh state and PKCE verifier per call."""
        state = secrets.token_hex(32)
        verifier = secrets.token_urlsafe(32)
        with self._pending_lock:
            self._cleanup_pending()
            self._pending[state] = (verifier, time.time())

        params = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": SCOPES,
            "state": state,
            "code_challenge": _code_challenge(verifier),
            "code_challenge_method": "S256",
        }
        return AuthRequest(url=f"{AUTHORIZE_URL}?{urlencode(params)}", state=state)

    def pop_verifier(self, state: str) -> str:
        """Consume the verifier for `state`; unknown or expired states are rejected."""
        with self._pending_lock:
            self._cleanup_pending()
            pending = self._pending.pop(state, None)
        if pending is None:
            raise ValidationError("state", "Invalid or expired state parameter")
        return pending[0]

    def exchange_code(self, code: str, code_verifier: str) -> TokenGrant:
        return self._token_request(
            {
                "code": code,
                "grant_type": "authorization_code",
                "client_id": self.client_id,
                "redirect_uri": self.redirect_uri,
                "code_verifier": code_verifier,
            }
        )

    def refresh(self, refresh_token: str) -> TokenGrant:
        return self._token_request(
            {
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": self.client_id,
            }
        )

    def fetch_identity(self, access_token: str) -> Identity:
        response = self._client.get(
            IDENTITY_URL, headers={"Authorization": f"Bearer {access_token}"}
        )
        if response.status_code != 200:
            raise RemoteError(response.status_code, "Failed to fetch user identity")
        data = _json_object(response).get("data") or {}
        if not isinstance(data, dict) or not data.get("id") or not data.get("username"):
            raise RemoteError(response.status_code, "malformed identity response")
        return Identity(user_id=str(data["id"]), username=str(data["username"]))

    def _token_request(self, form: dict) -> TokenGrant:
        response = self._client.post(
            TOKEN_URL,
            data=form,
            auth=(self.client_id, self.client_secret or ""),
        )
        if response.status_code != 200:
            logger.warning(
                "Token endpoint returned %d for %s", response.status_code, form["grant_type"]
            )
            raise RemoteError(response.status_code, response.text[:200])

        tokens = _json_object(response)
        access_token = tokens.get("access_token")
        if not isinstance(access_token, str) or not access_token:
            raise RemoteError(response.status_code, "malformed token response")
        try:
            expires_in = int(tokens.get("expires_in") or DEFAULT_EXPIRES_IN)
        except (TypeError, ValueError):
            expires_in = DEFAULT_EXPIRES_IN
        return TokenGrant(
            access_token=access_token,
            refresh_token=tokens.get("refresh_token"),
            expires_in=expires_in,
            scope=tokens.get("scope"),
        )

    def _cleanup_pending(self) -> None:
        cutoff = time.time() - PENDING_TTL_SECONDS
        for key in [k for k, (_, created) in self._pending.items() if created < cutoff]:
            del self._pending[key]

    def close(self) -> None:
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


def _json_object(response: httpx.Response) -> dict:
    try:
        body = response.json()
    except ValueError as e:
        raise RemoteError(response.status_code, "response body is not JSON") from e
    if not isinstance(body, dict):
        raise RemoteError(response.status_code, "response body is not a JSON object")
    return body
