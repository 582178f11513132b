"""X API v2 client for bookmarks, recent search and lookups.

Bookmarks are read with the user's OAuth access token. Search, post and
profile lookups use the app-only bearer token from config
(`x.bearer_token` or X_BEARER_TOKEN).

Errors are never retried here: HTTP 429 raises RateLimitedError with the
seconds until the rate-limit window resets, any other non-success status
raises RemoteError with a short excerpt of the body.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone

import httpx

from .errors import RateLimitedError, RemoteError
from .models import Post, UserProfile
from .parser import next_token, parse_posts, parse_user

logger = logging.getLogger(__name__)

API_BASE_URL = "https://api.x.com/2"

POST_FIELDS = {
    "tweet.fields": "created_at,public_metrics,author_id,conversation_id,entities",
    "expansions": "author_id",
    "user.fields": "username,name",
    "max_results": "100",
}
USER_FIELDS = "description,public_metrics,created_at"

# Used when a 429 carries no x-rate-limit-reset header
DEFAULT_RETRY_AFTER = 60
ERROR_EXCERPT_CHARS = 200


@dataclass
class PostsPage:
    """A single page of posts plus the cursor for the next one."""

    posts: list[Post] = field(default_factory=list)
    next_token: str | None = None
    empty: bool = False  # the response carried no `data` at all


def retry_after_seconds(response: httpx.Response, now: float | None = None) -> int:
    reset = response.headers.get("x-rate-limit-reset")
    if not reset:
        return DEFAULT_RETRY_AFTER
    try:
        reset_at = int(reset)
    except ValueError:
        return DEFAULT_RETRY_AFTER
    now = time.time() if now is None else now
    return max(reset_at - int(now), 1)


def api_time(value: datetime) -> str:
    """Format a timestamp the way the API expects: UTC with a Z suffix."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class XClient:
    """Client for the X API v2 REST endpoints used by sync and research."""

    def __init__(self, bearer_token: str | None = None, base_url: str = API_BASE_URL):
        self._bearer_token = bearer_token
        self._base_url = base_url.rstrip("/")
        self._client = httpx.Client(timeout=30.0, follow_redirects=True)

    def fetch_bookmarks_page(
        self, user_id: str, access_token: str, pagination_token: str | None = None
    ) -> PostsPage:
        """Fetch one page of the user's bookmarks, newest first."""
        params = dict(POST_FIELDS)
        if pagination_token:
            params["pagination_token"] = pagination_token

        response = self._client.get(
            f"{self._base_url}/users/{user_id}/bookmarks",
            params=params,
            headers={"Authorization": f"Bearer {access_token}"},
        )
        return self._to_page(response)

    def search_recent(
        self,
        query: str,
        pages: int = 1,
        sort_order: str = "relevancy",
        since: datetime | None = None,
        delay: float = 0,
    ) -> list[Post]:
        """Run a recent-search query, following `next_token` for up to `pages` pages."""
        self._require_bearer("Search")

        params = dict(POST_FIELDS)
        params["query"] = query
        params["sort_order"] = sort_order
        if since is not None:
            params["start_time"] = api_time(since)

        posts: list[Post] = []
        cursor: str | None = None
        for page_num in range(max(pages, 1)):
            if page_num > 0 and delay > 0:
                time.sleep(delay)
            if cursor:
                params["next_token"] = cursor

            logger.info("Searching %r, page %d...", query, page_num + 1)
            page = self._to_page(self._app_get("/tweets/search/recent", params))
            posts.extend(page.posts)

            cursor = page.next_token
            if page.empty or not cursor:
                break

        return posts

    def get_post(self, post_id: str) -> Post | None:
        """Look up one post by id; None if X does not return it."""
        self._require_bearer("Post lookup")
        params = {k: v for k, v in POST_FIELDS.items() if k != "max_results"}
        response = self._app_get(f"/tweets/{post_id}", params)
        if response.status_code == 404:
            return None
        self._check_response(response)

        payload = response.json()
        data = payload.get("data")
        if not isinstance(data, dict):
            return None
        posts = parse_posts({**payload, "data": [data]})
        return posts[0] if posts else None

    def get_user(self, username: str) -> UserProfile | None:
        """Look up an account by username; None if it does not exist."""
        self._require_bearer("Profile lookup")
        response = self._app_get(
            f"/users/by/username/{username.lstrip('@')}", {"user.fields": USER_FIELDS}
        )
        if response.status_code == 404:
            return None
        self._check_response(response)
        return parse_user(response.json().get("data"))

    def user_posts(self, user_id: str, count: int = 20, include_replies: bool = False) -> list[Post]:
        """The account's most recent posts, retweets excluded."""
        self._require_bearer("Profile lookup")
        params = dict(POST_FIELDS)
        # The endpoint accepts 5..100
        params["max_results"] = str(min(max(count, 5), 100))
        params["exclude"] = "retweets" if include_replies else "replies,retweets"
        page = self._to_page(self._app_get(f"/users/{user_id}/tweets", params))
        return page.posts[:count]

    def _require_bearer(self, action: str) -> None:
        if not self._bearer_token:
            raise ValueError(
                f"{action} needs an app bearer token: set x.bearer_token or X_BEARER_TOKEN"
            )

    def _app_get(self, path: str, params: dict) -> httpx.Response:
        return self._client.get(
            f"{self._base_url}{path}",
            params=params,
            headers={"Authorization": f"Bearer {self._bearer_token}"},
        )

    def _to_page(self, response: httpx.Response) -> PostsPage:
        self._check_response(response)
        payload = response.json()
        if not payload.get("data"):
            return PostsPage(empty=True)
        return PostsPage(posts=parse_posts(payload), next_token=next_token(payload))

    @staticmethod
    def _check_response(response: httpx.Response) -> None:
        if response.status_code == 429:
            wait = retry_after_seconds(response)
            logger.warning("Rate limited by X API; resets in %ds", wait)
            raise RateLimitedError(wait)
        if not response.is_success:
            raise RemoteError(response.status_code, response.text[:ERROR_EXCERPT_CHARS])

    def close(self) -> None:
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()
