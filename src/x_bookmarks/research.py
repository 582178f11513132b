"""Research on X: cached recent search, thread and profile lookups,
the watchlist check, and saving a found post as a bookmark.

For search, only `sort`, `pages` and `since` decide what is fetched, so only they go
into the cache key. Engagement filters and `limit` are applied after the
cache on every call.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

import httpx

from .cache import DEFAULT_TTL_SECONDS, ResultCache
from .client import XClient
from .errors import NotFoundError, ValidationError, XBookmarksError
from .models import Bookmark, Post, UserProfile
from .store import BookmarkStore

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 30
THREAD_PAGES = 2
PROFILE_COUNT = 20
# Posts fetched and posts shown per watched account
WATCH_FETCH = 5
WATCH_SHOWN = 3
SORT_METRICS = ("likes", "impressions", "retweets", "replies")

_RELATIVE_SINCE = re.compile(r"^(\d+)([mhd])$")
_UNITS = {"m": "minutes", "h": "hours", "d": "days"}


@dataclass
class SearchParams:
    sort: str = "likes"  # a metric name, or "recent"
    pages: int = 1
    since: str | None = None
    min_likes: int = 0
    min_impressions: int = 0
    limit: int = DEFAULT_LIMIT

    def cache_params(self) -> dict:
        return {"sort": self.sort, "pages": self.pages, "since": self.since}


@dataclass
class SearchResult:
    posts: list[Post] = field(default_factory=list)
    total: int = 0
    from_cache: bool = False


@dataclass
class Profile:
    user: UserProfile
    posts: list[Post] = field(default_factory=list)


@dataclass
class WatchReport:
    """Recent activity of one watched account; `error` is set when the lookup failed."""

    username: str
    note: str = ""
    user: UserProfile | None = None
    posts: list[Post] = field(default_factory=list)
    error: str | None = None


def sort_by(posts: list[Post], metric: str) -> list[Post]:
    """Posts ordered by `metric`, highest first. The input list is not modified."""
    return sorted(posts, key=lambda p: getattr(p, metric, 0) or 0, reverse=True)


def filter_engagement(posts: list[Post], min_likes: int = 0, min_impressions: int = 0) -> list[Post]:
    return [
        p for p in posts
        if p.likes >= (min_likes or 0) and p.impressions >= (min_impressions or 0)
    ]


def dedupe(posts: list[Post]) -> list[Post]:
    """Drop repeated ids; the first occurrence wins."""
    seen: set[str] = set()
    result = []
    for post in posts:
        if post.id not in seen:
            seen.add(post.id)
            result.append(post)
    return result


def parse_since(value: str | None, now: datetime | None = None) -> datetime | None:
    """Parse "30m", "24h", "7d" or an ISO date/datetime. Anything else is None."""
    if not value:
        return None
    value = value.strip()
    now = now or datetime.now(timezone.utc)

    match = _RELATIVE_SINCE.match(value)
    if match:
        amount, unit = match.groups()
        return now - timedelta(**{_UNITS[unit]: int(amount)})

    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class ResearchService:
    def __init__(self, client: XClient, cache: ResultCache, ttl: float = DEFAULT_TTL_SECONDS):
        self.client = client
        self.cache = cache
        self.ttl = ttl

    def search(self, query: str, params: SearchParams | None = None) -> SearchResult:
        query = (query or "").strip()
        if not query:
            raise ValidationError("query", "query is required")
        params = params or SearchParams()

        posts = self.cache.get(query, params.cache_params(), self.ttl)
        from_cache = posts is not None
        if posts is None:
            posts = self.client.search_recent(
                query,
                pages=max(params.pages, 1),
                sort_order="recency" if params.sort == "recent" else "relevancy",
                since=parse_since(params.since),
            )
            self.cache.set(query, params.cache_params(), posts)

        if params.sort in SORT_METRICS:
            posts = sort_by(posts, params.sort)
        if params.min_likes or params.min_impressions:
            posts = filter_engagement(posts, params.min_likes, params.min_impressions)
        posts = dedupe(posts)

        limit = params.limit or DEFAULT_LIMIT
        return SearchResult(posts=posts[:limit], total=len(posts), from_cache=from_cache)

    def thread(self, post_id: str, pages: int = THREAD_PAGES) -> list[Post]:
        """The post plus the replies in its conversation, oldest first."""
        root = self.client.get_post(post_id)
        if root is None:
            raise NotFoundError("post", post_id)
        conversation_id = root.conversation_id or root.id
        replies = self.client.search_recent(
            f"conversation_id:{conversation_id}", pages=max(pages, 1), sort_order="recency"
        )
        posts = dedupe([root, *replies])
        return sorted(posts, key=lambda p: (p.created_at is None, p.created_at or datetime.min))

    def profile(
        self, username: str, count: int = PROFILE_COUNT, include_replies: bool = False
    ) -> Profile:
        username = (username or "").strip().lstrip("@")
        if not username:
            raise ValidationError("username", "username is required")
        user = self.client.get_user(username)
        if user is None:
            raise NotFoundError("user", username)
        posts = self.client.user_posts(user.id, count=count, include_replies=include_replies)
        return Profile(user=user, posts=posts)

    def check_watchlist(self, store: BookmarkStore) -> list[WatchReport]:
        """Recent posts for every watched account.

        A failed lookup is recorded on that account's report and the check
        moves on to the next account.
        """
        reports = []
        for entry in store.list_watchlist():
            try:
                found = self.profile(entry.username, count=WATCH_FETCH)
            except (XBookmarksError, httpx.HTTPError) as e:
                logger.warning("Watchlist check failed for @%s: %s", entry.username, e)
                reports.append(WatchReport(username=entry.username, note=entry.note, error=str(e)))
                continue
            reports.append(
                WatchReport(
                    username=entry.username,
                    note=entry.note,
                    user=found.user,
                    posts=found.posts[:WATCH_SHOWN],
                )
            )
        return reports

    def save_bookmark(self, store: BookmarkStore, post_id: str) -> tuple[Bookmark, bool]:
        """Store a post found on X as a bookmark; returns it and whether it was new.

        A post that is already bookmarked is left as it is.
        """
        post = self.client.get_post(post_id)
        if post is None:
            raise NotFoundError("post", post_id)
        created = store.insert_if_absent(Bookmark.from_post(post, datetime.now(timezone.utc)))
        return store.get(post.id), created
