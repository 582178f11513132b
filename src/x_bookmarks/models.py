"""Data models for posts, bookmarks and the organization layer."""

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from enum import Enum


class RuleType(str, Enum):
    """What an auto-tag rule pattern is matched against."""

    KEYWORD = "keyword"  # substring of text
    HASHTAG = "hashtag"  # exact hashtag
    AUTHOR = "author"  # exact author username
    URL_DOMAIN = "url_domain"  # substring of a URL hostname


class UpsertOutcome(str, Enum):
    INSERTED = "inserted"
    UPDATED = "updated"


@dataclass
class Post:
    """A post as returned by the remote API (bookmarks or search)."""

    id: str
    text: str
    author_id: str = ""
    author_username: str = "unknown"
    author_name: str = "Unknown"
    tweet_url: str = ""  # https://x.com/{username}/status/{id}
    created_at: datetime | None = None
    conversation_id: str | None = None
    likes: int = 0
    retweets: int = 0
    replies: int = 0
    quotes: int = 0
    impressions: int = 0
    bookmark_count: int = 0
    urls: list[str] = field(default_factory=list)
    mentions: list[str] = field(default_factory=list)
    hashtags: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return _jsonable(asdict(self))

    @classmethod
    def from_dict(cls, data: dict) -> "Post":
        """Rebuild a post from `to_dict` output; unknown keys are ignored."""
        known = {f.name for f in fields(Post)}
        values = {k: v for k, v in data.items() if k in known}
        if values.get("created_at"):
            values["created_at"] = datetime.fromisoformat(values["created_at"])
        return Post(**values)


@dataclass
class Tag:
    id: int
    name: str
    color: str = "#6366f1"
    bookmark_count: int = 0


@dataclass
class Bookmark(Post):
    """A locally stored post plus the user's organization metadata."""

    category_id: int | None = None
    notes: str = ""
    is_pinned: bool = False
    bookmarked_at: datetime | None = None
    synced_at: datetime | None = None
    created_locally: datetime | None = None
    tags: list[Tag] = field(default_factory=list)

    @classmethod
    def from_post(cls, post: Post, now: datetime) -> "Bookmark":
        return cls(**asdict(post), bookmarked_at=now, synced_at=now, created_locally=now)


@dataclass
class Category:
    id: int
    name: str
    icon: str = "folder"
    sort_order: int = 0
    bookmark_count: int = 0


@dataclass
class AutoTagRule:
    id: int
    tag_id: int
    rule_type: RuleType
    pattern: str
    tag_name: str | None = None
    tag_color: str | None = None


@dataclass
class UserProfile:
    """An X account as returned by the user lookup endpoint."""

    id: str
    username: str
    name: str = ""
    description: str = ""
    followers: int = 0
    following: int = 0
    post_count: int = 0
    created_at: datetime | None = None


@dataclass
class WatchlistEntry:
    id: int
    username: str
    note: str = ""
    added_at: datetime | None = None


@dataclass
class Credential:
    """The single user's OAuth token set."""

    access_token: str
    refresh_token: str | None
    expires_at: datetime | None
    scope: str | None
    user_id: str
    username: str


@dataclass
class SyncState:
    last_sync_at: datetime | None = None
    total_synced: int = 0
    pagination_cursor: str | None = None
    sync_started_at: datetime | None = None


@dataclass
class SyncResult:
    new_count: int
    updated_count: int
    total_synced: int


@dataclass
class ImportResult:
    imported: int
    skipped: int
    total: int


@dataclass
class BookmarkFilter:
    """The filter dimensions a bookmark query may use; nothing else is accepted."""

    tags: list[str] = field(default_factory=list)  # OR across names
    category_id: int | None = None
    author: str | None = None
    pinned_only: bool = False
    text: str | None = None  # full-text search


@dataclass
class BookmarkPage:
    items: list[Bookmark]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return -(-self.total // self.limit) if self.limit else 0


def _jsonable(value):
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_jsonable(v) for v in value]
    return value
