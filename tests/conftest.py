"""Shared test fixtures."""

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from x_bookmarks.db import Database
from x_bookmarks.models import Bookmark, Credential
from x_bookmarks.store import BookmarkStore

FIXTURES_DIR = Path(__file__).parent / "fixtures"

NOW = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def bookmarks_page() -> dict:
    """Load the sample X API v2 bookmarks response."""
    with open(FIXTURES_DIR / "bookmarks_page.json") as f:
        return json.load(f)


@pytest.fixture
def db(tmp_path):
    database = Database(tmp_path / "bookmarks.db")
    database.init()
    yield database
    database.close()


@pytest.fixture
def store(db) -> BookmarkStore:
    return BookmarkStore(db)


def make_bookmark(bookmark_id: str = "1001", **overrides) -> Bookmark:
    values = dict(
        id=bookmark_id,
        text="check this out",
        author_id="42",
        author_username="alice",
        author_name="Alice",
        tweet_url=f"https://x.com/alice/status/{bookmark_id}",
        created_at=datetime(2025, 2, 1, 10, 0, 0, tzinfo=timezone.utc),
        likes=10,
        retweets=2,
        impressions=500,
        hashtags=["TypeScript"],
        urls=["https://example.com/x"],
        bookmarked_at=NOW,
        synced_at=NOW,
        created_locally=NOW,
    )
    values.update(overrides)
    return Bookmark(**values)


@pytest.fixture
def new_bookmark():
    """Factory for Bookmark objects with sensible defaults."""
    return make_bookmark


@pytest.fixture
def credential() -> Credential:
    return Credential(
        access_token="access-1",
        refresh_token="refresh-1",
        expires_at=datetime(2025, 3, 1, 14, 0, 0, tzinfo=timezone.utc),
        scope="tweet.read users.read bookmark.read offline.access",
        user_id="42",
        username="alice",
    )
