"""Tests for the research search flow and its helpers."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from x_bookmarks.cache import ResultCache
from x_bookmarks.errors import NotFoundError, RemoteError, ValidationError
from x_bookmarks.models import Post, UserProfile
from x_bookmarks.research import (
    ResearchService,
    SearchParams,
    dedupe,
    filter_engagement,
    parse_since,
    sort_by,
)

NOW = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def posts() -> list[Post]:
    return [
        Post(id="1", text="a", likes=5, impressions=1000),
        Post(id="2", text="b", likes=50, impressions=100),
        Post(id="3", text="c", likes=20, impressions=5000),
    ]


class TestHelpers:
    def test_sort_by_is_descending_and_non_mutating(self, posts):
        result = sort_by(posts, "likes")
        assert [p.id for p in result] == ["2", "3", "1"]
        assert [p.id for p in posts] == ["1", "2", "3"]

    def test_sort_by_impressions(self, posts):
        assert [p.id for p in sort_by(posts, "impressions")] == ["3", "1", "2"]

    def test_filter_engagement(self, posts):
        assert [p.id for p in filter_engagement(posts, min_likes=10)] == ["2", "3"]
        assert [p.id for p in filter_engagement(posts, min_impressions=1000)] == ["1", "3"]
        assert [p.id for p in filter_engagement(posts, 10, 1000)] == ["3"]

    def test_dedupe_keeps_first(self):
        first = Post(id="1", text="first")
        result = dedupe([first, Post(id="2", text="x"), Post(id="1", text="second")])
        assert [p.text for p in result] == ["first", "x"]

    @pytest.mark.parametrize(
        "value, expected",
        [
            ("30m", NOW - timedelta(minutes=30)),
            ("24h", NOW - timedelta(hours=24)),
            ("7d", NOW - timedelta(days=7)),
            ("2025-02-01", datetime(2025, 2, 1, tzinfo=timezone.utc)),
            ("2025-02-01T08:30:00Z", datetime(2025, 2, 1, 8, 30, tzinfo=timezone.utc)),
            ("yesterday", None),
            ("7w", None),
            ("", None),
            (None, None),
        ],
    )
    def test_parse_since(self, value, expected):
        assert parse_since(value, now=NOW) == expected


class TestResearchService:
    @pytest.fixture
    def cache(self, tmp_path):
        c = ResultCache(tmp_path / "cache.db")
        yield c
        c.close()

    @pytest.fixture
    def client(self, posts):
        client = MagicMock()
        client.search_recent.return_value = posts + [Post(id="1", text="dup", likes=999)]
        return client

    def test_requires_query(self, client, cache):
        with pytest.raises(ValidationError):
            ResearchService(client, cache).search("   ")

    def test_miss_then_hit(self, client, cache):
        service = ResearchService(client, cache)

        first = service.search("python", SearchParams(sort="likes"))
        second = service.search("python", SearchParams(sort="likes"))

        assert first.from_cache is False
        assert second.from_cache is True
        assert client.search_recent.call_count == 1
        assert [p.id for p in second.posts] == [p.id for p in first.posts]

    def test_sorts_and_dedupes(self, client, cache):
        result = ResearchService(client, cache).search("python", SearchParams(sort="likes"))
        assert [p.id for p in result.posts] == ["1", "2", "3"]
        assert result.posts[0].text == "dup"  # highest likes copy sorted first
        assert result.total == 3

    def test_recent_keeps_api_order_and_uses_recency(self, client, cache):
        result = ResearchService(client, cache).search("python", SearchParams(sort="recent"))
        assert [p.id for p in result.posts] == ["1", "2", "3"]
        assert result.posts[0].text == "a"
        assert client.search_recent.call_args.kwargs["sort_order"] == "recency"

    def test_filters_apply_after_cache(self, client, cache):
        service = ResearchService(client, cache)
        service.search("python", SearchParams(sort="likes"))
        result = service.search("python", SearchParams(sort="likes", min_likes=30, limit=1))
        assert result.from_cache is True
        assert [p.id for p in result.posts] == ["1"]
        assert result.total == 2

    def test_cache_key_uses_fetch_params(self, client, cache):
        service = ResearchService(client, cache)
        service.search("python", SearchParams(pages=1))
        service.search("python", SearchParams(pages=2))
        assert client.search_recent.call_count == 2

    def test_since_is_parsed_for_the_client(self, client, cache):
        ResearchService(client, cache).search("python", SearchParams(since="2025-02-01"))
        assert client.search_recent.call_args.kwargs["since"] == datetime(
            2025, 2, 1, tzinfo=timezone.utc
        )


class TestLookups:
    @pytest.fixture
    def client(self):
        return MagicMock()

    @pytest.fixture
    def service(self, client, tmp_path):
        cache = ResultCache(tmp_path / "cache.db")
        yield ResearchService(client, cache)
        cache.close()

    def test_thread_is_oldest_first_and_deduped(self, client, service):
        root = Post(id="10", text="root", conversation_id="10", created_at=NOW)
        client.get_post.return_value = root
        client.search_recent.return_value = [
            Post(id="12", text="later", created_at=NOW + timedelta(minutes=5)),
            Post(id="10", text="root again", created_at=NOW),
            Post(id="11", text="first reply", created_at=NOW + timedelta(minutes=1)),
        ]

        thread = service.thread("10")

        assert [p.id for p in thread] == ["10", "11", "12"]
        assert thread[0].text == "root"
        assert client.search_recent.call_args.args[0] == "conversation_id:10"
        assert client.search_recent.call_args.kwargs["sort_order"] == "recency"

    def test_thread_uses_conversation_of_a_reply(self, client, service):
        client.get_post.return_value = Post(id="11", text="reply", conversation_id="10")
        client.search_recent.return_value = []
        assert [p.id for p in service.thread("11")] == ["11"]
        assert client.search_recent.call_args.args[0] == "conversation_id:10"

    def test_thread_of_missing_post(self, client, service):
        client.get_post.return_value = None
        with pytest.raises(NotFoundError):
            service.thread("404")
        client.search_recent.assert_not_called()

    def test_profile(self, client, service):
        client.get_user.return_value = UserProfile(id="42", username="alice")
        client.user_posts.return_value = [Post(id="1", text="hi")]

        profile = service.profile("@alice", count=10, include_replies=True)

        assert profile.user.username == "alice"
        assert [p.id for p in profile.posts] == ["1"]
        client.get_user.assert_called_once_with("alice")
        client.user_posts.assert_called_once_with("42", count=10, include_replies=True)

    def test_profile_validation(self, client, service):
        with pytest.raises(ValidationError):
            service.profile(" @ ")
        client.get_user.return_value = None
        with pytest.raises(NotFoundError):
            service.profile("ghost")

    def test_check_watchlist_continues_past_failures(self, client, service, store):
        store.add_watch("alice", note="ml")
        store.add_watch("broken")
        store.add_watch("ghost")

        def get_user(username):
            if username == "broken":
                raise RemoteError(503, "unavailable")
            if username == "ghost":
                return None
            return UserProfile(id="42", username=username)

        client.get_user.side_effect = get_user
        client.user_posts.return_value = [Post(id=str(i), text="p") for i in range(5)]

        reports = {r.username: r for r in service.check_watchlist(store)}

        assert reports["alice"].error is None
        assert reports["alice"].note == "ml"
        assert [p.id for p in reports["alice"].posts] == ["0", "1", "2"]
        assert "503" in reports["broken"].error
        assert reports["broken"].posts == []
        assert "not found" in reports["ghost"].error

    def test_save_bookmark(self, client, service, store):
        client.get_post.return_value = Post(
            id="77", text="worth keeping", author_username="alice", likes=3
        )

        saved, created = service.save_bookmark(store, "77")
        assert created is True
        assert saved.text == "worth keeping"
        assert saved.bookmarked_at is not None

        store.update("77", notes="mine")
        client.get_post.return_value = Post(id="77", text="edited upstream")
        again, created = service.save_bookmark(store, "77")
        assert created is False
        assert again.text == "worth keeping"
        assert again.notes == "mine"

    def test_save_missing_post(self, client, service, store):
        client.get_post.return_value = None
        with pytest.raises(NotFoundError):
            service.save_bookmark(store, "404")
        assert store.count() == 0
