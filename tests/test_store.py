"""Tests for the bookmark store."""

from datetime import datetime, timezone

import pytest

from x_bookmarks.errors import ConflictError, NotFoundError, ValidationError
from x_bookmarks.models import BookmarkFilter, RuleType, UpsertOutcome


class TestUpsert:
    def test_first_upsert_inserts(self, store, new_bookmark):
        assert store.upsert(new_bookmark("1")) is UpsertOutcome.INSERTED
        assert store.count() == 1

    def test_second_upsert_updates(self, store, new_bookmark):
        store.upsert(new_bookmark("1"))
        assert store.upsert(new_bookmark("1", likes=99)) is UpsertOutcome.UPDATED
        assert store.count() == 1
        assert store.get("1").likes == 99

    def test_resync_preserves_local_edits(self, store, new_bookmark):
        store.upsert(new_bookmark("1"))
        category = store.create_category("Reading")
        store.update("1", notes="my note", category_id=category.id, is_pinned=True)
        before = store.get("1")

        later = datetime(2025, 4, 1, tzinfo=timezone.utc)
        store.upsert(
            new_bookmark(
                "1",
                text="edited remotely",
                likes=500,
                impressions=9000,
                notes="",
                category_id=None,
                is_pinned=False,
                synced_at=later,
                created_locally=later,
                bookmarked_at=later,
            )
        )
        after = store.get("1")

        assert after.notes == "my note"
        assert after.category_id == category.id
        assert after.is_pinned is True
        assert after.created_locally == before.created_locally
        assert after.bookmarked_at == before.bookmarked_at
        assert after.text == "edited remotely"
        assert after.likes == 500
        assert after.impressions == 9000
        assert after.synced_at != before.synced_at

    def test_insert_if_absent_leaves_existing_row(self, store, new_bookmark):
        assert store.insert_if_absent(new_bookmark("1", likes=1)) is True
        store.update("1", notes="keep")
        assert store.insert_if_absent(new_bookmark("1", likes=99)) is False
        stored = store.get("1")
        assert stored.likes == 1
        assert stored.notes == "keep"
        assert store.count() == 1


class TestGetUpdateDelete:
    def test_get_round_trips_fields(self, store, new_bookmark):
        store.upsert(new_bookmark("1", mentions=["bob"]))
        b = store.get("1")
        assert b.author_username == "alice"
        assert b.hashtags == ["TypeScript"]
        assert b.urls == ["https://example.com/x"]
        assert b.mentions == ["bob"]
        assert b.created_at == datetime(2025, 2, 1, 10, 0, 0, tzinfo=timezone.utc)

    def test_get_missing_raises(self, store):
        with pytest.raises(NotFoundError, match="Bookmark not found: nope"):
            store.get("nope")

    def test_update_requires_a_field(self, store, new_bookmark):
        store.upsert(new_bookmark("1"))
        with pytest.raises(ValidationError):
            store.update("1")

    def test_update_unknown_bookmark(self, store):
        with pytest.raises(NotFoundError):
            store.update("nope", notes="x")

    def test_update_unknown_category(self, store, new_bookmark):
        store.upsert(new_bookmark("1"))
        with pytest.raises(NotFoundError, match="Category"):
            store.update("1", category_id=999)
        assert store.get("1").category_id is None

    def test_update_clears_category(self, store, new_bookmark):
        store.upsert(new_bookmark("1"))
        c = store.create_category("Misc")
        store.update("1", category_id=c.id)
        assert store.update("1", category_id=None).category_id is None

    def test_delete(self, store, new_bookmark):
        store.upsert(new_bookmark("1"))
        store.delete("1")
        assert store.count() == 0
        with pytest.raises(NotFoundError):
            store.delete("1")

    def test_stats(self, store, new_bookmark):
        store.upsert(new_bookmark("1"))
        store.create_tag("ai")
        assert store.stats() == {"bookmarks": 1, "tags": 1, "categories": 0}


class TestQuery:
    @pytest.fixture
    def populated(self, store, new_bookmark):
        store.upsert(new_bookmark("1", likes=5, text="sqlite internals", author_username="bob"))
        store.upsert(new_bookmark("2", likes=50, text="python packaging tips"))
        store.upsert(new_bookmark("3", likes=20, text="rust and python interop"))
        store.update("1", is_pinned=True)
        return store

    def test_pinned_first_then_sort(self, populated):
        page = populated.query(sort="likes", order="desc")
        assert [b.id for b in page.items] == ["1", "2", "3"]

    def test_ascending(self, populated):
        page = populated.query(sort="likes", order="asc")
        assert [b.id for b in page.items] == ["1", "3", "2"]

    def test_unknown_sort_falls_back(self, populated):
        page = populated.query(sort="likes; DROP TABLE bookmarks", order="desc")
        assert page.total == 3
        assert populated.count() == 3
        assert page.items[0].id == "1"

    def test_filter_author(self, populated):
        page = populated.query(BookmarkFilter(author="@bob"))
        assert [b.id for b in page.items] == ["1"]

    def test_filter_pinned(self, populated):
        page = populated.query(BookmarkFilter(pinned_only=True))
        assert [b.id for b in page.items] == ["1"]

    def test_full_text_search(self, populated):
        page = populated.query(BookmarkFilter(text="python"), sort="likes")
        assert [b.id for b in page.items] == ["2", "3"]

    def test_full_text_search_ignores_fts_syntax(self, populated):
        page = populated.query(BookmarkFilter(text='python" OR (sqlite'))
        assert page.total == 0

    def test_full_text_search_sees_notes(self, populated):
        populated.update("3", notes="remember for the talk")
        page = populated.query(BookmarkFilter(text="talk"))
        assert [b.id for b in page.items] == ["3"]

    def test_filter_tags_is_or(self, populated):
        ai = populated.create_tag("ai")
        db = populated.create_tag("db")
        populated.bulk_tag(["2"], [ai.id])
        populated.bulk_tag(["1"], [db.id])
        page = populated.query(BookmarkFilter(tags=["ai", "db"]))
        assert sorted(b.id for b in page.items) == ["1", "2"]
        tagged = {b.id: [t.name for t in b.tags] for b in page.items}
        assert tagged == {"1": ["db"], "2": ["ai"]}

    def test_filter_category(self, populated):
        c = populated.create_category("Lang")
        populated.assign_category(["2", "3"], c.id)
        page = populated.query(BookmarkFilter(category_id=c.id))
        assert page.total == 2

    def test_pagination(self, populated):
        page = populated.query(sort="likes", page=2, limit=2)
        assert [b.id for b in page.items] == ["3"]
        assert page.total == 3
        assert page.total_pages == 2

    def test_limit_is_clamped(self, populated):
        assert populated.query(limit=1000).limit == 100
        assert populated.query(limit=0).limit == 20
        assert populated.query(page=-3).page == 1


class TestBulkOperations:
    def test_bulk_requires_list(self, store):
        with pytest.raises(ValidationError):
            store.bulk_delete("1")
        with pytest.raises(ValidationError):
            store.bulk_tag([], [1])
        with pytest.raises(ValidationError):
            store.bulk_untag(["1"], None)

    def test_bulk_tag_is_idempotent(self, store, new_bookmark):
        store.upsert(new_bookmark("1"))
        store.upsert(new_bookmark("2"))
        t = store.create_tag("ai")
        assert store.bulk_tag(["1", "2"], [t.id]) == 2
        assert store.bulk_tag(["1", "2"], [t.id]) == 0
        assert [x.name for x in store.tags_for("1")] == ["ai"]

    def test_bulk_tag_skips_unknown_ids(self, store, new_bookmark):
        store.upsert(new_bookmark("1"))
        t = store.create_tag("ai")
        assert store.bulk_tag(["1", "missing"], [t.id, 999]) == 1

    def test_bulk_untag(self, store, new_bookmark):
        store.upsert(new_bookmark("1"))
        t = store.create_tag("ai")
        store.bulk_tag(["1"], [t.id])
        assert store.bulk_untag(["1"], [t.id]) == 1
        assert store.bulk_untag(["1"], [t.id]) == 0
        assert store.tags_for("1") == []

    def test_bulk_delete_cascades_tags(self, store, db, new_bookmark):
        store.upsert(new_bookmark("1"))
        store.upsert(new_bookmark("2"))
        t = store.create_tag("ai")
        store.bulk_tag(["1", "2"], [t.id])
        assert store.bulk_delete(["1", "2", "3"]) == 2
        assert db.fetchone("SELECT COUNT(*) FROM bookmark_tags")[0] == 0


class TestReferentialIntegrity:
    def test_deleting_category_uncategorizes(self, store, new_bookmark):
        store.upsert(new_bookmark("1"))
        c = store.create_category("Temp")
        store.update("1", category_id=c.id)
        store.delete_category(c.id)
        assert store.get("1").category_id is None

    def test_deleting_tag_removes_links_and_rules(self, store, new_bookmark):
        store.upsert(new_bookmark("1"))
        t = store.create_tag("ai")
        store.bulk_tag(["1"], [t.id])
        store.add_rule(t.id, "keyword", "check")
        store.delete_tag(t.id)
        assert store.tags_for("1") == []
        assert store.list_rules() == []


class TestImport:
    def test_import_counts(self, store, new_bookmark):
        store.upsert(new_bookmark("1", notes="keep me"))
        store.update("1", notes="keep me")
        result = store.import_bookmarks(
            [
                {"id": "1", "text": "overwrite attempt", "notes": "lost"},
                {"id": "2", "text": "new one", "author_username": "carol", "tags": ["ai", "ml"]},
                {"id": "3"},
                {"text": "no id"},
            ]
        )
        assert (result.imported, result.skipped, result.total) == (1, 3, 4)

        existing = store.get("1")
        assert existing.text == "check this out"
        assert existing.notes == "keep me"

        imported = store.get("2")
        assert imported.author_username == "carol"
        assert imported.tweet_url == "https://x.com/carol/status/2"
        assert [t.name for t in imported.tags] == ["ai", "ml"]

    def test_tags_only_created_for_inserted_records(self, store, new_bookmark):
        store.upsert(new_bookmark("1"))
        store.import_bookmarks([{"id": "1", "text": "dup", "tags": ["never"]}])
        assert store.find_tag("never") is None

    def test_import_reuses_existing_tags_and_colors(self, store):
        store.create_tag("ai", "#ff0000")
        store.import_bookmarks(
            [{"id": "9", "text": "t", "tags": [{"name": "ai", "color": "#000000"}, {"name": "new", "color": "#00ff00"}]}]
        )
        assert store.find_tag("ai").color == "#ff0000"
        assert store.find_tag("new").color == "#00ff00"

    def test_import_round_trips_export(self, store, tmp_path, new_bookmark):
        store.upsert(new_bookmark("1"))
        t = store.create_tag("ai")
        store.bulk_tag(["1"], [t.id])
        exported = store.export()

        from x_bookmarks.db import Database
        from x_bookmarks.store import BookmarkStore

        other_db = Database(tmp_path / "other.db")
        other_db.init()
        other = BookmarkStore(other_db)
        result = other.import_bookmarks(exported)
        assert result.imported == 1
        copy = other.get("1")
        assert copy.created_at == datetime(2025, 2, 1, 10, 0, 0, tzinfo=timezone.utc)
        assert [x.name for x in copy.tags] == ["ai"]
        other_db.close()

    def test_import_rejects_non_list(self, store):
        with pytest.raises(ValidationError):
            store.import_bookmarks({"id": "1"})

    def test_import_drops_unknown_category(self, store):
        ai = store.create_category("AI")
        result = store.import_bookmarks(
            [
                {"id": "1", "text": "ok"},
                {"id": "2", "text": "from another library", "category_id": 99},
                {"id": "3", "text": "filed", "category_id": ai.id},
            ]
        )
        assert (result.imported, result.skipped) == (3, 0)
        assert store.get("2").category_id is None
        assert store.get("3").category_id == ai.id

    def test_import_is_atomic_on_storage_failure(self, store, db):
        db.conn.execute(
            "CREATE TRIGGER boom BEFORE INSERT ON bookmarks WHEN new.id = 'bad' "
            "BEGIN SELECT RAISE(ABORT, 'boom'); END"
        )
        with pytest.raises(Exception, match="boom"):
            store.import_bookmarks([{"id": "ok", "text": "a"}, {"id": "bad", "text": "b"}])
        assert store.count() == 0


class TestTagsAndCategories:
    def test_create_and_list_tags(self, store, new_bookmark):
        store.upsert(new_bookmark("1"))
        b = store.create_tag("beta")
        a = store.create_tag("alpha", "#123456")
        store.bulk_tag(["1"], [b.id])
        tags = store.list_tags()
        assert [(t.name, t.bookmark_count) for t in tags] == [("alpha", 0), ("beta", 1)]
        assert a.color == "#123456"
        assert b.color == "#6366f1"

    def test_duplicate_tag_conflicts(self, store):
        store.create_tag("ai")
        with pytest.raises(ConflictError):
            store.create_tag("ai")

    def test_rename_tag_conflict(self, store):
        store.create_tag("ai")
        ml = store.create_tag("ml")
        with pytest.raises(ConflictError):
            store.update_tag(ml.id, name="ai")

    def test_empty_tag_name_rejected(self, store):
        with pytest.raises(ValidationError):
            store.create_tag("  ")

    def test_categories(self, store):
        store.create_category("Zed")
        c = store.create_category("Alpha", icon="book-open")
        store.update_category(c.id, sort_order=5)
        names = [x.name for x in store.list_categories()]
        assert names == ["Zed", "Alpha"]
        assert store.get_category(c.id).icon == "book-open"
        with pytest.raises(ConflictError):
            store.create_category("Zed")
        with pytest.raises(NotFoundError):
            store.delete_category(999)


class TestRulesAndWatchlist:
    def test_add_and_list_rules(self, store):
        t = store.create_tag("ts", "#3178c6")
        r = store.add_rule(t.id, "hashtag", "TypeScript")
        assert r.rule_type is RuleType.HASHTAG
        assert r.tag_name == "ts"
        assert r.tag_color == "#3178c6"
        assert [x.id for x in store.list_rules()] == [r.id]

    def test_rule_validation(self, store):
        t = store.create_tag("ts")
        with pytest.raises(ValidationError):
            store.add_rule(t.id, "regex", "x")
        with pytest.raises(ValidationError):
            store.add_rule(t.id, "keyword", " ")
        with pytest.raises(NotFoundError):
            store.add_rule(999, "keyword", "x")

    def test_duplicate_rule_conflicts(self, store):
        t = store.create_tag("ts")
        store.add_rule(t.id, "keyword", "x")
        with pytest.raises(ConflictError):
            store.add_rule(t.id, "keyword", "x")

    def test_delete_rule(self, store):
        t = store.create_tag("ts")
        r = store.add_rule(t.id, "author", "alice")
        store.delete_rule(r.id)
        with pytest.raises(NotFoundError):
            store.delete_rule(r.id)

    def test_watchlist(self, store):
        store.add_watch("@alice", note="ml person")
        store.add_watch("bob")
        with pytest.raises(ConflictError):
            store.add_watch("alice")
        assert sorted(w.username for w in store.list_watchlist()) == ["alice", "bob"]
        store.remove_watch("@alice")
        assert [w.username for w in store.list_watchlist()] == ["bob"]
        with pytest.raises(NotFoundError):
            store.remove_watch("alice")
