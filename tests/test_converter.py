"""Tests for the CSV and JSON export converters."""

import csv
import io
import json
from datetime import datetime, timezone

import pytest

from x_bookmarks.converter import CSV_COLUMNS, bookmarks_to_csv, bookmarks_to_json


@pytest.fixture
def exported(store, new_bookmark) -> list[dict]:
    store.upsert(new_bookmark("1001", text='Quote "this", please\nsecond line'))
    store.upsert(new_bookmark("1002", created_at=None))
    store.update("1001", notes="read later", is_pinned=True)
    store.bulk_tag(["1001"], [store.create_tag("python").id, store.create_tag("db").id])
    return store.export()


class TestBookmarksToCsv:
    def test_header_row(self, exported):
        reader = csv.reader(io.StringIO(bookmarks_to_csv(exported)))
        assert next(reader) == CSV_COLUMNS

    def test_row_count(self, exported):
        rows = list(csv.reader(io.StringIO(bookmarks_to_csv(exported))))
        assert len(rows) == 3

    def test_fields(self, exported):
        rows = {r["id"]: r for r in csv.DictReader(io.StringIO(bookmarks_to_csv(exported)))}
        first = rows["1001"]
        assert first["text"] == 'Quote "this", please\nsecond line'
        assert first["author_username"] == "alice"
        assert first["tweet_url"] == "https://x.com/alice/status/1001"
        assert first["created_at"] == "2025-02-01T10:00:00+00:00"
        assert first["likes"] == "10"
        assert first["notes"] == "read later"
        assert first["is_pinned"] == "true"
        assert first["tags"] == "db, python"

    def test_blank_optional_fields(self, exported):
        rows = {r["id"]: r for r in csv.DictReader(io.StringIO(bookmarks_to_csv(exported)))}
        second = rows["1002"]
        assert second["created_at"] == ""
        assert second["notes"] == ""
        assert second["is_pinned"] == "false"
        assert second["tags"] == ""

    def test_writes_to_output(self, exported):
        output = io.StringIO()
        result = bookmarks_to_csv(exported, output)
        assert output.getvalue() == result

    def test_empty(self):
        rows = list(csv.reader(io.StringIO(bookmarks_to_csv([]))))
        assert rows == [CSV_COLUMNS]


class TestBookmarksToJson:
    def test_document_shape(self, exported):
        at = datetime(2025, 3, 2, 9, 0, 0, tzinfo=timezone.utc)
        document = json.loads(bookmarks_to_json(exported, exported_at=at))
        assert document["exportedAt"] == "2025-03-02T09:00:00+00:00"
        assert document["count"] == 2
        assert {b["id"] for b in document["bookmarks"]} == {"1001", "1002"}

    def test_export_can_be_reimported(self, exported, tmp_path):
        from x_bookmarks.db import Database
        from x_bookmarks.store import BookmarkStore

        document = json.loads(bookmarks_to_json(exported))
        other_db = Database(tmp_path / "other.db")
        other_db.init()
        try:
            other = BookmarkStore(other_db)
            result = other.import_bookmarks(document["bookmarks"])
            assert (result.imported, result.skipped) == (2, 0)
            assert sorted(t.name for t in other.tags_for("1001")) == ["db", "python"]
            assert other.get("1001").notes == "read later"
        finally:
            other_db.close()
