"""Durable bookmark storage: upsert, querying, bulk edits and import.

The central rule of re-sync lives in `upsert`: a bookmark that already
exists only has its remotely-sourced fields refreshed. Notes, category,
pin state and the local creation time are never touched by a re-sync.
"""

import json
import logging
import sqlite3
from collections.abc import Iterable
from datetime import datetime

from .db import Database, from_db_time, to_db_time, utcnow
from .errors import ConflictError, NotFoundError, ValidationError
from .models import (
    AutoTagRule,
    Bookmark,
    BookmarkFilter,
    BookmarkPage,
    Category,
    ImportResult,
    RuleType,
    Tag,
    UpsertOutcome,
    WatchlistEntry,
)

logger = logging.getLogger(__name__)

SORT_FIELDS = ("bookmarked_at", "created_at", "likes", "impressions", "retweets")
DEFAULT_SORT = "bookmarked_at"
DEFAULT_TAG_COLOR = "#6366f1"
DEFAULT_CATEGORY_ICON = "folder"
MAX_PAGE_SIZE = 100

_UNSET = object()

_INSERT_COLUMNS = (
    "id", "text", "author_id", "author_username", "author_name", "tweet_url",
    "created_at", "conversation_id", "likes", "retweets", "replies", "quotes",
    "impressions", "bookmark_count", "urls", "mentions", "hashtags",
    "category_id", "notes", "is_pinned", "bookmarked_at", "synced_at",
    "created_locally",
)
_INSERT_SQL = (
    f"INSERT INTO bookmarks ({', '.join(_INSERT_COLUMNS)}) "
    f"VALUES ({', '.join('?' for _ in _INSERT_COLUMNS)})"
)

# Only remotely-sourced fields are refreshed when a bookmark already exists.
_UPSERT_SQL = _INSERT_SQL + """
ON CONFLICT(id) DO UPDATE SET
  text = excluded.text,
  likes = excluded.likes,
  retweets = excluded.retweets,
  replies = excluded.replies,
  quotes = excluded.quotes,
  impressions = excluded.impressions,
  bookmark_count = excluded.bookmark_count,
  synced_at = excluded.synced_at
"""

_IMPORT_SQL = _INSERT_SQL + " ON CONFLICT(id) DO NOTHING"


def _is_unique_violation(exc: sqlite3.IntegrityError) -> bool:
    return "UNIQUE" in str(exc)


def _fts_query(text: str) -> str:
    """Quote each term so user input is never parsed as FTS syntax."""
    terms = text.split()
    return " ".join('"' + term.replace('"', '""') + '"' for term in terms)


def _require_id_list(value, field: str) -> list:
    if not isinstance(value, (list, tuple)) or not value:
        raise ValidationError(field, f"'{field}' must be a non-empty list")
    return list(value)


class BookmarkStore:
    """Bookmarks, tags, categories, auto-tag rules and the watchlist."""

    def __init__(self, db: Database):
        self.db = db

    # ── Bookmarks ──

    def upsert(self, bookmark: Bookmark) -> UpsertOutcome:
        """Insert a new bookmark or refresh the remote fields of an existing one."""
        now = utcnow()
        with self.db.transaction() as conn:
            exists = conn.execute(
                "SELECT 1 FROM bookmarks WHERE id = ?", (bookmark.id,)
            ).fetchone()
            conn.execute(_UPSERT_SQL, self._insert_params(bookmark, now))
        return UpsertOutcome.UPDATED if exists else UpsertOutcome.INSERTED

    def insert_if_absent(self, bookmark: Bookmark) -> bool:
        """Insert a bookmark unless its id is already stored. Existing rows are untouched."""
        with self.db.transaction() as conn:
            cur = conn.execute(_IMPORT_SQL, self._insert_params(bookmark, utcnow()))
        return cur.rowcount == 1

    def exists(self, bookmark_id: str) -> bool:
        row = self.db.fetchone("SELECT 1 FROM bookmarks WHERE id = ?", (bookmark_id,))
        return row is not None

    def get(self, bookmark_id: str) -> Bookmark:
        row = self.db.fetchone("SELECT * FROM bookmarks WHERE id = ?", (bookmark_id,))
        if row is None:
            raise NotFoundError("bookmark", bookmark_id)
        bookmark = self._row_to_bookmark(row)
        bookmark.tags = self.tags_for(bookmark_id)
        return bookmark

    def update(
        self,
        bookmark_id: str,
        *,
        notes=_UNSET,
        category_id=_UNSET,
        is_pinned=_UNSET,
    ) -> Bookmark:
        """Apply user edits. Only the fields passed are changed."""
        updates: list[str] = []
        params: list = []
        if notes is not _UNSET:
            updates.append("notes = ?")
            params.append(notes or "")
        if category_id is not _UNSET:
            updates.append("category_id = ?")
            params.append(category_id)
        if is_pinned is not _UNSET:
            updates.append("is_pinned = ?")
            params.append(1 if is_pinned else 0)
        if not updates:
            raise ValidationError("fields", "No fields to update")

        with self.db.transaction() as conn:
            if category_id not in (_UNSET, None):
                self._require(conn, "categories", "category", category_id)
            cur = conn.execute(
                f"UPDATE bookmarks SET {', '.join(updates)} WHERE id = ?",
                (*params, bookmark_id),
            )
            if cur.rowcount == 0:
                raise NotFoundError("bookmark", bookmark_id)
        return self.get(bookmark_id)

    def delete(self, bookmark_id: str) -> None:
        with self.db.transaction() as conn:
            cur = conn.execute("DELETE FROM bookmarks WHERE id = ?", (bookmark_id,))
            if cur.rowcount == 0:
                raise NotFoundError("bookmark", bookmark_id)

    def count(self) -> int:
        return self.db.fetchone("SELECT COUNT(*) FROM bookmarks")[0]

    def stats(self) -> dict[str, int]:
        return {
            "bookmarks": self.count(),
            "tags": self.db.fetchone("SELECT COUNT(*) FROM tags")[0],
            "categories": self.db.fetchone("SELECT COUNT(*) FROM categories")[0],
        }

    def all_ids(self) -> list[str]:
        return [r[0] for r in self.db.fetchall("SELECT id FROM bookmarks ORDER BY rowid")]

    def query(
        self,
        filters: BookmarkFilter | None = None,
        sort: str = DEFAULT_SORT,
        order: str = "desc",
        page: int = 1,
        limit: int = 20,
    ) -> BookmarkPage:
        """List bookmarks matching `filters`, pinned first, then by `sort`.

        An unknown sort field falls back to `bookmarked_at`.
        """
        filters = filters or BookmarkFilter()
        sort_col = sort if sort in SORT_FIELDS else DEFAULT_SORT
        direction = "ASC" if str(order).lower() == "asc" else "DESC"
        page = max(int(page or 1), 1)
        limit = min(max(int(limit or 20), 1), MAX_PAGE_SIZE)

        clauses: list[str] = []
        params: list = []

        tag_names = [t.strip() for t in filters.tags if t and t.strip()]
        if tag_names:
            clauses.append(
                "b.id IN (SELECT bt.bookmark_id FROM bookmark_tags bt "
                "JOIN tags t ON t.id = bt.tag_id "
                f"WHERE t.name IN ({', '.join('?' for _ in tag_names)}))"
            )
            params.extend(tag_names)
        if filters.category_id is not None:
            clauses.append("b.category_id = ?")
            params.append(filters.category_id)
        if filters.author:
            clauses.append("b.author_username = ?")
            params.append(filters.author.lstrip("@"))
        if filters.pinned_only:
            clauses.append("b.is_pinned = 1")
        if filters.text and filters.text.strip():
            clauses.append(
                "b.rowid IN (SELECT rowid FROM bookmarks_fts WHERE bookmarks_fts MATCH ?)"
            )
            params.append(_fts_query(filters.text))

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        total = self.db.fetchone(
            f"SELECT COUNT(*) FROM bookmarks b {where}", params
        )[0]
        rows = self.db.fetchall(
            f"SELECT b.* FROM bookmarks b {where} "
            f"ORDER BY b.is_pinned DESC, b.{sort_col} {direction}, b.rowid {direction} "
            "LIMIT ? OFFSET ?",
            (*params, limit, (page - 1) * limit),
        )
        items = [self._row_to_bookmark(r) for r in rows]
        self._attach_tags(items)
        return BookmarkPage(items=items, total=total, page=page, limit=limit)

    def export(self) -> list[dict]:
        """All bookmarks with tags, newest bookmarked first, as plain dicts."""
        rows = self.db.fetchall(
            "SELECT * FROM bookmarks ORDER BY bookmarked_at DESC, rowid DESC"
        )
        items = [self._row_to_bookmark(r) for r in rows]
        self._attach_tags(items)
        return [b.to_dict() for b in items]

    def uncategorized(self) -> list[Bookmark]:
        rows = self.db.fetchall(
            "SELECT * FROM bookmarks WHERE category_id IS NULL ORDER BY rowid"
        )
        return [self._row_to_bookmark(r) for r in rows]

    # ── Bulk operations ──

    def bulk_delete(self, ids: list[str]) -> int:
        ids = _require_id_list(ids, "ids")
        with self.db.transaction() as conn:
            cur = conn.execute(
                f"DELETE FROM bookmarks WHERE id IN ({', '.join('?' for _ in ids)})",
                ids,
            )
        return cur.rowcount

    def bulk_tag(self, ids: list[str], tag_ids: list[int]) -> int:
        """Attach every tag to every bookmark. Existing pairs and unknown ids are skipped."""
        ids = _require_id_list(ids, "ids")
        tag_ids = _require_id_list(tag_ids, "tag_ids")
        added = 0
        with self.db.transaction() as conn:
            for bookmark_id in ids:
                for tag_id in tag_ids:
                    added += self._link(conn, bookmark_id, tag_id)
        return added

    def bulk_untag(self, ids: list[str], tag_ids: list[int]) -> int:
        ids = _require_id_list(ids, "ids")
        tag_ids = _require_id_list(tag_ids, "tag_ids")
        with self.db.transaction() as conn:
            cur = conn.execute(
                "DELETE FROM bookmark_tags "
                f"WHERE bookmark_id IN ({', '.join('?' for _ in ids)}) "
                f"AND tag_id IN ({', '.join('?' for _ in tag_ids)})",
                (*ids, *tag_ids),
            )
        return cur.rowcount

    def attach_tag(self, bookmark_id: str, tag_id: int) -> bool:
        """Associate one tag with one bookmark. Returns False if already associated."""
        with self.db.transaction() as conn:
            return self._link(conn, bookmark_id, tag_id) > 0

    def assign_category(self, ids: Iterable[str], category_id: int) -> int:
        ids = list(ids)
        if not ids:
            return 0
        with self.db.transaction() as conn:
            self._require(conn, "categories", "category", category_id)
            cur = conn.execute(
                "UPDATE bookmarks SET category_id = ? "
                f"WHERE id IN ({', '.join('?' for _ in ids)})",
                (category_id, *ids),
            )
        return cur.rowcount

    # ── Import ──

    def import_bookmarks(self, records: list[dict]) -> ImportResult:
        """Insert records that are not already stored, all in one transaction.

        Records without an `id` or `text` and records whose id already exists
        are counted as skipped. Tags named by an inserted record are created
        if needed and attached. A `category_id` that does not exist in this
        library is dropped rather than failing the batch.
        """
        if not isinstance(records, list):
            raise ValidationError("bookmarks", "Import payload must contain a 'bookmarks' list")

        imported = 0
        skipped = 0
        now = utcnow()
        with self.db.transaction() as conn:
            category_ids = {r[0] for r in conn.execute("SELECT id FROM categories")}
            for record in records:
                if not isinstance(record, dict) or not record.get("id") or not record.get("text"):
                    skipped += 1
                    continue
                bookmark = self._record_to_bookmark(record, now)
                if bookmark.category_id not in category_ids:
                    bookmark.category_id = None
                cur = conn.execute(_IMPORT_SQL, self._insert_params(bookmark, now))
                if cur.rowcount == 0:
                    skipped += 1
                    continue
                imported += 1
                for name, color in self._record_tags(record):
                    tag_id = self._ensure_tag(conn, name, color)
                    self._link(conn, bookmark.id, tag_id)

        logger.info("Imported %d bookmarks, skipped %d", imported, skipped)
        return ImportResult(imported=imported, skipped=skipped, total=len(records))

    # ── Tags ──

    def create_tag(self, name: str, color: str | None = None) -> Tag:
        name = (name or "").strip()
        if not name:
            raise ValidationError("name", "Tag name is required")
        try:
            with self.db.transaction() as conn:
                cur = conn.execute(
                    "INSERT INTO tags (name, color, created_at) VALUES (?, ?, ?)",
                    (name, color or DEFAULT_TAG_COLOR, to_db_time(utcnow())),
                )
        except sqlite3.IntegrityError as e:
            if _is_unique_violation(e):
                raise ConflictError(f"Tag already exists: {name}") from e
            raise
        return self.get_tag(cur.lastrowid)

    def get_tag(self, tag_id: int) -> Tag:
        row = self.db.fetchone("SELECT * FROM tags WHERE id = ?", (tag_id,))
        if row is None:
            raise NotFoundError("tag", tag_id)
        return Tag(id=row["id"], name=row["name"], color=row["color"])

    def find_tag(self, name: str) -> Tag | None:
        row = self.db.fetchone("SELECT * FROM tags WHERE name = ?", (name,))
        return Tag(id=row["id"], name=row["name"], color=row["color"]) if row else None

    def list_tags(self) -> list[Tag]:
        rows = self.db.fetchall(
            """
            SELECT t.id, t.name, t.color, COUNT(bt.bookmark_id) AS bookmark_count
            FROM tags t
            LEFT JOIN bookmark_tags bt ON bt.tag_id = t.id
            GROUP BY t.id
            ORDER BY t.name
            """
        )
        return [Tag(**dict(r)) for r in rows]

    def update_tag(self, tag_id: int, name: str | None = None, color: str | None = None) -> Tag:
        updates: list[str] = []
        params: list = []
        if name:
            updates.append("name = ?")
            params.append(name.strip())
        if color:
            updates.append("color = ?")
            params.append(color)
        if not updates:
            raise ValidationError("fields", "No fields to update")
        try:
            with self.db.transaction() as conn:
                cur = conn.execute(
                    f"UPDATE tags SET {', '.join(updates)} WHERE id = ?", (*params, tag_id)
                )
        except sqlite3.IntegrityError as e:
            if _is_unique_violation(e):
                raise ConflictError(f"Tag already exists: {name}") from e
            raise
        if cur.rowcount == 0:
            raise NotFoundError("tag", tag_id)
        return self.get_tag(tag_id)

    def delete_tag(self, tag_id: int) -> None:
        """Delete a tag; its associations and auto-tag rules go with it."""
        with self.db.transaction() as conn:
            cur = conn.execute("DELETE FROM tags WHERE id = ?", (tag_id,))
            if cur.rowcount == 0:
                raise NotFoundError("tag", tag_id)

    def tags_for(self, bookmark_id: str) -> list[Tag]:
        rows = self.db.fetchall(
            """
            SELECT t.id, t.name, t.color FROM tags t
            JOIN bookmark_tags bt ON bt.tag_id = t.id
            WHERE bt.bookmark_id = ?
            ORDER BY t.name
            """,
            (bookmark_id,),
        )
        return [Tag(**dict(r)) for r in rows]

    # ── Categories ──

    def create_category(self, name: str, icon: str | None = None) -> Category:
        name = (name or "").strip()
        if not name:
            raise ValidationError("name", "Category name is required")
        try:
            with self.db.transaction() as conn:
                cur = conn.execute(
                    "INSERT INTO categories (name, icon, created_at) VALUES (?, ?, ?)",
                    (name, icon or DEFAULT_CATEGORY_ICON, to_db_time(utcnow())),
                )
        except sqlite3.IntegrityError as e:
            if _is_unique_violation(e):
                raise ConflictError(f"Category already exists: {name}") from e
            raise
        return self.get_category(cur.lastrowid)

    def get_category(self, category_id: int) -> Category:
        row = self.db.fetchone(
            "SELECT id, name, icon, sort_order FROM categories WHERE id = ?", (category_id,)
        )
        if row is None:
            raise NotFoundError("category", category_id)
        return Category(**dict(row))

    def list_categories(self) -> list[Category]:
        rows = self.db.fetchall(
            """
            SELECT c.id, c.name, c.icon, c.sort_order, COUNT(b.id) AS bookmark_count
            FROM categories c
            LEFT JOIN bookmarks b ON b.category_id = c.id
            GROUP BY c.id
            ORDER BY c.sort_order, c.name
            """
        )
        return [Category(**dict(r)) for r in rows]

    def update_category(
        self,
        category_id: int,
        name: str | None = None,
        icon: str | None = None,
        sort_order: int | None = None,
    ) -> Category:
        updates: list[str] = []
        params: list = []
        if name:
            updates.append("name = ?")
            params.append(name.strip())
        if icon:
            updates.append("icon = ?")
            params.append(icon)
        if sort_order is not None:
            updates.append("sort_order = ?")
            params.append(sort_order)
        if not updates:
            raise ValidationError("fields", "No fields to update")
        try:
            with self.db.transaction() as conn:
                cur = conn.execute(
                    f"UPDATE categories SET {', '.join(updates)} WHERE id = ?",
                    (*params, category_id),
                )
        except sqlite3.IntegrityError as e:
            if _is_unique_violation(e):
                raise ConflictError(f"Category already exists: {name}") from e
            raise
        if cur.rowcount == 0:
            raise NotFoundError("category", category_id)
        return self.get_category(category_id)

    def delete_category(self, category_id: int) -> None:
        """Delete a category; bookmarks that used it become uncategorized."""
        with self.db.transaction() as conn:
            cur = conn.execute("DELETE FROM categories WHERE id = ?", (category_id,))
            if cur.rowcount == 0:
                raise NotFoundError("category", category_id)

    # ── Auto-tag rules ──

    def add_rule(self, tag_id: int, rule_type: str | RuleType, pattern: str) -> AutoTagRule:
        try:
            kind = RuleType(rule_type)
        except ValueError as e:
            raise ValidationError(
                "rule_type", f"rule_type must be one of {[t.value for t in RuleType]}"
            ) from e
        pattern = (pattern or "").strip()
        if not pattern:
            raise ValidationError("pattern", "Rule pattern is required")

        try:
            with self.db.transaction() as conn:
                self._require(conn, "tags", "tag", tag_id)
                cur = conn.execute(
                    "INSERT INTO auto_tag_rules (tag_id, rule_type, pattern, created_at) "
                    "VALUES (?, ?, ?, ?)",
                    (tag_id, kind.value, pattern, to_db_time(utcnow())),
                )
        except sqlite3.IntegrityError as e:
            if _is_unique_violation(e):
                raise ConflictError(
                    f"Rule already exists: {kind.value} '{pattern}' -> tag {tag_id}"
                ) from e
            raise
        return self._get_rule(cur.lastrowid)

    def list_rules(self) -> list[AutoTagRule]:
        rows = self.db.fetchall(
            """
            SELECT r.id, r.tag_id, r.rule_type, r.pattern,
                   t.name AS tag_name, t.color AS tag_color
            FROM auto_tag_rules r
            JOIN tags t ON t.id = r.tag_id
            ORDER BY r.created_at DESC, r.id DESC
            """
        )
        return [self._row_to_rule(r) for r in rows]

    def delete_rule(self, rule_id: int) -> None:
        with self.db.transaction() as conn:
            cur = conn.execute("DELETE FROM auto_tag_rules WHERE id = ?", (rule_id,))
            if cur.rowcount == 0:
                raise NotFoundError("rule", rule_id)

    def _get_rule(self, rule_id: int) -> AutoTagRule:
        row = self.db.fetchone(
            """
            SELECT r.id, r.tag_id, r.rule_type, r.pattern,
                   t.name AS tag_name, t.color AS tag_color
            FROM auto_tag_rules r JOIN tags t ON t.id = r.tag_id
            WHERE r.id = ?
            """,
            (rule_id,),
        )
        if row is None:
            raise NotFoundError("rule", rule_id)
        return self._row_to_rule(row)

    # ── Watchlist ──

    def add_watch(self, username: str, note: str = "") -> WatchlistEntry:
        username = (username or "").strip().lstrip("@")
        if not username:
            raise ValidationError("username", "username is required")
        try:
            with self.db.transaction() as conn:
                cur = conn.execute(
                    "INSERT INTO watchlist (username, note, added_at) VALUES (?, ?, ?)",
                    (username, note or "", to_db_time(utcnow())),
                )
        except sqlite3.IntegrityError as e:
            if _is_unique_violation(e):
                raise ConflictError(f"Already watching @{username}") from e
            raise
        row = self.db.fetchone("SELECT * FROM watchlist WHERE id = ?", (cur.lastrowid,))
        return self._row_to_watch(row)

    def list_watchlist(self) -> list[WatchlistEntry]:
        rows = self.db.fetchall("SELECT * FROM watchlist ORDER BY added_at DESC, id DESC")
        return [self._row_to_watch(r) for r in rows]

    def remove_watch(self, username: str) -> None:
        username = (username or "").strip().lstrip("@")
        with self.db.transaction() as conn:
            cur = conn.execute("DELETE FROM watchlist WHERE username = ?", (username,))
            if cur.rowcount == 0:
                raise NotFoundError("watchlist entry", username)

    # ── Helpers ──

    @staticmethod
    def _require(conn: sqlite3.Connection, table: str, entity: str, key) -> None:
        if conn.execute(f"SELECT 1 FROM {table} WHERE id = ?", (key,)).fetchone() is None:
            raise NotFoundError(entity, key)

    @staticmethod
    def _link(conn: sqlite3.Connection, bookmark_id: str, tag_id: int) -> int:
        cur = conn.execute(
            """
            INSERT OR IGNORE INTO bookmark_tags (bookmark_id, tag_id)
            SELECT b.id, t.id FROM bookmarks b, tags t
            WHERE b.id = ? AND t.id = ?
            """,
            (bookmark_id, tag_id),
        )
        return cur.rowcount

    @staticmethod
    def _ensure_tag(conn: sqlite3.Connection, name: str, color: str | None) -> int:
        conn.execute(
            "INSERT OR IGNORE INTO tags (name, color, created_at) VALUES (?, ?, ?)",
            (name, color or DEFAULT_TAG_COLOR, to_db_time(utcnow())),
        )
        return conn.execute("SELECT id FROM tags WHERE name = ?", (name,)).fetchone()[0]

    @staticmethod
    def _record_tags(record: dict) -> list[tuple[str, str | None]]:
        tags = record.get("tags")
        if not isinstance(tags, list):
            return []
        result = []
        for tag in tags:
            if isinstance(tag, str) and tag.strip():
                result.append((tag.strip(), None))
            elif isinstance(tag, dict) and str(tag.get("name") or "").strip():
                result.append((str(tag["name"]).strip(), tag.get("color")))
        return result

    def _attach_tags(self, bookmarks: list[Bookmark]) -> None:
        if not bookmarks:
            return
        by_id = {b.id: b for b in bookmarks}
        rows = self.db.fetchall(
            "SELECT bt.bookmark_id, t.id, t.name, t.color FROM tags t "
            "JOIN bookmark_tags bt ON bt.tag_id = t.id "
            f"WHERE bt.bookmark_id IN ({', '.join('?' for _ in by_id)}) "
            "ORDER BY t.name",
            list(by_id),
        )
        for row in rows:
            by_id[row["bookmark_id"]].tags.append(
                Tag(id=row["id"], name=row["name"], color=row["color"])
            )

    @staticmethod
    def _insert_params(bookmark: Bookmark, now: datetime) -> tuple:
        return (
            bookmark.id,
            bookmark.text,
            bookmark.author_id or "",
            bookmark.author_username or "unknown",
            bookmark.author_name or "Unknown",
            bookmark.tweet_url
            or f"https://x.com/{bookmark.author_username or 'unknown'}/status/{bookmark.id}",
            to_db_time(bookmark.created_at),
            bookmark.conversation_id,
            bookmark.likes,
            bookmark.retweets,
            bookmark.replies,
            bookmark.quotes,
            bookmark.impressions,
            bookmark.bookmark_count,
            json.dumps(bookmark.urls),
            json.dumps(bookmark.mentions),
            json.dumps(bookmark.hashtags),
            bookmark.category_id,
            bookmark.notes or "",
            1 if bookmark.is_pinned else 0,
            to_db_time(bookmark.bookmarked_at or now),
            to_db_time(bookmark.synced_at or now),
            to_db_time(bookmark.created_locally or now),
        )

    @staticmethod
    def _record_to_bookmark(record: dict, now: datetime) -> Bookmark:
        def _int(key: str) -> int:
            try:
                return max(int(record.get(key) or 0), 0)
            except (TypeError, ValueError):
                return 0

        def _time(key: str) -> datetime | None:
            value = record.get(key)
            if not value:
                return None
            try:
                return from_db_time(str(value))
            except ValueError:
                return None

        def _strings(key: str) -> list[str]:
            value = record.get(key)
            return [str(v) for v in value] if isinstance(value, list) else []

        username = record.get("author_username") or "unknown"
        category_id = record.get("category_id")
        return Bookmark(
            id=str(record["id"]),
            text=str(record["text"]),
            author_id=str(record.get("author_id") or ""),
            author_username=username,
            author_name=record.get("author_name") or "Unknown",
            tweet_url=record.get("tweet_url")
            or f"https://x.com/{username}/status/{record['id']}",
            created_at=_time("created_at") or now,
            conversation_id=record.get("conversation_id"),
            likes=_int("likes"),
            retweets=_int("retweets"),
            replies=_int("replies"),
            quotes=_int("quotes"),
            impressions=_int("impressions"),
            bookmark_count=_int("bookmark_count"),
            urls=_strings("urls"),
            mentions=_strings("mentions"),
            hashtags=_strings("hashtags"),
            category_id=category_id if isinstance(category_id, int) else None,
            notes=record.get("notes") or "",
            is_pinned=bool(record.get("is_pinned")),
            bookmarked_at=_time("bookmarked_at") or now,
        )

    @staticmethod
    def _row_to_bookmark(row: sqlite3.Row) -> Bookmark:
        return Bookmark(
            id=row["id"],
            text=row["text"],
            author_id=row["author_id"],
            author_username=row["author_username"],
            author_name=row["author_name"],
            tweet_url=row["tweet_url"],
            created_at=from_db_time(row["created_at"]),
            conversation_id=row["conversation_id"],
            likes=row["likes"] or 0,
            retweets=row["retweets"] or 0,
            replies=row["replies"] or 0,
            quotes=row["quotes"] or 0,
            impressions=row["impressions"] or 0,
            bookmark_count=row["bookmark_count"] or 0,
            urls=json.loads(row["urls"] or "[]"),
            mentions=json.loads(row["mentions"] or "[]"),
            hashtags=json.loads(row["hashtags"] or "[]"),
            category_id=row["category_id"],
            notes=row["notes"] or "",
            is_pinned=bool(row["is_pinned"]),
            bookmarked_at=from_db_time(row["bookmarked_at"]),
            synced_at=from_db_time(row["synced_at"]),
            created_locally=from_db_time(row["created_locally"]),
        )

    @staticmethod
    def _row_to_rule(row: sqlite3.Row) -> AutoTagRule:
        return AutoTagRule(
            id=row["id"],
            tag_id=row["tag_id"],
            rule_type=RuleType(row["rule_type"]),
            pattern=row["pattern"],
            tag_name=row["tag_name"],
            tag_color=row["tag_color"],
        )

    @staticmethod
    def _row_to_watch(row: sqlite3.Row) -> WatchlistEntry:
        return WatchlistEntry(
            id=row["id"],
            username=row["username"],
            note=row["note"] or "",
            added_at=from_db_time(row["added_at"]),
        )
