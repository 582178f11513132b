"""SQLite connection, schema and transaction handling.

All durable state (bookmarks, organization, credential, sync state) lives in
one database file. The connection runs in autocommit mode; writes that must
be atomic go through `Database.transaction()`, which nests by joining the
outer transaction.
"""

import logging
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
PRAGMA journal_mode=WAL;

CREATE TABLE IF NOT EXISTS categories (
  id          INTEGER PRIMARY KEY AUTOINCREMENT,
  name        TEXT NOT NULL UNIQUE,
  icon        TEXT DEFAULT 'folder',
  sort_order  INTEGER DEFAULT 0,
  created_at  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS bookmarks (
  id               TEXT PRIMARY KEY,
  text             TEXT NOT NULL,
  author_id        TEXT NOT NULL DEFAULT '',
  author_username  TEXT NOT NULL,
  author_name      TEXT NOT NULL,
  tweet_url        TEXT NOT NULL,
  created_at       TEXT,
  conversation_id  TEXT,
  likes            INTEGER DEFAULT 0,
  retweets         INTEGER DEFAULT 0,
  replies          INTEGER DEFAULT 0,
  quotes           INTEGER DEFAULT 0,
  impressions      INTEGER DEFAULT 0,
  bookmark_count   INTEGER DEFAULT 0,
  urls             TEXT DEFAULT '[]',
  mentions         TEXT DEFAULT '[]',
  hashtags         TEXT DEFAULT '[]',
  category_id      INTEGER REFERENCES categories(id) ON DELETE SET NULL,
  notes            TEXT DEFAULT '',
  is_pinned        INTEGER DEFAULT 0,
  bookmarked_at    TEXT NOT NULL,
  synced_at        TEXT NOT NULL,
  created_locally  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS tags (
  id          INTEGER PRIMARY KEY AUTOINCREMENT,
  name        TEXT NOT NULL UNIQUE,
  color       TEXT NOT NULL DEFAULT '#6366f1',
  created_at  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS bookmark_tags (
  bookmark_id TEXT NOT NULL REFERENCES bookmarks(id) ON DELETE CASCADE,
  tag_id      INTEGER NOT NULL REFERENCES tags(id) ON DELETE CASCADE,
  PRIMARY KEY (bookmark_id, tag_id)
);

CREATE TABLE IF NOT EXISTS watchlist (
  id          INTEGER PRIMARY KEY AUTOINCREMENT,
  username    TEXT NOT NULL UNIQUE,
  note        TEXT DEFAULT '',
  added_at    TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS auto_tag_rules (
  id          INTEGER PRIMARY KEY AUTOINCREMENT,
  tag_id      INTEGER NOT NULL REFERENCES tags(id) ON DELETE CASCADE,
  rule_type   TEXT NOT NULL CHECK(rule_type IN ('keyword', 'hashtag', 'author', 'url_domain')),
  pattern     TEXT NOT NULL,
  created_at  TEXT NOT NULL,
  UNIQUE(tag_id, rule_type, pattern)
);

-- Singleton: the one authenticated user
CREATE TABLE IF NOT EXISTS oauth_tokens (
  id              INTEGER PRIMARY KEY CHECK(id = 1),
  access_token    TEXT NOT NULL,
  refresh_token   TEXT,
  expires_at      TEXT,
  scope           TEXT,
  user_id         TEXT,
  username        TEXT,
  updated_at      TEXT NOT NULL
);

-- Singleton: sync progress and the at-most-one-sync flag
CREATE TABLE IF NOT EXISTS sync_state (
  id                    INTEGER PRIMARY KEY CHECK(id = 1),
  last_sync_at          TEXT,
  last_pagination_token TEXT,
  total_synced          INTEGER DEFAULT 0,
  sync_started_at       TEXT
);

CREATE INDEX IF NOT EXISTS idx_bookmarks_author ON bookmarks(author_username);
CREATE INDEX IF NOT EXISTS idx_bookmarks_created ON bookmarks(created_at);
CREATE INDEX IF NOT EXISTS idx_bookmarks_category ON bookmarks(category_id);
CREATE INDEX IF NOT EXISTS idx_bookmarks_pinned ON bookmarks(is_pinned);
CREATE INDEX IF NOT EXISTS idx_bookmark_tags_tag ON bookmark_tags(tag_id);

CREATE VIRTUAL TABLE IF NOT EXISTS bookmarks_fts USING fts5(
  text, author_username, author_name, notes,
  content='bookmarks',
  content_rowid='rowid'
);

CREATE TRIGGER IF NOT EXISTS bookmarks_ai AFTER INSERT ON bookmarks BEGIN
  INSERT INTO bookmarks_fts(rowid, text, author_username, author_name, notes)
  VALUES (new.rowid, new.text, new.author_username, new.author_name, new.notes);
END;

CREATE TRIGGER IF NOT EXISTS bookmarks_ad AFTER DELETE ON bookmarks BEGIN
  INSERT INTO bookmarks_fts(bookmarks_fts, rowid, text, author_username, author_name, notes)
  VALUES ('delete', old.rowid, old.text, old.author_username, old.author_name, old.notes);
END;

CREATE TRIGGER IF NOT EXISTS bookmarks_au AFTER UPDATE ON bookmarks BEGIN
  INSERT INTO bookmarks_fts(bookmarks_fts, rowid, text, author_username, author_name, notes)
  VALUES ('delete', old.rowid, old.text, old.author_username, old.author_name, old.notes);
  INSERT INTO bookmarks_fts(rowid, text, author_username, author_name, notes)
  VALUES (new.rowid, new.text, new.author_username, new.author_name, new.notes);
END;

INSERT OR IGNORE INTO sync_state (id, total_synced) VALUES (1, 0);
"""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_db_time(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def from_db_time(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class Database:
    """A single shared SQLite connection with serialized transactions."""

    def __init__(self, path: Path | str):
        self.path = path
        if isinstance(path, Path):
            path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(
            str(path), check_same_thread=False, isolation_level=None
        )
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys = ON")
        self._lock = threading.RLock()

    def init(self) -> None:
        """Create tables, indexes and singleton rows if missing."""
        with self._lock:
            self.conn.executescript(SCHEMA_SQL)
        logger.debug("Database initialized at %s", self.path)

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block atomically; nested blocks join the outer transaction."""
        with self._lock:
            if self.conn.in_transaction:
                yield self.conn
                return
            self.conn.execute("BEGIN IMMEDIATE")
            try:
                yield self.conn
            except BaseException:
                self.conn.execute("ROLLBACK")
                raise
            self.conn.execute("COMMIT")

    def fetchall(self, sql: str, params: tuple | list = ()) -> list[sqlite3.Row]:
        with self._lock:
            return self.conn.execute(sql, params).fetchall()

    def fetchone(self, sql: str, params: tuple | list = ()) -> sqlite3.Row | None:
        with self._lock:
            return self.conn.execute(sql, params).fetchone()

    def close(self) -> None:
        self.conn.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()
