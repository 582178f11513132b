"""TTL cache for remote search results, kept in its own SQLite file.

Entries are addressed by a fingerprint of the normalized query and its
parameters. Freshness is checked at read time against the stored write
time. The cache is an optimization only: an unreadable entry or a storage
error is logged and treated as a miss.
"""

import hashlib
import json
import logging
import sqlite3
import threading
import time
from pathlib import Path

from .models import Post

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 15 * 60

CACHE_SCHEMA_SQL = """
PRAGMA journal_mode=WAL;

CREATE TABLE IF NOT EXISTS search_cache (
  key         TEXT PRIMARY KEY,
  query       TEXT NOT NULL,
  params      TEXT NOT NULL,
  written_at  REAL NOT NULL,
  payload     TEXT NOT NULL
);
"""


def _canonical_params(params: dict | None) -> str:
    cleaned = {k: v for k, v in (params or {}).items() if v is not None}
    return json.dumps(cleaned, sort_keys=True, separators=(",", ":"), default=str)


def cache_key(query: str, params: dict | None = None) -> str:
    """Deterministic fingerprint; parameter order does not matter."""
    normalized = " ".join(query.split())
    raw = f"{normalized}|{_canonical_params(params)}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:32]


class ResultCache:
    def __init__(self, path: Path | str):
        if isinstance(path, Path):
            path.parent.mkdir(parents=True, exist_ok=True)
        self.path = path
        self._conn = sqlite3.connect(str(path), check_same_thread=False, isolation_level=None)
        self._lock = threading.Lock()
        with self._lock:
            self._conn.executescript(CACHE_SCHEMA_SQL)

    def get(
        self, query: str, params: dict | None = None, ttl: float = DEFAULT_TTL_SECONDS
    ) -> list[Post] | None:
        """Cached posts for (query, params), or None on a miss.

        An entry that cannot be decoded back into posts is deleted and
        reported as a miss.
        """
        key = cache_key(query, params)
        try:
            with self._lock:
                row = self._conn.execute(
                    "SELECT written_at, payload FROM search_cache WHERE key = ?", (key,)
                ).fetchone()
                if row is None:
                    logger.debug("Cache miss for %r", query)
                    return None
                written_at, payload = row
                try:
                    expired = time.time() - written_at > ttl
                    posts = None if expired else _decode_posts(payload)
                except (ValueError, TypeError, AttributeError) as e:
                    logger.warning("Dropping unreadable cache entry for %r: %s", query, e)
                    self._conn.execute("DELETE FROM search_cache WHERE key = ?", (key,))
                    return None
                if expired:
                    self._conn.execute("DELETE FROM search_cache WHERE key = ?", (key,))
                    logger.debug("Cache entry for %r expired", query)
                    return None
        except sqlite3.DatabaseError as e:
            logger.warning("Cache read failed for %r: %s", query, e)
            return None

        logger.debug("Cache hit for %r (%d posts)", query, len(posts))
        return posts

    def set(self, query: str, params: dict | None, posts: list[Post]) -> None:
        """Store posts for (query, params), replacing any previous entry."""
        payload = json.dumps([p.to_dict() for p in posts])
        try:
            with self._lock:
                self._conn.execute(
                    "INSERT OR REPLACE INTO search_cache (key, query, params, written_at, payload) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (cache_key(query, params), query, _canonical_params(params), time.time(), payload),
                )
        except sqlite3.DatabaseError as e:
            logger.warning("Could not write cache entry for %r: %s", query, e)

    def prune(self, ttl: float = DEFAULT_TTL_SECONDS) -> int:
        """Remove every entry older than `ttl`; returns how many were removed.

        A storage failure is logged and reported as nothing removed.
        """
        return self._delete("DELETE FROM search_cache WHERE written_at < ?", (time.time() - ttl,))

    def clear(self) -> int:
        return self._delete("DELETE FROM search_cache")

    def _delete(self, sql: str, params: tuple = ()) -> int:
        try:
            with self._lock:
                cur = self._conn.execute(sql, params)
        except sqlite3.DatabaseError as e:
            logger.warning("Cache maintenance failed: %s", e)
            return 0
        return cur.rowcount

    def close(self) -> None:
        self._conn.close()


def _decode_posts(payload: str) -> list[Post]:
    items = json.loads(payload)
    if not isinstance(items, list) or not all(isinstance(item, dict) for item in items):
        raise ValueError("cache payload is not a list of posts")
    return [Post.from_dict(item) for item in items]
