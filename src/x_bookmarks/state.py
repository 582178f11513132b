"""Track sync progress in the singleton `sync_state` row.

The row carries the time of the last successful sync, the recomputed
bookmark total, the last pagination cursor seen, and `sync_started_at`,
which doubles as the at-most-one-sync flag.
"""

import logging
from datetime import datetime, timedelta

from .db import Database, from_db_time, to_db_time, utcnow
from .errors import SyncInProgressError
from .models import SyncState

logger = logging.getLogger(__name__)

# A flag older than this belongs to a sync that died without finishing.
STALE_SYNC_AFTER = timedelta(minutes=30)


class SyncStateStore:
    def __init__(self, db: Database):
        self.db = db

    def get(self) -> SyncState:
        row = self.db.fetchone("SELECT * FROM sync_state WHERE id = 1")
        if row is None:
            return SyncState()
        return SyncState(
            last_sync_at=from_db_time(row["last_sync_at"]),
            total_synced=row["total_synced"] or 0,
            pagination_cursor=row["last_pagination_token"],
            sync_started_at=from_db_time(row["sync_started_at"]),
        )

    def record_cursor(self, cursor: str | None) -> None:
        with self.db.transaction() as conn:
            conn.execute(
                "UPDATE sync_state SET last_pagination_token = ? WHERE id = 1", (cursor,)
            )

    def record_success(self, at: datetime, total: int) -> None:
        """Stamp a completed sync and store the freshly counted total."""
        with self.db.transaction() as conn:
            conn.execute(
                """
                UPDATE sync_state
                SET last_sync_at = ?, total_synced = ?, last_pagination_token = NULL
                WHERE id = 1
                """,
                (to_db_time(at), total),
            )
        logger.debug("Recorded sync at %s (%d bookmarks)", at.isoformat(), total)

    def try_begin(
        self, now: datetime | None = None, stale_after: timedelta = STALE_SYNC_AFTER
    ) -> None:
        """Take the sync flag, or raise SyncInProgressError if another sync holds it."""
        now = now or utcnow()
        with self.db.transaction() as conn:
            cur = conn.execute(
                """
                UPDATE sync_state SET sync_started_at = ?
                WHERE id = 1 AND (sync_started_at IS NULL OR sync_started_at < ?)
                """,
                (to_db_time(now), to_db_time(now - stale_after)),
            )
            if cur.rowcount == 0:
                raise SyncInProgressError()

    def finish(self) -> None:
        """Release the sync flag."""
        with self.db.transaction() as conn:
            conn.execute("UPDATE sync_state SET sync_started_at = NULL WHERE id = 1")

    def reset(self) -> None:
        """Forget sync history (the bookmarks themselves are kept)."""
        with self.db.transaction() as conn:
            conn.execute(
                """
                UPDATE sync_state
                SET last_sync_at = NULL, last_pagination_token = NULL,
                    total_synced = 0, sync_started_at = NULL
                WHERE id = 1
                """
            )
