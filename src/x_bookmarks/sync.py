"""Pull the user's bookmarks from X into the local store.

One `sync()` call walks every page of the remote bookmarks endpoint in
order. Each page is written in one transaction, and only bookmarks that
were newly inserted are passed through the auto-tagger. Pages already
written stay written if a later page fails; the last-sync timestamp is
only recorded when the whole walk completes.
"""

import logging
import time

from .autotag import AutoTagger
from .client import XClient
from .credentials import CredentialStore
from .db import Database, utcnow
from .errors import UnauthenticatedError
from .models import Bookmark, SyncResult, UpsertOutcome
from .state import SyncStateStore
from .store import BookmarkStore

logger = logging.getLogger(__name__)

# Pause between page requests to stay under the endpoint's rate limit
PAGE_DELAY_SECONDS = 0.35


class SyncOrchestrator:
    def __init__(
        self,
        db: Database,
        store: BookmarkStore,
        credentials: CredentialStore,
        client: XClient,
        autotagger: AutoTagger,
        state: SyncStateStore,
        page_delay: float = PAGE_DELAY_SECONDS,
    ):
        self.db = db
        self.store = store
        self.credentials = credentials
        self.client = client
        self.autotagger = autotagger
        self.state = state
        self.page_delay = page_delay

    def sync(self) -> SyncResult:
        """Run one full sync. Raises SyncInProgressError if one is already running."""
        self.state.try_begin()
        try:
            return self._run()
        finally:
            self.state.finish()

    def _run(self) -> SyncResult:
        token = self.credentials.get_valid_token()
        identity = self.credentials.identity()
        if identity is None:
            raise UnauthenticatedError()
        user_id, username = identity

        new_count = 0
        updated_count = 0
        cursor: str | None = None
        page_num = 0

        logger.info("Syncing bookmarks for @%s...", username)
        while True:
            page_num += 1
            page = self.client.fetch_bookmarks_page(user_id, token, cursor)
            if page.empty:
                logger.info("Page %d is empty. Sync complete.", page_num)
                break

            inserted, updated = self._apply_page(page.posts)
            new_count += inserted
            updated_count += updated
            logger.info(
                "Page %d: %d new, %d updated", page_num, inserted, updated
            )

            cursor = page.next_token
            if not cursor:
                break
            self.state.record_cursor(cursor)
            time.sleep(self.page_delay)

        total = self.store.count()
        self.state.record_success(utcnow(), total)
        logger.info(
            "Sync finished: %d new, %d updated, %d total", new_count, updated_count, total
        )
        return SyncResult(new_count=new_count, updated_count=updated_count, total_synced=total)

    def _apply_page(self, posts) -> tuple[int, int]:
        inserted = 0
        updated = 0
        now = utcnow()
        rules = self.store.list_rules()
        with self.db.transaction():
            for post in posts:
                outcome = self.store.upsert(Bookmark.from_post(post, now))
                if outcome is UpsertOutcome.INSERTED:
                    inserted += 1
                    self.autotagger.apply_rules(post.id, rules)
                else:
                    updated += 1
        return inserted, updated
