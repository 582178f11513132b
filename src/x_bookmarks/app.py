"""Wire storage, credentials, clients and services together from config."""

import logging
from functools import cached_property

from .autotag import AutoTagger
from .cache import ResultCache
from .categorizer import AnthropicClassifier
from .client import XClient
from .config import AppConfig
from .credentials import CredentialStore
from .db import Database
from .oauth import OAuthClient
from .research import ResearchService
from .state import SyncStateStore
from .store import BookmarkStore
from .sync import SyncOrchestrator

logger = logging.getLogger(__name__)


class App:
    """Everything one CLI invocation needs. Network clients are created on first use."""

    def __init__(self, config: AppConfig):
        self.config = config
        self.db = Database(config.db_path)
        self.db.init()
        self.store = BookmarkStore(self.db)
        self.state = SyncStateStore(self.db)
        self.autotagger = AutoTagger(self.store)
        self._closeables: list = [self.db]

    @cached_property
    def oauth(self) -> OAuthClient:
        client = OAuthClient(
            self.config.x.client_id,
            self.config.x.client_secret,
            self.config.x.callback_url,
        )
        self._closeables.append(client)
        return client

    @cached_property
    def credentials(self) -> CredentialStore:
        return CredentialStore(self.db, self.oauth)

    @cached_property
    def client(self) -> XClient:
        client = XClient(bearer_token=self.config.x.bearer_token or None)
        self._closeables.append(client)
        return client

    @cached_property
    def cache(self) -> ResultCache:
        cache = ResultCache(self.config.cache_path)
        self._closeables.append(cache)
        return cache

    @cached_property
    def research(self) -> ResearchService:
        return ResearchService(
            self.client, self.cache, ttl=self.config.cache_ttl_minutes * 60
        )

    @cached_property
    def syncer(self) -> SyncOrchestrator:
        return SyncOrchestrator(
            self.db,
            self.store,
            self.credentials,
            self.client,
            self.autotagger,
            self.state,
            page_delay=self.config.page_delay,
        )

    def classifier(self) -> AnthropicClassifier:
        classifier = AnthropicClassifier(self.config.ai.api_key, self.config.ai.model)
        self._closeables.append(classifier)
        return classifier

    def close(self) -> None:
        for resource in reversed(self._closeables):
            resource.close()
        self._closeables.clear()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()
