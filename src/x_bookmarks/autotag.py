"""Auto-tagging: attach tags to bookmarks whose fields match stored rules.

Matching is case-insensitive. Every rule is evaluated on every pass, and
attaching a tag that is already attached is a no-op.
"""

import logging
from urllib.parse import urlsplit

from .models import AutoTagRule, Post, RuleType
from .store import BookmarkStore

logger = logging.getLogger(__name__)


def _hostname(url: str) -> str | None:
    try:
        parts = urlsplit(url)
    except ValueError:
        return None
    if not parts.scheme or not parts.netloc:
        return None
    return parts.hostname


def rule_matches(rule: AutoTagRule, post: Post) -> bool:
    """Whether `rule` matches `post`. Unparseable URLs simply do not match."""
    pattern = rule.pattern.lower()
    kind = RuleType(rule.rule_type)

    if kind is RuleType.KEYWORD:
        return pattern in (post.text or "").lower()
    if kind is RuleType.HASHTAG:
        return any(tag.lower() == pattern for tag in post.hashtags)
    if kind is RuleType.AUTHOR:
        return (post.author_username or "").lower() == pattern
    if kind is RuleType.URL_DOMAIN:
        for url in post.urls:
            host = _hostname(url)
            if host and pattern in host:
                return True
        return False
    return False


class AutoTagger:
    def __init__(self, store: BookmarkStore):
        self.store = store

    def apply_rules(self, bookmark_id: str, rules: list[AutoTagRule] | None = None) -> int:
        """Evaluate every rule against one bookmark; returns tags newly attached."""
        bookmark = self.store.get(bookmark_id)
        if rules is None:
            rules = self.store.list_rules()

        attached = 0
        for rule in rules:
            if rule_matches(rule, bookmark) and self.store.attach_tag(bookmark.id, rule.tag_id):
                logger.debug("Tagged %s with %s (rule %s)", bookmark.id, rule.tag_name, rule.id)
                attached += 1
        return attached

    def apply_all(self) -> int:
        """Re-run all rules over every stored bookmark; returns bookmarks considered."""
        rules = self.store.list_rules()
        considered = 0
        for bookmark_id in self.store.all_ids():
            self.apply_rules(bookmark_id, rules)
            considered += 1
        logger.info("Applied %d rules to %d bookmarks", len(rules), considered)
        return considered
