"""Assign uncategorized bookmarks to a category with an LLM classifier.

The classifier is treated as an unreliable collaborator: a failing batch is
logged and skipped, and ids it returns that were not in the batch are
ignored.
"""

import json
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

import httpx

from .errors import RemoteError
from .models import Bookmark
from .store import BookmarkStore

logger = logging.getLogger(__name__)

ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"
DEFAULT_MODEL = "claude-haiku-4-5-20251001"
BATCH_SIZE = 25

_JSON_ARRAY = re.compile(r"\[[\s\S]*?\]")


@dataclass
class CategorizeResult:
    categorized: int
    total: int


class Classifier(Protocol):
    def classify(
        self, category: str, other_categories: list[str], candidates: list[Bookmark]
    ) -> list[str]:
        """Return the ids of `candidates` judged to belong in `category`."""
        ...


def describe(bookmark: Bookmark) -> str:
    line = f"[{bookmark.id}] @{bookmark.author_username}: {bookmark.text[:200]}"
    if bookmark.hashtags:
        line += f" | tags: {', '.join(bookmark.hashtags)}"
    if bookmark.urls:
        line += f" | urls: {', '.join(bookmark.urls)}"
    if bookmark.notes:
        line += f" | notes: {bookmark.notes}"
    return line


def build_prompt(category: str, other_categories: list[str], candidates: list[Bookmark]) -> str:
    others = ", ".join(other_categories) if other_categories else "none"
    listing = "\n".join(describe(b) for b in candidates)
    return (
        f'You are categorizing bookmarked tweets. Determine which of the following '
        f'bookmarks belong in the category "{category}".\n\n'
        f"Other existing categories for context: {others}\n\n"
        f"Bookmarks (format: [id] @author: text):\n{listing}\n\n"
        f'Return a JSON array of bookmark IDs that match the category "{category}". '
        "Only include bookmarks that clearly fit. If none match, return an empty array.\n\n"
        'Respond with ONLY the JSON array, no other text. Example: ["123", "456"]'
    )


def extract_ids(text: str) -> list[str]:
    """Pull the first JSON array of ids out of a model reply."""
    match = _JSON_ARRAY.search(text or "")
    if not match:
        return []
    ids = json.loads(match.group(0))
    if not isinstance(ids, list):
        raise ValueError("Classifier reply is not a JSON array")
    return [str(i) for i in ids]


class AnthropicClassifier:
    """Classifier backed by the Anthropic Messages API."""

    def __init__(self, api_key: str, model: str = DEFAULT_MODEL, max_tokens: int = 1024):
        if not api_key:
            raise ValueError("Anthropic API key not configured (ai.api_key or ANTHROPIC_API_KEY)")
        self.model = model
        self.max_tokens = max_tokens
        self._client = httpx.Client(
            headers={
                "x-api-key": api_key,
                "anthropic-version": ANTHROPIC_VERSION,
                "content-type": "application/json",
            },
            timeout=60.0,
        )

    def classify(
        self, category: str, other_categories: list[str], candidates: list[Bookmark]
    ) -> list[str]:
        response = self._client.post(
            ANTHROPIC_URL,
            json={
                "model": self.model,
                "max_tokens": self.max_tokens,
                "messages": [
                    {"role": "user", "content": build_prompt(category, other_categories, candidates)}
                ],
            },
        )
        if not response.is_success:
            raise RemoteError(response.status_code, response.text[:200])

        content = response.json().get("content") or []
        text = "".join(block.get("text", "") for block in content if block.get("type") == "text")
        return extract_ids(text)

    def close(self) -> None:
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


def auto_categorize(
    store: BookmarkStore,
    category_id: int,
    classifier: Classifier,
    batch_size: int = BATCH_SIZE,
    on_progress: Callable[[int, int, str], None] | None = None,
) -> CategorizeResult:
    """Classify every uncategorized bookmark against one category, in batches."""
    category = store.get_category(category_id)
    others = [c.name for c in store.list_categories() if c.name != category.name]
    candidates = store.uncategorized()
    if not candidates:
        return CategorizeResult(categorized=0, total=0)

    batches = [candidates[i:i + batch_size] for i in range(0, len(candidates), batch_size)]
    categorized = 0
    for index, batch in enumerate(batches, start=1):
        if on_progress:
            on_progress((index - 1) * batch_size, len(candidates), f"Analyzing batch {index}/{len(batches)}...")
        batch_ids = {b.id for b in batch}
        try:
            matched = classifier.classify(category.name, others, batch)
        except (RemoteError, httpx.HTTPError, ValueError) as e:
            logger.warning("Categorization batch %d/%d failed: %s", index, len(batches), e)
            continue
        valid = [i for i in matched if i in batch_ids]
        categorized += store.assign_category(valid, category_id)

    if on_progress:
        on_progress(len(candidates), len(candidates), f"Done! Categorized {categorized} bookmarks.")
    logger.info("Categorized %d of %d bookmarks into %s", categorized, len(candidates), category.name)
    return CategorizeResult(categorized=categorized, total=len(candidates))
