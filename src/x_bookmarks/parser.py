"""Parse X API v2 post payloads into Post model objects.

Bookmarks and search responses share one shape:
    {"data": [...posts], "includes": {"users": [...]}, "meta": {"next_token": ...}}

Authors are resolved through `includes.users` by `author_id`. A post whose
author is missing from the expansion keeps explicit "unknown" sentinels
rather than being dropped.
"""

import logging
from datetime import datetime

from .models import Post, UserProfile

logger = logging.getLogger(__name__)

UNKNOWN_USERNAME = "unknown"
UNKNOWN_NAME = "Unknown"

# public_metrics key -> Post attribute
METRIC_FIELDS = {
    "like_count": "likes",
    "retweet_count": "retweets",
    "reply_count": "replies",
    "quote_count": "quotes",
    "impression_count": "impressions",
    "bookmark_count": "bookmark_count",
}


def parse_posts(payload: dict) -> list[Post]:
    """Parse every post in a response page, skipping malformed records."""
    users = _user_map(payload)
    posts = []
    for raw in payload.get("data") or []:
        try:
            posts.append(_parse_single_post(raw, users))
        except (KeyError, TypeError, ValueError) as e:
            post_id = raw.get("id", "?") if isinstance(raw, dict) else "?"
            logger.warning("Skipping malformed post %s: %s", post_id, e)
    return posts


def parse_user(raw: dict | None) -> UserProfile | None:
    """Parse a user lookup `data` object; None if it is missing or malformed."""
    if not isinstance(raw, dict) or not raw.get("id") or not raw.get("username"):
        return None
    metrics = raw.get("public_metrics") or {}
    try:
        return UserProfile(
            id=str(raw["id"]),
            username=raw["username"],
            name=raw.get("name") or "",
            description=raw.get("description") or "",
            followers=int(metrics.get("followers_count") or 0),
            following=int(metrics.get("following_count") or 0),
            post_count=int(metrics.get("tweet_count") or 0),
            created_at=_parse_created_at(raw.get("created_at")),
        )
    except (TypeError, ValueError) as e:
        logger.warning("Skipping malformed user %s: %s", raw.get("id"), e)
        return None


def next_token(payload: dict) -> str | None:
    """The cursor for the following page, or None on the last page."""
    return (payload.get("meta") or {}).get("next_token") or None


def tweet_url(username: str, post_id: str) -> str:
    return f"https://x.com/{username}/status/{post_id}"


def _user_map(payload: dict) -> dict[str, dict]:
    users = (payload.get("includes") or {}).get("users") or []
    return {u["id"]: u for u in users if isinstance(u, dict) and "id" in u}


def _parse_single_post(raw: dict, users: dict[str, dict]) -> Post:
    post_id = str(raw["id"])
    text = raw["text"]
    author_id = raw.get("author_id") or ""
    user = users.get(author_id, {})
    username = user.get("username") or UNKNOWN_USERNAME

    metrics = raw.get("public_metrics") or {}
    counts = {attr: int(metrics.get(key) or 0) for key, attr in METRIC_FIELDS.items()}

    entities = raw.get("entities") or {}

    return Post(
        id=post_id,
        text=text,
        author_id=author_id,
        author_username=username,
        author_name=user.get("name") or UNKNOWN_NAME,
        tweet_url=tweet_url(username, post_id),
        created_at=_parse_created_at(raw.get("created_at")),
        conversation_id=raw.get("conversation_id"),
        urls=_collect(entities.get("urls"), "expanded_url"),
        mentions=_collect(entities.get("mentions"), "username"),
        hashtags=_collect(entities.get("hashtags"), "tag"),
        **counts,
    )


def _parse_created_at(value: str | None) -> datetime | None:
    # API format: "2024-05-14T18:01:35.000Z"
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _collect(items: list | None, key: str) -> list[str]:
    return [item[key] for item in items or [] if isinstance(item, dict) and item.get(key)]
