"""Render exported bookmarks as CSV or as a re-importable JSON document."""

import csv
import io
import json
from datetime import datetime, timezone
from typing import TextIO

CSV_COLUMNS = [
    "id",
    "text",
    "author_username",
    "author_name",
    "tweet_url",
    "created_at",
    "likes",
    "retweets",
    "impressions",
    "bookmarked_at",
    "notes",
    "is_pinned",
    "tags",
]


def bookmarks_to_csv(bookmarks: list[dict], output: TextIO | None = None) -> str:
    """Convert exported bookmark dicts to CSV.

    Args:
        bookmarks: Records as returned by `BookmarkStore.export()`.
        output: Optional file-like object to write to as well.

    Returns:
        CSV content as a string.
    """
    buf = io.StringIO()
    writer = csv.DictWriter(
        buf, fieldnames=CSV_COLUMNS, quoting=csv.QUOTE_MINIMAL, extrasaction="ignore"
    )
    writer.writeheader()

    for b in bookmarks:
        row = {col: b.get(col) for col in CSV_COLUMNS}
        row["created_at"] = b.get("created_at") or ""
        row["notes"] = b.get("notes") or ""
        row["is_pinned"] = "true" if b.get("is_pinned") else "false"
        row["tags"] = ", ".join(t["name"] for t in b.get("tags") or [])
        writer.writerow(row)

    result = buf.getvalue()
    if output is not None:
        output.write(result)
    return result


def bookmarks_to_json(bookmarks: list[dict], exported_at: datetime | None = None) -> str:
    """The JSON export document; its `bookmarks` list is accepted by import."""
    exported_at = exported_at or datetime.now(timezone.utc)
    document = {
        "exportedAt": exported_at.isoformat(),
        "count": len(bookmarks),
        "bookmarks": bookmarks,
    }
    return json.dumps(document, indent=2, ensure_ascii=False)
