"""
Selects the genuinely new items of a fetch against the feed's watermark.

The watermark is the publication time (epoch milliseconds) of the newest item
already ingested. Items whose publication date is missing or unparsable
compare as epoch 0: they are never newer than an existing watermark and rank
oldest in a first-sync baseline, so the watermark only ever moves forward.
"""

from dataclasses import dataclass, field
from datetime import datetime
from email.utils import parsedate_to_datetime
from typing import List, Optional

from feedsync.core.config import settings
from feedsync.services.item_store import to_epoch_ms

EPOCH = 0


@dataclass
class DiffResult:
    items: List[dict] = field(default_factory=list)
    watermark: Optional[int] = None

    @property
    def advanced(self) -> bool:
        return bool(self.items)


def parse_pub_date(value: Optional[str]) -> Optional[datetime]:
    """Parse an RFC 822 or ISO 8601 date string, returning None on failure"""
    if not value or not isinstance(value, str):
        return None
    value = value.strip()
    try:
        return parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        pass
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def published_ts(item: dict) -> Optional[int]:
    """Publication time of a parsed item in epoch milliseconds, or None if unknown"""
    published = item.get("published")
    if not isinstance(published, datetime):
        published = parse_pub_date(item.get("pub_date"))
    if published is None:
        return None
    try:
        return to_epoch_ms(published)
    except (OverflowError, OSError, ValueError):
        return None


def select_new_items(parsed_items: List[dict], watermark: Optional[int], baseline_limit: int = None) -> DiffResult:
    """
    Filter parsed items down to the ones that are new for the feed.

    Args:
        parsed_items: Items from the parser, in any order
        watermark: The feed's current watermark, or None before the first sync
        baseline_limit: Items kept on the first sync (default from settings)

    Returns:
        DiffResult with the kept items (each annotated with published_ts) and
        the watermark to commit once they are stored
    """
    if baseline_limit is None:
        baseline_limit = settings.INITIAL_BASELINE_ITEMS

    annotated = [dict(item, published_ts=published_ts(item)) for item in parsed_items]

    def comparable(item: dict) -> int:
        ts = item["published_ts"]
        return EPOCH if ts is None else ts

    if watermark is None:
        # sorted() is stable, so equal timestamps keep document order
        kept = sorted(annotated, key=comparable, reverse=True)[:baseline_limit]
    else:
        kept = [item for item in annotated if comparable(item) > watermark]

    if not kept:
        return DiffResult(items=[], watermark=watermark)

    return DiffResult(items=kept, watermark=max(comparable(item) for item in kept))
