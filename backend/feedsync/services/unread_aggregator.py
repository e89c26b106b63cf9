import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

from feedsync.services.events import EventBus, UNREAD_COUNT
from feedsync.services.item_store import ItemStore

logger = logging.getLogger(__name__)

BADGE_COLOR = "blue"


@dataclass
class BadgeState:
    """Derived unread state; always recoverable from the item store"""
    count: int = 0
    by_feed: Dict[str, int] = field(default_factory=dict)

    @property
    def text(self) -> str:
        return str(self.count) if self.count else ""

    @property
    def color(self) -> str:
        return BADGE_COLOR


class UnreadAggregator:
    """Recomputes unread counts after mutations and publishes them"""

    def __init__(self, store: ItemStore, events: Optional[EventBus] = None):
        self.store = store
        self.events = events
        self.latest = BadgeState()

    async def recompute(self) -> BadgeState:
        count = await self.store.count_unread()
        by_feed = await self.store.group_unread_by_feed()
        self.latest = BadgeState(count=count, by_feed=by_feed)

        if self.events is not None:
            await self.events.publish(UNREAD_COUNT, self.latest)

        logger.debug(f"Unread count recomputed: {count}")
        return self.latest
