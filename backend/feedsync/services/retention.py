import logging
import time
from typing import Optional

from feedsync.services.item_store import ItemStore
from feedsync.services.preferences import PreferenceStore
from feedsync.services.unread_aggregator import UnreadAggregator

logger = logging.getLogger(__name__)

DAY_MS = 24 * 60 * 60 * 1000


class RetentionManager:
    """Evicts non-starred items older than the configured retention period"""

    def __init__(self, store: ItemStore, preferences: PreferenceStore, aggregator: Optional[UnreadAggregator] = None):
        self.store = store
        self.preferences = preferences
        self.aggregator = aggregator

    async def threshold(self, now_ms: int = None) -> int:
        days = await self.preferences.get_retention_days()
        if now_ms is None:
            now_ms = int(time.time() * 1000)
        return now_ms - days * DAY_MS

    async def run(self, now_ms: int = None) -> int:
        """
        Delete expired items.

        Returns:
            Number of items deleted
        """
        threshold = await self.threshold(now_ms)
        deleted = await self.store.delete_expired(threshold)
        logger.info(f"Retention removed {deleted} items older than {threshold}")

        if deleted and self.aggregator is not None:
            await self.aggregator.recompute()
        return deleted
