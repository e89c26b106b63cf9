import logging
from typing import Dict, List, Optional
from urllib.parse import urlparse

from feedsync.core.exceptions import StoreError
from feedsync.schemas import (
    ActionResult,
    FeedResponse,
    FeedUpdate,
    GlobalNotificationSettings,
    ItemFilter,
    ItemPage,
    SyncSettings,
)
from feedsync.services.feed_registry import DuplicateFeedError, FeedRegistry
from feedsync.services.item_store import ItemStore
from feedsync.services.preferences import PreferenceStore
from feedsync.services.sync_scheduler import SyncScheduler
from feedsync.services.unread_aggregator import BadgeState, UnreadAggregator

logger = logging.getLogger(__name__)


class FeedService:
    """
    Service layer for user-initiated operations.

    Reads raise StoreError to the caller. Mutations report their outcome as
    an ActionResult with a human-readable message and refresh the unread
    badge whenever read state may have changed.
    """

    def __init__(
        self,
        registry: FeedRegistry,
        store: ItemStore,
        aggregator: UnreadAggregator,
        scheduler: SyncScheduler,
        preferences: PreferenceStore,
    ):
        self.registry = registry
        self.store = store
        self.aggregator = aggregator
        self.scheduler = scheduler
        self.preferences = preferences

    # --- Reads ---

    async def get_items(self, filters: ItemFilter) -> ItemPage:
        return await self.store.query(filters)

    async def count_all(self) -> int:
        return await self.store.count_all()

    async def count_unread(self) -> int:
        return await self.store.count_unread()

    async def get_unread_count_by_feed(self) -> Dict[str, int]:
        return await self.store.group_unread_by_feed()

    async def get_badge(self) -> BadgeState:
        return await self.aggregator.recompute()

    async def list_feeds(self) -> List[FeedResponse]:
        feeds = await self.registry.list_feeds()
        unread = await self.store.group_unread_by_feed()
        return [self._feed_response(feed, unread) for feed in feeds]

    async def get_feed(self, feed_id: str) -> Optional[FeedResponse]:
        feed = await self.registry.get_feed(feed_id)
        if feed is None:
            return None
        return self._feed_response(feed, await self.store.group_unread_by_feed())

    @staticmethod
    def _feed_response(feed, unread: Dict[str, int]) -> FeedResponse:
        return FeedResponse.model_validate(feed).model_copy(update={"unread_count": unread.get(feed.id, 0)})

    # --- Item mutations ---

    async def mark_read(self, ids: List[str]) -> ActionResult:
        try:
            marked = await self.store.mark_read(ids)
            await self.aggregator.recompute()
        except StoreError as e:
            return ActionResult(success=False, message=f"Could not mark items as read: {e}")
        return ActionResult(success=True, message=f"Marked {marked} items as read", data={"marked": marked})

    async def mark_all_read(self) -> ActionResult:
        try:
            marked = await self.store.mark_all_read()
            await self.aggregator.recompute()
        except StoreError as e:
            return ActionResult(success=False, message=f"Could not mark all items as read: {e}")
        return ActionResult(success=True, message=f"Marked {marked} items as read", data={"marked": marked})

    async def toggle_star(self, item_id: str, starred: Optional[bool] = None) -> ActionResult:
        try:
            state = await self.store.set_starred(item_id, starred)
        except StoreError as e:
            return ActionResult(success=False, message=f"Could not update starred flag: {e}")
        if state is None:
            return ActionResult(success=False, message="Item not found")
        return ActionResult(
            success=True,
            message="Item starred" if state else "Item unstarred",
            data={"id": item_id, "is_starred": state},
        )

    async def delete_items(self, ids: List[str]) -> ActionResult:
        try:
            deleted = await self.store.delete(ids)
            await self.aggregator.recompute()
        except StoreError as e:
            return ActionResult(success=False, message=f"Could not delete items: {e}")
        skipped = len(set(ids)) - deleted
        message = f"Deleted {deleted} items"
        if skipped > 0 and len(ids) > 1:
            message += f" ({skipped} starred or missing items kept)"
        return ActionResult(success=True, message=message, data={"deleted": deleted})

    async def delete_all_items(self) -> ActionResult:
        try:
            deleted = await self.store.delete_all()
            await self.aggregator.recompute()
        except StoreError as e:
            return ActionResult(success=False, message=f"Could not delete items: {e}")
        return ActionResult(success=True, message=f"Deleted {deleted} items, starred items kept", data={"deleted": deleted})

    # --- Feed mutations ---

    async def subscribe(self, url: str, title: Optional[str] = None, alias: Optional[str] = None) -> ActionResult:
        """Subscribe to a feed and immediately sync it"""
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            return ActionResult(success=False, message="Invalid URL format: only http and https are supported")

        try:
            feed = await self.registry.add_feed(url, title=(title or "").strip() or parsed.hostname, alias=alias)
        except DuplicateFeedError as e:
            return ActionResult(success=False, message=str(e))
        except StoreError as e:
            return ActionResult(success=False, message=f"Could not subscribe: {e}")

        new_items = 0
        try:
            report = await self.scheduler.refresh(feed.id)
            new_items = report.new_items_count
        except Exception as e:
            # The subscription stands; the next cycle retries the fetch
            logger.error(f"Error syncing new feed {feed.url}: {e}")

        return ActionResult(
            success=True,
            message=f"Subscribed to {feed.title} ({new_items} items)",
            data={"feed_id": feed.id, "new_items": new_items},
        )

    async def update_feed(self, feed_id: str, updates: FeedUpdate) -> ActionResult:
        fields = updates.model_dump(exclude_none=True)
        if not fields:
            return ActionResult(success=False, message="At least one field must be provided")
        if "alias" in fields:
            fields["alias"] = fields["alias"].strip() or None

        try:
            feed = await self.registry.update_feed(feed_id, **fields)
        except StoreError as e:
            return ActionResult(success=False, message=f"Could not update feed: {e}")
        if feed is None:
            return ActionResult(success=False, message="Feed not found")
        return ActionResult(success=True, message="Feed updated", data={"feed_id": feed.id})

    async def unsubscribe(self, feed_id: str) -> ActionResult:
        """Remove the feed and every one of its items, starred included"""
        try:
            async with self.scheduler.exclusive():
                feed = await self.registry.get_feed(feed_id)
                if feed is None:
                    return ActionResult(success=False, message="Feed not found")
                # Items go first so a failure leaves the feed in place for a retry
                deleted = await self.store.delete_by_feed(feed_id, include_starred=True)
                await self.registry.remove_feed(feed_id)
            await self.aggregator.recompute()
        except StoreError as e:
            return ActionResult(success=False, message=f"Could not delete feed: {e}")

        logger.info(f"Unsubscribed from '{feed.title}' ({feed_id}) with {deleted} items")
        return ActionResult(success=True, message=f"Feed deleted ({deleted} items removed)", data={"deleted": deleted})

    async def clear_feed(self, feed_id: str) -> ActionResult:
        """Remove a feed's items, keeping starred ones"""
        try:
            async with self.scheduler.exclusive():
                deleted = await self.store.delete_by_feed(feed_id, include_starred=False)
            await self.aggregator.recompute()
        except StoreError as e:
            return ActionResult(success=False, message=f"Could not clear feed: {e}")
        return ActionResult(success=True, message=f"Feed cleared ({deleted} items removed)", data={"deleted": deleted})

    async def mark_feed_read(self, feed_id: str) -> ActionResult:
        try:
            marked = await self.store.mark_feed_read(feed_id)
            await self.aggregator.recompute()
        except StoreError as e:
            return ActionResult(success=False, message=f"Could not mark feed as read: {e}")
        return ActionResult(success=True, message=f"Marked {marked} items as read", data={"marked": marked})

    async def refresh(self, feed_id: Optional[str] = None) -> ActionResult:
        if feed_id is not None and await self.registry.get_feed(feed_id) is None:
            return ActionResult(success=False, message="Feed not found")
        try:
            report = await self.scheduler.refresh(feed_id)
        except Exception as e:
            logger.error(f"Manual refresh failed: {e}")
            return ActionResult(success=False, message=f"Refresh failed: {e}")
        return ActionResult(
            success=True,
            message=f"Refreshed {len(report.results)} feeds, {report.new_items_count} new items",
            data={"new_items": report.new_items_count, "feeds": report.feeds_with_new_items},
        )

    # --- Settings ---

    async def get_notification_settings(self) -> GlobalNotificationSettings:
        return await self.preferences.get_notification_settings()

    async def update_notification_settings(self, notification_settings: GlobalNotificationSettings) -> ActionResult:
        try:
            await self.preferences.set_notification_settings(notification_settings)
        except StoreError as e:
            return ActionResult(success=False, message=f"Could not save notification settings: {e}")
        return ActionResult(success=True, message="Notification settings saved")

    async def send_test_notification(self) -> ActionResult:
        if not await self.scheduler.dispatcher.send_test():
            return ActionResult(success=False, message="Test notification could not be delivered")
        return ActionResult(success=True, message="Test notification sent")

    async def get_sync_settings(self) -> SyncSettings:
        return SyncSettings(
            sync_interval_minutes=await self.preferences.get_sync_interval_minutes(),
            retention_days=await self.preferences.get_retention_days(),
        )

    async def update_sync_settings(self, sync_settings: SyncSettings) -> ActionResult:
        try:
            await self.preferences.set_sync_interval_minutes(sync_settings.sync_interval_minutes)
            await self.preferences.set_retention_days(sync_settings.retention_days)
        except StoreError as e:
            return ActionResult(success=False, message=f"Could not save sync settings: {e}")
        self.scheduler.reschedule(sync_settings.sync_interval_minutes)
        return ActionResult(success=True, message="Sync settings saved")
