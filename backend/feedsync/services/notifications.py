"""
Notification dispatch for newly synced items.

Decides whether a feed's new items produce notifications (global and per-feed
opt-in, quiet hours, whether the user is already looking at the item list)
and shapes them: one grouped summary, or a single notification for the
newest item.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, time as clock_time
from typing import Awaitable, Callable, List, Optional, Protocol, Union
from urllib.parse import parse_qs, urlencode, urlparse

from feedsync.core.config import settings
from feedsync.models.feed import Feed
from feedsync.schemas import GlobalNotificationSettings, QuietHours
from feedsync.services.preferences import PreferenceStore

logger = logging.getLogger(__name__)

NO_ITEM = "none"
TEST_FEED_ID = "test"
PRIORITY_HIGH = 2
PRIORITY_NORMAL = 1


def _minutes(value: str) -> int:
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


def is_in_quiet_hours(quiet_hours: Optional[QuietHours], now: Union[datetime, clock_time, None] = None) -> bool:
    """
    Check whether `now` falls inside the quiet-hours window.

    The window is [start, end). When start is later than end it wraps
    midnight, e.g. 22:00-08:00 covers 23:00 and 03:00.
    """
    if quiet_hours is None or not quiet_hours.enabled:
        return False
    if now is None:
        now = datetime.now()
    current = now.hour * 60 + now.minute
    start = _minutes(quiet_hours.start)
    end = _minutes(quiet_hours.end)

    if start <= end:
        return start <= current < end
    return current >= start or current < end


@dataclass(frozen=True)
class NotificationId:
    """Routes a notification click back to its feed and item"""
    feed_id: str
    item_id: Optional[str]
    timestamp: int

    def encode(self) -> str:
        return urlencode({
            "feed": self.feed_id,
            "item": self.item_id or NO_ITEM,
            "ts": self.timestamp,
        })

    @classmethod
    def decode(cls, token: str) -> "NotificationId":
        """
        Raises:
            ValueError: If the token was not produced by encode()
        """
        fields = parse_qs(token, keep_blank_values=True, strict_parsing=True)
        try:
            feed_id = fields["feed"][0]
            item_id = fields["item"][0]
            timestamp = int(fields["ts"][0])
        except (KeyError, IndexError) as e:
            raise ValueError(f"Malformed notification id: {token}") from e
        return cls(feed_id=feed_id, item_id=None if item_id == NO_ITEM else item_id, timestamp=timestamp)

    def click_target_url(self, base_url: str = None) -> str:
        base_url = base_url or settings.NOTIFICATION_CLICK_URL
        query = {"feedId": self.feed_id}
        if self.item_id:
            query["itemId"] = self.item_id
        separator = "&" if urlparse(base_url).query else "?"
        return f"{base_url}{separator}{urlencode(query)}"


@dataclass
class Notification:
    id: NotificationId
    title: str
    message: str
    priority: int
    event_time: int


class NotificationSink(Protocol):
    async def emit(self, notification: Notification) -> None:
        ...


class LoggingNotificationSink:
    """Default sink: records notifications in the log"""

    async def emit(self, notification: Notification) -> None:
        logger.info(
            f"Notification [{notification.title}] {notification.message} "
            f"-> {notification.id.click_target_url()}"
        )


def feed_display_name(feed: Feed) -> str:
    return feed.alias or feed.title or urlparse(feed.url).hostname or feed.url


class NotificationDispatcher:
    """Evaluates notification policy for one feed's new items"""

    def __init__(
        self,
        preferences: PreferenceStore,
        sink: Optional[NotificationSink] = None,
        is_viewing_items: Optional[Callable[[], Awaitable[bool]]] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.preferences = preferences
        self.sink = sink or LoggingNotificationSink()
        self.is_viewing_items = is_viewing_items
        self.clock = clock

    async def _user_is_viewing_items(self) -> bool:
        if self.is_viewing_items is None:
            return False
        try:
            return await self.is_viewing_items()
        except Exception as e:
            logger.warning(f"Item list liveness check failed, assuming not viewing: {e}")
            return False

    async def dispatch(self, feed: Feed, items: List[dict]) -> List[Notification]:
        """
        Emit notifications for a feed's newly inserted items.

        Args:
            feed: The feed the items belong to
            items: The new items (dicts with guid, title, published_ts)

        Returns:
            The notifications that were emitted
        """
        if not items:
            return []

        global_settings: GlobalNotificationSettings = await self.preferences.get_notification_settings()
        if not global_settings.enabled or not feed.notifications_enabled:
            return []
        if is_in_quiet_hours(global_settings.quiet_hours, self.clock()):
            logger.info(f"Quiet hours: suppressing notifications for '{feed_display_name(feed)}'")
            return []
        if await self._user_is_viewing_items():
            return []

        newest_first = sorted(items, key=lambda item: item.get("published_ts") or 0, reverse=True)
        to_show = newest_first[:global_settings.max_per_batch]
        title = feed_display_name(feed)
        priority = PRIORITY_HIGH if feed.notification_priority == "high" else PRIORITY_NORMAL
        now_ms = int(time.time() * 1000)

        if global_settings.grouping and len(items) > 1:
            item_id = None
            message = f"{len(items)} new items"
        else:
            # One notification per feed per cycle; ungrouped shows the newest item
            item_id = to_show[0].get("guid")
            message = to_show[0].get("title") or "New item"

        notification = Notification(
            id=NotificationId(feed_id=feed.id, item_id=item_id, timestamp=now_ms),
            title=title,
            message=message,
            priority=priority,
            event_time=now_ms,
        )
        try:
            await self.sink.emit(notification)
        except Exception as e:
            logger.error(f"Failed to create notification for '{title}': {e}")
            return []
        return [notification]

    async def send_test(self) -> bool:
        """Emit a test notification to check the delivery path"""
        now_ms = int(time.time() * 1000)
        notification = Notification(
            id=NotificationId(feed_id=TEST_FEED_ID, item_id=None, timestamp=now_ms),
            title="FeedSync Test Notification",
            message="Notifications are working correctly!",
            priority=PRIORITY_NORMAL,
            event_time=now_ms,
        )
        try:
            await self.sink.emit(notification)
        except Exception as e:
            logger.error(f"Failed to create test notification: {e}")
            return False
        return True
