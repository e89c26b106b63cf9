import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from feedsync.core.config import Settings, settings as default_settings
from feedsync.core.exceptions import FeedParseError
from feedsync.models.feed import Feed
from feedsync.services.connectivity import ConnectivityProbe
from feedsync.services.diff_engine import select_new_items
from feedsync.services.events import EventBus, NEW_ITEMS
from feedsync.services.feed_parser import FeedParser
from feedsync.services.feed_registry import FeedRegistry
from feedsync.services.fetch_client import ConditionalFetchClient
from feedsync.services.item_store import ItemStore
from feedsync.services.notifications import NotificationDispatcher, feed_display_name
from feedsync.services.preferences import PreferenceStore
from feedsync.services.retention import RetentionManager
from feedsync.services.unread_aggregator import UnreadAggregator

logger = logging.getLogger(__name__)

FETCH_JOB_ID = "fetch_feeds"
CHECK_ONLINE_JOB_ID = "check_online"
RETENTION_JOB_ID = "delete_old_items"

PARSE_ERROR = "parse_error"
ERROR = "error"


class SyncState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


@dataclass
class FeedSyncResult:
    feed_id: str
    title: str
    status: str = ""
    new_item_ids: List[str] = field(default_factory=list)
    notifications: int = 0
    error: Optional[str] = None


@dataclass
class SyncReport:
    trigger: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    results: List[FeedSyncResult] = field(default_factory=list)

    @property
    def new_items_count(self) -> int:
        return sum(len(result.new_item_ids) for result in self.results)

    @property
    def feeds_with_new_items(self) -> List[str]:
        return [result.feed_id for result in self.results if result.new_item_ids]


class SyncScheduler:
    """
    Drives feed synchronization.

    Owns the cycle state machine (IDLE -> RUNNING -> IDLE), the pending-fetch
    flag used while offline, and the APScheduler jobs for periodic fetching,
    connectivity polling and retention. A single lock guarantees that at most
    one cycle touches the store at a time.
    """

    def __init__(
        self,
        registry: FeedRegistry,
        store: ItemStore,
        fetch_client: ConditionalFetchClient,
        dispatcher: NotificationDispatcher,
        aggregator: UnreadAggregator,
        retention: RetentionManager,
        preferences: PreferenceStore,
        events: EventBus,
        connectivity: ConnectivityProbe,
        parser: FeedParser = None,
        settings: Settings = None,
        scheduler: AsyncIOScheduler = None,
    ):
        self.registry = registry
        self.store = store
        self.fetch_client = fetch_client
        self.dispatcher = dispatcher
        self.aggregator = aggregator
        self.retention = retention
        self.preferences = preferences
        self.events = events
        self.connectivity = connectivity
        self.parser = parser or FeedParser()
        self.settings = settings or default_settings
        self.scheduler = scheduler or AsyncIOScheduler()

        self.is_running = False
        self.state = SyncState.IDLE
        self.fetch_pending = False
        self.connectivity_poll_active = False
        self._cycle_lock = asyncio.Lock()

    async def start(self):
        """Start the scheduler"""
        if not self.is_running:
            interval = await self.preferences.get_sync_interval_minutes()

            # Schedule feed fetching every N minutes
            self.scheduler.add_job(
                self._periodic_job,
                'interval',
                minutes=interval,
                id=FETCH_JOB_ID,
                replace_existing=True,
            )

            # Schedule retention once a day
            self.scheduler.add_job(
                self.run_retention,
                'interval',
                hours=self.settings.RETENTION_INTERVAL_HOURS,
                id=RETENTION_JOB_ID,
                replace_existing=True,
            )

            self.scheduler.start()
            self.is_running = True
            logger.info(f"Sync Scheduler started. Fetching feeds every {interval} minutes")
            logger.info(f"Retention scheduled every {self.settings.RETENTION_INTERVAL_HOURS} hours")

    def shutdown(self):
        """Shutdown the scheduler"""
        if self.is_running:
            self.scheduler.shutdown()
            self.is_running = False
            logger.info("Sync Scheduler stopped")

    def reschedule(self, interval_minutes: int):
        """Apply a new periodic fetch interval"""
        if self.is_running:
            self.scheduler.reschedule_job(FETCH_JOB_ID, trigger='interval', minutes=interval_minutes)
            logger.info(f"Fetching feeds every {interval_minutes} minutes")

    async def bootstrap(self):
        """Startup sequence: sync if online, recompute counts, run retention"""
        try:
            if await self.connectivity.is_online():
                await self.run_cycle("bootstrap")
            else:
                self._defer_until_online()
            await self.aggregator.recompute()
        except Exception as e:
            logger.error(f"Error in bootstrap: {e}")
        await self.run_retention()

    async def _periodic_job(self):
        try:
            await self.on_periodic_trigger()
        except Exception as e:
            logger.error(f"Error in periodic sync: {e}")

    async def on_periodic_trigger(self) -> Optional[SyncReport]:
        """Timer event: sync now, coalesce into a running cycle, or defer while offline"""
        if self.state == SyncState.RUNNING:
            logger.info("Sync cycle already running, skipping periodic trigger")
            return None

        if not await self.connectivity.is_online():
            self._defer_until_online()
            return None

        return await self.run_cycle("periodic")

    def _defer_until_online(self):
        self.fetch_pending = True
        if self.connectivity_poll_active:
            return
        self.scheduler.add_job(
            self._connectivity_job,
            'interval',
            minutes=self.settings.OFFLINE_POLL_INTERVAL_MINUTES,
            id=CHECK_ONLINE_JOB_ID,
            replace_existing=True,
        )
        self.connectivity_poll_active = True
        logger.info(
            f"Offline, fetch deferred. Checking connectivity every "
            f"{self.settings.OFFLINE_POLL_INTERVAL_MINUTES} minutes"
        )

    def _stop_connectivity_poll(self):
        if not self.connectivity_poll_active:
            return
        try:
            self.scheduler.remove_job(CHECK_ONLINE_JOB_ID)
        except JobLookupError:
            pass
        self.connectivity_poll_active = False

    async def _connectivity_job(self):
        try:
            await self.on_connectivity_poll()
        except Exception as e:
            logger.error(f"Error in deferred sync: {e}")

    async def on_connectivity_poll(self) -> Optional[SyncReport]:
        """Connectivity poll event: once online, stop polling and run the deferred cycle"""
        if not await self.connectivity.is_online():
            return None

        self._stop_connectivity_poll()
        if not self.fetch_pending:
            return None

        self.fetch_pending = False
        logger.info("Back online, running deferred sync cycle")
        return await self.run_cycle("deferred")

    @asynccontextmanager
    async def exclusive(self):
        """Hold off sync cycles while feed-level changes are applied"""
        async with self._cycle_lock:
            yield

    async def refresh(self, feed_id: Optional[str] = None) -> SyncReport:
        """Manual refresh of every feed or a single one; waits for a running cycle"""
        return await self.run_cycle("manual", feed_id=feed_id)

    async def run_retention(self) -> int:
        try:
            return await self.retention.run()
        except Exception as e:
            logger.error(f"Error in retention run: {e}")
            return 0

    async def run_cycle(self, trigger: str, feed_id: Optional[str] = None) -> SyncReport:
        """
        Synchronize feeds in subscription order.

        Failures are isolated per feed. When the cycle is done, a new_items
        event is published if anything was inserted and unread counts are
        recomputed.
        """
        async with self._cycle_lock:
            self.state = SyncState.RUNNING
            report = SyncReport(trigger=trigger, started_at=datetime.now(timezone.utc))
            try:
                feeds = await self.registry.list_feeds()
                if feed_id is not None:
                    feeds = [feed for feed in feeds if feed.id == feed_id]

                logger.info(f"Starting {trigger} sync cycle for {len(feeds)} feeds")

                for index, feed in enumerate(feeds):
                    logger.info(f"Syncing feed {index + 1}/{len(feeds)}: {feed_display_name(feed)} ({feed.url})")
                    try:
                        report.results.append(await self._sync_feed(feed))
                    except Exception as e:
                        logger.error(f"Error syncing feed {feed_display_name(feed)}: {e}")
                        report.results.append(FeedSyncResult(
                            feed_id=feed.id,
                            title=feed_display_name(feed),
                            status=ERROR,
                            error=str(e),
                        ))
                        continue

                report.finished_at = datetime.now(timezone.utc)
                logger.info(f"Sync cycle completed: {report.new_items_count} new items")

                if report.new_items_count:
                    await self.events.publish(NEW_ITEMS, report)
                await self.aggregator.recompute()
                return report
            finally:
                self.state = SyncState.IDLE

    async def _sync_feed(self, feed: Feed) -> FeedSyncResult:
        """Fetch, parse, diff, store and notify for one feed"""
        result = FeedSyncResult(feed_id=feed.id, title=feed_display_name(feed))
        await self.registry.mark_checked(feed.id, datetime.now(timezone.utc))

        fetched = await self.fetch_client.fetch(feed.url, feed.etag, feed.last_modified)
        result.status = fetched.status
        if not fetched.updated:
            result.error = fetched.error
            return result

        # Keep future requests conditional even if this body fails to parse
        if (fetched.etag, fetched.last_modified) != (feed.etag, feed.last_modified):
            await self.registry.save_validators(feed.id, fetched.etag, fetched.last_modified)

        try:
            parsed = await asyncio.to_thread(self.parser.parse, fetched.body)
        except FeedParseError as e:
            logger.warning(f"Feed '{feed_display_name(feed)}' could not be parsed: {e}")
            result.status = PARSE_ERROR
            result.error = str(e)
            return result

        diff = select_new_items(parsed, feed.last_item_ts, self.settings.INITIAL_BASELINE_ITEMS)
        if not diff.items:
            return result

        inserted = await self.store.upsert(diff.items, feed.id)
        # Only advance once the items are durably stored
        await self.registry.commit_watermark(feed.id, diff.watermark)
        result.new_item_ids = inserted
        logger.info(f"Stored {len(inserted)} new items from {feed_display_name(feed)}")

        inserted_ids = set(inserted)
        new_items = list({
            item["guid"]: item for item in diff.items if item["guid"] in inserted_ids
        }.values())
        notifications = await self.dispatcher.dispatch(feed, new_items)
        result.notifications = len(notifications)
        return result
