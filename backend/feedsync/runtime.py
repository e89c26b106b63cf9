"""Wires the sync components together around one session factory."""

from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy.ext.asyncio import async_sessionmaker

from feedsync.core.config import Settings, settings as default_settings
from feedsync.services.connectivity import ConnectivityProbe
from feedsync.services.events import EventBus
from feedsync.services.feed_registry import FeedRegistry
from feedsync.services.feed_service import FeedService
from feedsync.services.fetch_client import ConditionalFetchClient
from feedsync.services.item_store import ItemStore
from feedsync.services.notifications import NotificationDispatcher, NotificationSink
from feedsync.services.preferences import PreferenceStore
from feedsync.services.retention import RetentionManager
from feedsync.services.sync_scheduler import SyncScheduler
from feedsync.services.unread_aggregator import UnreadAggregator


@dataclass
class FeedSyncRuntime:
    events: EventBus
    registry: FeedRegistry
    store: ItemStore
    preferences: PreferenceStore
    aggregator: UnreadAggregator
    retention: RetentionManager
    dispatcher: NotificationDispatcher
    fetch_client: ConditionalFetchClient
    scheduler: SyncScheduler
    service: FeedService

    async def aclose(self) -> None:
        self.scheduler.shutdown()
        await self.fetch_client.aclose()


def build_runtime(
    session_factory: async_sessionmaker,
    settings: Settings = None,
    fetch_client: Optional[ConditionalFetchClient] = None,
    connectivity: Optional[ConnectivityProbe] = None,
    sink: Optional[NotificationSink] = None,
    is_viewing_items: Optional[Callable[[], Awaitable[bool]]] = None,
    scheduler: Optional[AsyncIOScheduler] = None,
) -> FeedSyncRuntime:
    settings = settings or default_settings
    events = EventBus()
    registry = FeedRegistry(session_factory)
    store = ItemStore(session_factory, page_size=settings.PAGE_SIZE)
    preferences = PreferenceStore(session_factory, settings)
    aggregator = UnreadAggregator(store, events)
    retention = RetentionManager(store, preferences, aggregator)
    dispatcher = NotificationDispatcher(preferences, sink=sink, is_viewing_items=is_viewing_items)
    fetch_client = fetch_client or ConditionalFetchClient(timeout=settings.FETCH_TIMEOUT_SECONDS)

    sync_scheduler = SyncScheduler(
        registry=registry,
        store=store,
        fetch_client=fetch_client,
        dispatcher=dispatcher,
        aggregator=aggregator,
        retention=retention,
        preferences=preferences,
        events=events,
        connectivity=connectivity or ConnectivityProbe(),
        settings=settings,
        scheduler=scheduler,
    )
    service = FeedService(registry, store, aggregator, sync_scheduler, preferences)

    return FeedSyncRuntime(
        events=events,
        registry=registry,
        store=store,
        preferences=preferences,
        aggregator=aggregator,
        retention=retention,
        dispatcher=dispatcher,
        fetch_client=fetch_client,
        scheduler=sync_scheduler,
        service=service,
    )
