"""End-to-end tests for the sync cycle and its scheduling."""

import asyncio
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from feedsync.core.exceptions import StoreError
from feedsync.runtime import build_runtime
from feedsync.schemas import ItemFilter
from feedsync.services.events import NEW_ITEMS, UNREAD_COUNT
from feedsync.services.fetch_client import ConditionalFetchClient, FAILED, NOT_MODIFIED, UPDATED
from feedsync.services.item_store import to_epoch_ms
from feedsync.services.sync_scheduler import (
    CHECK_ONLINE_JOB_ID,
    ERROR,
    FETCH_JOB_ID,
    PARSE_ERROR,
    RETENTION_JOB_ID,
    SyncScheduler,
    SyncState,
)

from conftest import SAMPLE_NOT_A_FEED, build_rss, recent_entries

FEED_A = "https://a.example.com/feed.xml"
FEED_B = "https://b.example.com/feed.xml"


async def subscribe(runtime, url, title="Feed", notifications=False):
    feed = await runtime.registry.add_feed(url, title=title)
    if notifications:
        await runtime.registry.update_feed(feed.id, notifications_enabled=True)
    return feed


class TestSyncCycle:
    async def test_first_sync_keeps_fifty_newest(self, runtime, feed_server):
        entries = recent_entries("a", 75)
        feed_server.serve(FEED_A, build_rss(entries))
        feed = await subscribe(runtime, FEED_A)

        report = await runtime.scheduler.refresh()

        assert report.new_items_count == 50
        assert await runtime.store.count_all() == 50
        stored = {item.id for item in (await runtime.store.query(ItemFilter(feed_id=feed.id))).items}
        assert stored == {f"a-{i}" for i in range(50)}
        refreshed = await runtime.registry.get_feed(feed.id)
        assert refreshed.last_item_ts == to_epoch_ms(entries[0][2])

    async def test_not_modified_leaves_store_untouched(self, runtime, feed_server, sink):
        feed_server.serve(FEED_A, build_rss(recent_entries("a", 3)), headers={"ETag": '"v1"'})
        feed = await subscribe(runtime, FEED_A, notifications=True)
        await runtime.scheduler.refresh()
        sink.notifications.clear()
        watermark = (await runtime.registry.get_feed(feed.id)).last_item_ts

        feed_server.serve(FEED_A, status_code=304)
        report = await runtime.scheduler.refresh()

        assert report.results[0].status == NOT_MODIFIED
        assert feed_server.requests_for(FEED_A)[-1].headers["If-None-Match"] == '"v1"'
        assert await runtime.store.count_all() == 3
        assert sink.notifications == []
        refreshed = await runtime.registry.get_feed(feed.id)
        assert refreshed.last_item_ts == watermark
        assert refreshed.last_checked is not None

    async def test_grouped_notifications_per_feed(self, runtime, feed_server, sink):
        old_a = recent_entries("a", 2, step=timedelta(hours=1))
        old_b = recent_entries("b", 2, step=timedelta(hours=1))
        feed_server.serve(FEED_A, build_rss(old_a))
        feed_server.serve(FEED_B, build_rss(old_b))
        await subscribe(runtime, FEED_A, title="Feed A", notifications=True)
        await subscribe(runtime, FEED_B, title="Feed B", notifications=True)
        await runtime.scheduler.refresh()
        sink.notifications.clear()

        newest = old_a[0][2] + timedelta(minutes=30)
        feed_server.serve(FEED_A, build_rss(recent_entries("a-new", 3, newest=newest) + old_a))
        feed_server.serve(FEED_B, build_rss(recent_entries("b-new", 3, newest=newest) + old_b))
        report = await runtime.scheduler.refresh()

        assert report.new_items_count == 6
        assert [(n.title, n.message) for n in sink.notifications] == [
            ("Feed A", "3 new items"),
            ("Feed B", "3 new items"),
        ]

    async def test_failing_feed_does_not_stop_the_cycle(self, runtime, feed_server):
        feed_server.serve(FEED_A, "down", status_code=503)
        feed_server.serve(FEED_B, build_rss(recent_entries("b", 2)))
        await subscribe(runtime, FEED_A)
        await subscribe(runtime, FEED_B)

        report = await runtime.scheduler.refresh()

        assert [result.status for result in report.results] == [FAILED, UPDATED]
        assert await runtime.store.count_all() == 2

    async def test_parse_failure_keeps_validators(self, runtime, feed_server):
        feed_server.serve(FEED_A, SAMPLE_NOT_A_FEED, headers={"ETag": '"broken"'})
        feed = await subscribe(runtime, FEED_A)

        report = await runtime.scheduler.refresh()

        assert report.results[0].status == PARSE_ERROR
        refreshed = await runtime.registry.get_feed(feed.id)
        assert refreshed.etag == '"broken"'
        assert refreshed.last_item_ts is None
        assert await runtime.store.count_all() == 0

    async def test_store_failure_does_not_advance_watermark(self, runtime, feed_server, monkeypatch):
        feed_server.serve(FEED_A, build_rss(recent_entries("a", 3)))
        feed = await subscribe(runtime, FEED_A)

        async def failing_upsert(items, feed_id):
            raise StoreError("Failed to upsert items")

        monkeypatch.setattr(runtime.store, "upsert", failing_upsert)
        report = await runtime.scheduler.refresh()

        assert report.results[0].status == ERROR
        assert (await runtime.registry.get_feed(feed.id)).last_item_ts is None

        monkeypatch.undo()
        report = await runtime.scheduler.refresh()

        assert report.new_items_count == 3

    async def test_refresh_single_feed(self, runtime, feed_server):
        feed_server.serve(FEED_A, build_rss(recent_entries("a", 1)))
        feed_server.serve(FEED_B, build_rss(recent_entries("b", 1)))
        await subscribe(runtime, FEED_A)
        feed_b = await subscribe(runtime, FEED_B)

        report = await runtime.scheduler.refresh(feed_b.id)

        assert [result.feed_id for result in report.results] == [feed_b.id]
        assert feed_server.requests_for(FEED_A) == []

    async def test_unsubscribe_keeps_feed_when_item_delete_fails(self, runtime, feed_server, monkeypatch):
        feed_server.serve(FEED_A, build_rss(recent_entries("a", 3)))
        feed = await subscribe(runtime, FEED_A)
        await runtime.scheduler.refresh()

        async def broken_delete(feed_id, include_starred=False):
            raise StoreError("Failed to delete feed items")

        monkeypatch.setattr(runtime.store, "delete_by_feed", broken_delete)

        result = await runtime.service.unsubscribe(feed.id)

        assert result.success is False
        assert await runtime.registry.get_feed(feed.id) is not None
        assert await runtime.store.count_all() == 3

        monkeypatch.undo()
        retry = await runtime.service.unsubscribe(feed.id)

        assert retry.success is True
        assert retry.data == {"deleted": 3}
        assert await runtime.registry.list_feeds() == []
        assert await runtime.store.count_all() == 0

    async def test_events_published_after_cycle(self, runtime, feed_server):
        feed_server.serve(FEED_A, build_rss(recent_entries("a", 2)))
        await subscribe(runtime, FEED_A)
        received = {}

        def remember(name):
            async def listener(payload):
                received[name] = payload
            return listener

        runtime.events.subscribe(NEW_ITEMS, remember(NEW_ITEMS))
        runtime.events.subscribe(UNREAD_COUNT, remember(UNREAD_COUNT))
        await runtime.scheduler.refresh()

        assert received[NEW_ITEMS].new_items_count == 2
        assert received[UNREAD_COUNT].count == 2
        assert received[UNREAD_COUNT].text == "2"
        assert runtime.scheduler.state == SyncState.IDLE


class TestTriggers:
    async def test_offline_trigger_defers_and_polls(self, runtime, feed_server, connectivity):
        feed_server.serve(FEED_A, build_rss(recent_entries("a", 2)))
        await subscribe(runtime, FEED_A)
        scheduler = runtime.scheduler
        connectivity.online = False

        assert await scheduler.on_periodic_trigger() is None
        assert await scheduler.on_periodic_trigger() is None

        assert scheduler.fetch_pending
        assert scheduler.connectivity_poll_active
        assert scheduler.scheduler.get_job(CHECK_ONLINE_JOB_ID) is not None
        assert feed_server.requests == []

        assert await scheduler.on_connectivity_poll() is None
        assert scheduler.connectivity_poll_active

        connectivity.online = True
        report = await scheduler.on_connectivity_poll()

        assert report.trigger == "deferred"
        assert report.new_items_count == 2
        assert not scheduler.fetch_pending
        assert not scheduler.connectivity_poll_active
        assert scheduler.scheduler.get_job(CHECK_ONLINE_JOB_ID) is None

    async def test_online_trigger_runs_cycle(self, runtime, feed_server):
        feed_server.serve(FEED_A, build_rss(recent_entries("a", 1)))
        await subscribe(runtime, FEED_A)

        report = await runtime.scheduler.on_periodic_trigger()

        assert report.trigger == "periodic"
        assert report.new_items_count == 1

    async def test_periodic_trigger_skipped_while_cycle_runs(self, session_factory, test_settings, connectivity, sink):
        gate = asyncio.Event()
        entered = asyncio.Event()

        async def slow_handler(request):
            entered.set()
            await gate.wait()
            return httpx.Response(200, content=build_rss(recent_entries("a", 1)).encode("utf-8"))

        async with httpx.AsyncClient(transport=httpx.MockTransport(slow_handler)) as http_client:
            runtime = build_runtime(
                session_factory,
                settings=test_settings,
                fetch_client=ConditionalFetchClient(client=http_client),
                connectivity=connectivity,
                sink=sink,
                scheduler=AsyncIOScheduler(),
            )
            await subscribe(runtime, FEED_A)

            running = asyncio.create_task(runtime.scheduler.refresh())
            await entered.wait()
            assert runtime.scheduler.state == SyncState.RUNNING
            assert await runtime.scheduler.on_periodic_trigger() is None

            gate.set()
            report = await running

        assert report.new_items_count == 1
        assert await runtime.store.count_all() == 1

    async def test_unsubscribe_waits_for_running_cycle(self, session_factory, test_settings, connectivity, sink):
        gate = asyncio.Event()
        entered = asyncio.Event()

        async def slow_handler(request):
            entered.set()
            await gate.wait()
            return httpx.Response(200, content=build_rss(recent_entries("a", 3)).encode("utf-8"))

        async with httpx.AsyncClient(transport=httpx.MockTransport(slow_handler)) as http_client:
            runtime = build_runtime(
                session_factory,
                settings=test_settings,
                fetch_client=ConditionalFetchClient(client=http_client),
                connectivity=connectivity,
                sink=sink,
                scheduler=AsyncIOScheduler(),
            )
            feed = await subscribe(runtime, FEED_A)

            running = asyncio.create_task(runtime.scheduler.refresh())
            await entered.wait()
            removing = asyncio.create_task(runtime.service.unsubscribe(feed.id))
            await asyncio.sleep(0)
            assert not removing.done()

            gate.set()
            await running
            result = await removing

        assert result.success is True
        assert await runtime.store.count_all() == 0
        assert await runtime.registry.list_feeds() == []
        assert await runtime.store.group_unread_by_feed() == {}

    async def test_manual_refreshes_are_serialized(self, runtime, feed_server):
        feed_server.serve(FEED_A, build_rss(recent_entries("a", 5)))
        await subscribe(runtime, FEED_A)

        first, second = await asyncio.gather(runtime.scheduler.refresh(), runtime.scheduler.refresh())

        assert first.new_items_count + second.new_items_count == 5
        assert await runtime.store.count_all() == 5

    async def test_bootstrap_offline_defers_cycle(self, runtime, feed_server, connectivity):
        await subscribe(runtime, FEED_A)
        connectivity.online = False

        await runtime.scheduler.bootstrap()

        assert runtime.scheduler.fetch_pending
        assert feed_server.requests == []


class TestScheduling:
    async def test_start_registers_jobs_and_reschedule(self, runtime, preferences):
        await preferences.set_sync_interval_minutes(15)
        scheduler = runtime.scheduler

        await scheduler.start()
        try:
            fetch_job = scheduler.scheduler.get_job(FETCH_JOB_ID)
            assert fetch_job.trigger.interval == timedelta(minutes=15)
            assert scheduler.scheduler.get_job(RETENTION_JOB_ID).trigger.interval == timedelta(hours=24)

            scheduler.reschedule(60)
            assert scheduler.scheduler.get_job(FETCH_JOB_ID).trigger.interval == timedelta(minutes=60)
        finally:
            scheduler.shutdown()

        assert not scheduler.is_running


async def test_scheduler_starts_idle(runtime):
    assert isinstance(runtime.scheduler, SyncScheduler)
    assert runtime.scheduler.state == SyncState.IDLE
    assert not runtime.scheduler.fetch_pending


@pytest.mark.parametrize("days_old, expected_deleted", [(40, 1), (5, 0)])
async def test_run_retention(runtime, days_old, expected_deleted):
    now_ms = to_epoch_ms(datetime.now(timezone.utc))
    await runtime.store.upsert([{"guid": "old", "title": "old", "published_ts": now_ms - days_old * 86_400_000}], "feed-a")

    assert await runtime.scheduler.run_retention() == expected_deleted
