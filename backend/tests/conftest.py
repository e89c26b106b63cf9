"""Shared test fixtures for FeedSync tests."""

from datetime import datetime, timedelta, timezone
from email.utils import format_datetime
from typing import Dict, List, Optional, Tuple

import httpx
import pytest
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from feedsync.core.config import Settings
from feedsync.core.database import create_engine, create_session_factory, init_models
from feedsync.runtime import build_runtime
from feedsync.services.fetch_client import ConditionalFetchClient
from feedsync.services.item_store import ItemStore
from feedsync.services.preferences import PreferenceStore


SAMPLE_RSS_XML = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0" xmlns:media="http://search.yahoo.com/mrss/">
  <channel>
    <title>Test Feed</title>
    <link>https://example.com</link>
    <description>A test RSS feed</description>
    <item>
      <title>First Article</title>
      <link>https://example.com/article-1</link>
      <guid>article-1</guid>
      <description>Description of the first article</description>
      <pubDate>Thu, 13 Feb 2026 10:00:00 GMT</pubDate>
      <media:thumbnail url="https://example.com/thumb-1.jpg" width="120" height="80"/>
    </item>
    <item>
      <title>Second Article</title>
      <link>https://example.com/article-2</link>
      <guid>article-2</guid>
      <description>Description of the second article</description>
      <pubDate>Thu, 13 Feb 2026 09:00:00 GMT</pubDate>
    </item>
  </channel>
</rss>"""

SAMPLE_ATOM_XML = """<?xml version="1.0" encoding="UTF-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Test Atom Feed</title>
  <link href="https://example.com"/>
  <subtitle>A test Atom feed</subtitle>
  <entry>
    <title>Atom Entry 1</title>
    <link rel="alternate" href="https://example.com/entry-1"/>
    <id>urn:uuid:entry-1</id>
    <summary>Summary of entry 1</summary>
    <content type="html">&lt;p&gt;Full content&lt;/p&gt;</content>
    <updated>2026-02-13T10:00:00Z</updated>
  </entry>
</feed>"""

SAMPLE_NOT_A_FEED = "this is plain text, not a feed"


def build_rss(entries: List[Tuple[str, str, Optional[datetime]]], title: str = "Generated Feed") -> str:
    """Render (guid, title, published) tuples as an RSS 2.0 document"""
    rendered = []
    for guid, item_title, published in entries:
        pub_date = f"<pubDate>{format_datetime(published, usegmt=True)}</pubDate>" if published else ""
        rendered.append(
            f"<item><title>{item_title}</title><link>https://example.com/{guid}</link>"
            f"<guid>{guid}</guid>{pub_date}</item>"
        )
    return (
        '<?xml version="1.0" encoding="UTF-8"?><rss version="2.0"><channel>'
        f"<title>{title}</title><link>https://example.com</link>"
        f"{''.join(rendered)}</channel></rss>"
    )


def recent_entries(prefix: str, count: int, newest: datetime = None, step: timedelta = timedelta(minutes=10)):
    """Entries newest first, `step` apart"""
    newest = newest or datetime.now(timezone.utc).replace(microsecond=0) - timedelta(hours=1)
    return [(f"{prefix}-{i}", f"{prefix} item {i}", newest - i * step) for i in range(count)]


class FeedServer:
    """In-memory HTTP origin for feeds, served through httpx.MockTransport"""

    def __init__(self):
        self.routes: Dict[str, tuple] = {}
        self.requests: List[httpx.Request] = []

    def serve(self, url: str, body: str = None, status_code: int = 200, headers: dict = None):
        self.routes[url] = (status_code, body, headers or {})

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get(str(request.url))
        if route is None:
            return httpx.Response(404, text="Not Found")
        status_code, body, headers = route
        return httpx.Response(status_code, content=(body or "").encode("utf-8"), headers=headers)

    def requests_for(self, url: str) -> List[httpx.Request]:
        return [request for request in self.requests if str(request.url) == url]


class FakeConnectivity:
    def __init__(self, online: bool = True):
        self.online = online
        self.checks = 0

    async def is_online(self) -> bool:
        self.checks += 1
        return self.online


class RecordingSink:
    def __init__(self):
        self.notifications = []

    async def emit(self, notification):
        self.notifications.append(notification)


@pytest.fixture
def test_settings():
    return Settings(DATABASE_URL="sqlite+aiosqlite://", _env_file=None)


@pytest.fixture
async def engine(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'feedsync.db'}")
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def store(session_factory):
    return ItemStore(session_factory, page_size=20)


@pytest.fixture
def preferences(session_factory, test_settings):
    return PreferenceStore(session_factory, test_settings)


@pytest.fixture
def feed_server():
    return FeedServer()


@pytest.fixture
async def http_client(feed_server):
    client = httpx.AsyncClient(transport=httpx.MockTransport(feed_server.handler))
    yield client
    await client.aclose()


@pytest.fixture
def connectivity():
    return FakeConnectivity()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
async def runtime(session_factory, test_settings, http_client, connectivity, sink):
    runtime = build_runtime(
        session_factory,
        settings=test_settings,
        fetch_client=ConditionalFetchClient(client=http_client),
        connectivity=connectivity,
        sink=sink,
        scheduler=AsyncIOScheduler(),
    )
    yield runtime
    await runtime.aclose()


def make_item(guid: str, published_ts: Optional[int], title: str = None) -> dict:
    return {
        "guid": guid,
        "title": title or f"Item {guid}",
        "link": f"https://example.com/{guid}",
        "description": None,
        "content": None,
        "media": None,
        "pub_date": None,
        "published_ts": published_ts,
    }
