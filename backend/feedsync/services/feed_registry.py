"""
Feed registry: the subscribed feed list in subscription order, with the
per-feed sync state (watermark, validators, last check) and notification policy.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from feedsync.core.exceptions import StoreError
from feedsync.models.feed import Feed

logger = logging.getLogger(__name__)


class DuplicateFeedError(ValueError):
    """Raised when subscribing to a URL that is already subscribed"""


class FeedRegistry:
    """Persistence for Feed records"""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    @asynccontextmanager
    async def _transaction(self, action: str):
        async with self.session_factory() as db:
            try:
                yield db
                await db.commit()
            except IntegrityError:
                await db.rollback()
                raise
            except SQLAlchemyError as e:
                await db.rollback()
                logger.error(f"Feed registry failed to {action}: {e}")
                raise StoreError(f"Failed to {action}") from e

    async def list_feeds(self) -> List[Feed]:
        """Return all feeds in subscription order"""
        async with self._transaction("list feeds") as db:
            result = await db.execute(
                select(Feed).order_by(Feed.position.asc(), Feed.created_at.asc())
            )
            return list(result.scalars().all())

    async def get_feed(self, feed_id: str) -> Optional[Feed]:
        async with self._transaction("get feed") as db:
            return await db.get(Feed, feed_id)

    async def add_feed(self, url: str, title: str, alias: Optional[str] = None) -> Feed:
        """
        Subscribe to a feed URL, appending it to the end of the feed list.

        Raises:
            DuplicateFeedError: If the URL is already subscribed
        """
        try:
            async with self._transaction("add feed") as db:
                existing = await db.execute(select(Feed).where(Feed.url == url))
                if existing.scalar_one_or_none():
                    raise DuplicateFeedError("Already subscribed to this feed")

                last_position = await db.scalar(select(func.max(Feed.position)))
                feed = Feed(
                    url=url,
                    title=title,
                    alias=alias or None,
                    position=(last_position + 1) if last_position is not None else 0,
                )
                db.add(feed)
        except IntegrityError as e:
            raise DuplicateFeedError("Already subscribed to this feed") from e

        logger.info(f"Subscribed to feed '{feed.title}' ({feed.url}) as {feed.id}")
        return feed

    async def remove_feed(self, feed_id: str) -> Optional[Feed]:
        """Delete the feed record; returns the removed feed or None"""
        async with self._transaction("remove feed") as db:
            feed = await db.get(Feed, feed_id)
            if feed is None:
                return None
            await db.delete(feed)
            return feed

    async def update_feed(self, feed_id: str, **fields) -> Optional[Feed]:
        """Apply user-owned field updates (alias, notification policy)"""
        async with self._transaction("update feed") as db:
            feed = await db.get(Feed, feed_id)
            if feed is None:
                return None
            for field, value in fields.items():
                setattr(feed, field, value)
            return feed

    async def mark_checked(self, feed_id: str, checked_at: datetime) -> None:
        async with self._transaction("record feed check") as db:
            feed = await db.get(Feed, feed_id)
            if feed is not None:
                feed.last_checked = checked_at

    async def save_validators(self, feed_id: str, etag: Optional[str], last_modified: Optional[str]) -> None:
        """Persist the HTTP validators captured from a successful response"""
        async with self._transaction("save feed validators") as db:
            feed = await db.get(Feed, feed_id)
            if feed is not None:
                feed.etag = etag
                feed.last_modified = last_modified

    async def commit_watermark(self, feed_id: str, watermark: int) -> None:
        """Advance the feed's watermark; call only after its items are stored"""
        async with self._transaction("commit feed watermark") as db:
            feed = await db.get(Feed, feed_id)
            if feed is not None:
                feed.last_item_ts = watermark
