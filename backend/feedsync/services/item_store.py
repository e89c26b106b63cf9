"""
Item store for feed items.

Handles durable, indexed storage of items: idempotent upserts keyed by guid,
recency-ordered paginated reads, read/star status updates and the deletion
rules that protect starred items.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select, update, delete, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from feedsync.core.config import settings
from feedsync.core.exceptions import StoreError
from feedsync.models.item import Item
from feedsync.schemas import ItemFilter, ItemPage, ItemResponse

logger = logging.getLogger(__name__)

# Fields refreshed when a guid is delivered again; status fields are never touched
CONTENT_FIELDS = ("title", "link", "description", "content", "media", "pub_date", "date_ts")

# Rows deleted per statement while walking the ingestion index
RETENTION_CHUNK_SIZE = 500


def to_epoch_ms(value: datetime) -> int:
    """Convert a datetime to epoch milliseconds, assuming UTC for naive values"""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


class ItemStore:
    """Indexed item storage backed by an async SQLAlchemy session factory"""

    def __init__(self, session_factory: async_sessionmaker, page_size: int = None):
        self.session_factory = session_factory
        self.page_size = page_size or settings.PAGE_SIZE

    @asynccontextmanager
    async def _transaction(self, action: str):
        """
        Run one store operation in its own transaction.

        Any storage fault rolls the transaction back and surfaces as
        StoreError so unrelated items are never affected.
        """
        async with self.session_factory() as db:
            try:
                yield db
                await db.commit()
            except SQLAlchemyError as e:
                await db.rollback()
                logger.error(f"Item store failed to {action}: {e}")
                raise StoreError(f"Failed to {action}") from e

    async def upsert(self, items: List[dict], feed_id: str) -> List[str]:
        """
        Insert new items and refresh the content of known ones.

        Args:
            items: Parsed item dicts (guid, title, link, description, content,
                   media, pub_date and optionally published_ts)
            feed_id: Owning feed id for newly inserted items

        Returns:
            Guids that were inserted for the first time, in input order
        """
        now = datetime.now(timezone.utc)
        now_ms = to_epoch_ms(now)

        # Collapse duplicate guids within the batch, last occurrence wins
        by_guid: Dict[str, dict] = {}
        for item_data in items:
            guid = item_data.get("guid")
            if not guid:
                continue
            by_guid[guid] = item_data

        if not by_guid:
            return []

        inserted: List[str] = []
        async with self._transaction("upsert items") as db:
            result = await db.execute(
                select(Item).where(Item.id.in_(list(by_guid)))
            )
            existing = {item.id: item for item in result.scalars().all()}

            for index, (guid, item_data) in enumerate(by_guid.items()):
                # Undated items keep batch order and never share a sort timestamp
                values = self._content_values(item_data, fallback_ts=now_ms - index)
                current = existing.get(guid)
                if current is not None:
                    if item_data.get("published_ts") is None:
                        values.pop("date_ts")
                    for field, value in values.items():
                        setattr(current, field, value)
                    continue

                db.add(Item(
                    id=guid,
                    feed_id=feed_id,
                    created_at=now,
                    is_read=False,
                    is_starred=False,
                    **values,
                ))
                inserted.append(guid)

        logger.info(
            f"Upserted {len(by_guid)} items for feed {feed_id} "
            f"({len(inserted)} new, {len(by_guid) - len(inserted)} refreshed)"
        )
        return inserted

    @staticmethod
    def _content_values(item_data: dict, fallback_ts: int) -> dict:
        published_ts = item_data.get("published_ts")
        return {
            "title": item_data.get("title"),
            "link": item_data.get("link"),
            "description": item_data.get("description"),
            "content": item_data.get("content"),
            "media": item_data.get("media"),
            "pub_date": item_data.get("pub_date"),
            # Undated items sort by ingestion time
            "date_ts": published_ts if published_ts is not None else fallback_ts,
        }

    async def query(self, filters: ItemFilter) -> ItemPage:
        """
        Answer one of the three item query shapes.

        The returned total is always the global item count so the caller can
        show "items: N" independently of the active filter.
        """
        async with self._transaction("query items") as db:
            total = await db.scalar(select(func.count()).select_from(Item)) or 0

            if filters.id:
                item = await db.get(Item, filters.id)
                rows = [item] if item else []
                return ItemPage(items=self._to_responses(rows), total=total)

            if filters.feed_id:
                result = await db.execute(
                    select(Item)
                    .where(Item.feed_id == filters.feed_id)
                    .order_by(Item.date_ts.desc(), Item.id.desc())
                )
                return ItemPage(items=self._to_responses(result.scalars().all()), total=total)

            stmt = select(Item)
            if filters.before is not None:
                stmt = stmt.where(Item.date_ts < filters.before)
            if filters.unread_only:
                stmt = stmt.where(Item.is_read == False)
            if filters.starred_only:
                stmt = stmt.where(Item.is_starred == True)
            stmt = stmt.order_by(Item.date_ts.desc(), Item.id.desc()).limit(self.page_size)

            result = await db.execute(stmt)
            rows = result.scalars().all()

        next_cursor = rows[-1].date_ts if len(rows) == self.page_size else None
        return ItemPage(items=self._to_responses(rows), total=total, next_cursor=next_cursor)

    @staticmethod
    def _to_responses(rows: Iterable[Item]) -> List[ItemResponse]:
        return [ItemResponse.model_validate(row) for row in rows]

    async def get_item(self, item_id: str) -> Optional[ItemResponse]:
        async with self._transaction("get item") as db:
            item = await db.get(Item, item_id)
            return ItemResponse.model_validate(item) if item else None

    async def count_all(self) -> int:
        async with self._transaction("count items") as db:
            return await db.scalar(select(func.count()).select_from(Item)) or 0

    async def count_unread(self) -> int:
        async with self._transaction("count unread items") as db:
            return await db.scalar(
                select(func.count()).select_from(Item).where(Item.is_read == False)
            ) or 0

    async def group_unread_by_feed(self) -> Dict[str, int]:
        """Map feed id to its unread item count"""
        async with self._transaction("group unread items") as db:
            result = await db.execute(
                select(Item.feed_id, func.count())
                .where(Item.is_read == False)
                .group_by(Item.feed_id)
            )
            return {feed_id: count for feed_id, count in result.all()}

    async def mark_read(self, ids: List[str]) -> int:
        """Mark the given items as read; unknown ids are ignored"""
        if not ids:
            return 0
        async with self._transaction("mark items as read") as db:
            result = await db.execute(
                update(Item)
                .where(Item.id.in_(ids), Item.is_read == False)
                .values(is_read=True)
            )
            return result.rowcount

    async def mark_feed_read(self, feed_id: str) -> int:
        async with self._transaction("mark feed as read") as db:
            result = await db.execute(
                update(Item)
                .where(Item.feed_id == feed_id, Item.is_read == False)
                .values(is_read=True)
            )
            return result.rowcount

    async def mark_all_read(self) -> int:
        async with self._transaction("mark all items as read") as db:
            result = await db.execute(
                update(Item).where(Item.is_read == False).values(is_read=True)
            )
            return result.rowcount

    async def set_starred(self, item_id: str, starred: Optional[bool] = None) -> Optional[bool]:
        """
        Set or toggle an item's starred flag.

        Returns:
            The new starred state, or None if the item does not exist
        """
        async with self._transaction("update starred flag") as db:
            item = await db.get(Item, item_id)
            if item is None:
                return None
            item.is_starred = (not item.is_starred) if starred is None else starred
            return item.is_starred

    async def delete(self, ids: List[str]) -> int:
        """
        Delete items by id.

        A single id is a point delete. When two or more ids are given,
        starred items are silently kept.
        """
        if not ids:
            return 0
        stmt = delete(Item).where(Item.id.in_(ids))
        if len(ids) > 1:
            stmt = stmt.where(Item.is_starred == False)
        async with self._transaction("delete items") as db:
            result = await db.execute(stmt)
            return result.rowcount

    async def delete_all(self) -> int:
        """Delete every item except starred ones"""
        async with self._transaction("delete all items") as db:
            result = await db.execute(delete(Item).where(Item.is_starred == False))
            return result.rowcount

    async def delete_by_feed(self, feed_id: str, include_starred: bool = False) -> int:
        stmt = delete(Item).where(Item.feed_id == feed_id)
        if not include_starred:
            stmt = stmt.where(Item.is_starred == False)
        async with self._transaction("delete feed items") as db:
            result = await db.execute(stmt)
            return result.rowcount

    async def delete_expired(self, threshold_ts: int) -> int:
        """
        Delete non-starred items whose sort timestamp is older than the threshold.

        Candidates are walked in ingestion order and removed in chunks.
        """
        deleted = 0
        async with self._transaction("delete expired items") as db:
            result = await db.execute(
                select(Item.id)
                .where(Item.date_ts < threshold_ts, Item.is_starred == False)
                .order_by(Item.created_at.asc())
            )
            expired_ids = result.scalars().all()

            for start in range(0, len(expired_ids), RETENTION_CHUNK_SIZE):
                chunk = expired_ids[start:start + RETENTION_CHUNK_SIZE]
                outcome = await db.execute(delete(Item).where(Item.id.in_(chunk)))
                deleted += outcome.rowcount
        return deleted
