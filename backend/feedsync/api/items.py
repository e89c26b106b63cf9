from fastapi import APIRouter, Depends, Query
from typing import Dict, Optional

from feedsync.api.dependencies import get_feed_service
from feedsync.core.exceptions import ItemNotFoundError
from feedsync.schemas import (
    ActionResult,
    BadgeResponse,
    ItemFilter,
    ItemIdsRequest,
    ItemPage,
    ItemResponse,
    ItemStarUpdate,
)
from feedsync.services.feed_service import FeedService

router = APIRouter(prefix="/api", tags=["items"])


@router.get("/items", response_model=ItemPage)
async def list_items(
    feed_id: Optional[str] = Query(None, description="Return every item of this feed"),
    before: Optional[int] = Query(None, description="Cursor: only items with a sort timestamp strictly older than this"),
    unread_only: bool = Query(False, description="Only unread items"),
    starred_only: bool = Query(False, description="Only starred items"),
    service: FeedService = Depends(get_feed_service),
):
    """
    List items newest first, one page at a time.

    `total` is the number of stored items, independent of the filters.
    """
    return await service.get_items(ItemFilter(
        feed_id=feed_id,
        before=before,
        unread_only=unread_only,
        starred_only=starred_only,
    ))


@router.get("/items/count")
async def count_items(service: FeedService = Depends(get_feed_service)):
    return {"count": await service.count_all()}


@router.get("/items/unread-count")
async def count_unread_items(service: FeedService = Depends(get_feed_service)):
    return {"count": await service.count_unread()}


@router.get("/items/unread-by-feed", response_model=Dict[str, int])
async def unread_by_feed(service: FeedService = Depends(get_feed_service)):
    """Unread item count per feed id"""
    return await service.get_unread_count_by_feed()


@router.get("/badge", response_model=BadgeResponse)
async def get_badge(service: FeedService = Depends(get_feed_service)):
    badge = await service.get_badge()
    return BadgeResponse(count=badge.count, text=badge.text, color=badge.color)


@router.get("/items/{item_id:path}", response_model=ItemResponse)
async def get_item(
    item_id: str,
    service: FeedService = Depends(get_feed_service),
):
    """
    Get full item details
    """
    page = await service.get_items(ItemFilter(id=item_id))
    if not page.items:
        raise ItemNotFoundError()
    return page.items[0]


@router.post("/items/read", response_model=ActionResult)
async def mark_items_read(
    request: ItemIdsRequest,
    service: FeedService = Depends(get_feed_service),
):
    return await service.mark_read(request.ids)


@router.post("/items/read-all", response_model=ActionResult)
async def mark_all_items_read(service: FeedService = Depends(get_feed_service)):
    return await service.mark_all_read()


@router.post("/items/star", response_model=ActionResult)
async def star_item(
    item_id: str = Query(..., description="Item id"),
    update: Optional[ItemStarUpdate] = None,
    service: FeedService = Depends(get_feed_service),
):
    """
    Set the starred flag, or toggle it when is_starred is omitted
    """
    starred = update.is_starred if update else None
    return await service.toggle_star(item_id, starred)


@router.post("/items/delete", response_model=ActionResult)
async def delete_items(
    request: ItemIdsRequest,
    service: FeedService = Depends(get_feed_service),
):
    """
    Delete items by id. With two or more ids, starred items are kept.
    """
    return await service.delete_items(request.ids)


@router.delete("/items", response_model=ActionResult)
async def delete_all_items(service: FeedService = Depends(get_feed_service)):
    """
    Delete every item except starred ones.
    """
    return await service.delete_all_items()
