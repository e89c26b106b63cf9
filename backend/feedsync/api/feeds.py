from fastapi import APIRouter, Depends
from typing import List, Optional
import logging

from feedsync.api.dependencies import get_feed_service
from feedsync.core.exceptions import FeedNotFoundError
from feedsync.schemas import ActionResult, FeedCreate, FeedResponse, FeedUpdate, RefreshRequest
from feedsync.services.feed_service import FeedService

router = APIRouter(prefix="/api", tags=["feeds"])
logger = logging.getLogger(__name__)


@router.get(
    "/feeds",
    response_model=List[FeedResponse],
    summary="List Feeds",
    description="Retrieve all subscribed feeds in subscription order, with their unread counts.",
)
async def list_feeds(service: FeedService = Depends(get_feed_service)):
    return await service.list_feeds()


@router.post(
    "/feeds",
    response_model=ActionResult,
    summary="Subscribe to Feed",
    description="""
Subscribe to a feed URL and immediately synchronize it.

The first synchronization stores at most the 50 newest items.
    """,
)
async def subscribe(
    feed: FeedCreate,
    service: FeedService = Depends(get_feed_service),
):
    return await service.subscribe(feed.url, title=feed.title, alias=feed.alias)


@router.get("/feeds/{feed_id}", response_model=FeedResponse, summary="Get Feed")
async def get_feed(
    feed_id: str,
    service: FeedService = Depends(get_feed_service),
):
    feed = await service.get_feed(feed_id)
    if not feed:
        raise FeedNotFoundError()
    return feed


@router.patch(
    "/feeds/{feed_id}",
    response_model=ActionResult,
    summary="Update Feed",
    description="Update the alias or the notification policy of a feed. Only provided fields change.",
)
async def update_feed(
    feed_id: str,
    updates: FeedUpdate,
    service: FeedService = Depends(get_feed_service),
):
    return await service.update_feed(feed_id, updates)


@router.delete(
    "/feeds/{feed_id}",
    response_model=ActionResult,
    summary="Unsubscribe",
    description="""
Delete a feed and all of its items.

**Warning:** starred items of the feed are deleted too.
    """,
)
async def unsubscribe(
    feed_id: str,
    service: FeedService = Depends(get_feed_service),
):
    result = await service.unsubscribe(feed_id)
    if result.success:
        logger.info(f"Unsubscribed feed {feed_id}: {result.message}")
    return result


@router.post(
    "/feeds/{feed_id}/clear",
    response_model=ActionResult,
    summary="Clear Feed",
    description="Delete a feed's items while keeping the subscription and its starred items.",
)
async def clear_feed(
    feed_id: str,
    service: FeedService = Depends(get_feed_service),
):
    return await service.clear_feed(feed_id)


@router.post("/feeds/{feed_id}/read", response_model=ActionResult, summary="Mark Feed as Read")
async def mark_feed_read(
    feed_id: str,
    service: FeedService = Depends(get_feed_service),
):
    return await service.mark_feed_read(feed_id)


@router.post(
    "/refresh",
    response_model=ActionResult,
    summary="Refresh Feeds",
    description="Run a sync cycle now, for every feed or only `feed_id`. Waits for a cycle already in progress.",
)
async def refresh(
    request: Optional[RefreshRequest] = None,
    service: FeedService = Depends(get_feed_service),
):
    return await service.refresh(request.feed_id if request else None)
