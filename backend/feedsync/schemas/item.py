from pydantic import BaseModel
from datetime import datetime
from typing import List, Optional, Union


class MediaReference(BaseModel):
    url: str
    type: Optional[str] = None
    width: Optional[Union[int, str]] = None
    height: Optional[Union[int, str]] = None


class ItemResponse(BaseModel):
    id: str
    feed_id: str
    title: Optional[str] = None
    link: Optional[str] = None
    description: Optional[str] = None
    content: Optional[str] = None
    media: Optional[MediaReference] = None
    pub_date: Optional[str] = None
    date_ts: int
    created_at: datetime

    # Item status fields
    is_read: bool
    is_starred: bool

    class Config:
        from_attributes = True


class ItemFilter(BaseModel):
    """
    Item query filter.

    Exactly one of three shapes is used: `id` (point lookup), `feed_id`
    (every item of one feed), or a recency scan refined by `before`,
    `unread_only` and `starred_only`. The refinements combine with AND.
    """
    id: Optional[str] = None
    feed_id: Optional[str] = None
    before: Optional[int] = None  # Only items with date_ts strictly older than this
    unread_only: bool = False
    starred_only: bool = False


class ItemPage(BaseModel):
    items: List[ItemResponse]
    # Global item count, not the count of items matching the filter
    total: int
    next_cursor: Optional[int] = None


# Request schemas for status updates
class ItemIdsRequest(BaseModel):
    ids: List[str]


class ItemStarUpdate(BaseModel):
    is_starred: Optional[bool] = None  # None toggles the current state
