from .item import ItemResponse, ItemFilter, ItemPage, ItemIdsRequest, ItemStarUpdate, MediaReference
from .feed import FeedBase, FeedCreate, FeedUpdate, FeedResponse, RefreshRequest, SyncSettings
from .notification import QuietHours, GlobalNotificationSettings
from .common import ActionResult, BadgeResponse

__all__ = [
    "ItemResponse",
    "ItemFilter",
    "ItemPage",
    "ItemIdsRequest",
    "ItemStarUpdate",
    "MediaReference",
    "FeedBase",
    "FeedCreate",
    "FeedUpdate",
    "FeedResponse",
    "RefreshRequest",
    "SyncSettings",
    "QuietHours",
    "GlobalNotificationSettings",
    "ActionResult",
    "BadgeResponse",
]
