from pydantic import BaseModel, Field
from datetime import datetime
from typing import Literal, Optional


class FeedBase(BaseModel):
    url: str
    title: str
    alias: Optional[str] = None


class FeedCreate(BaseModel):
    url: str
    title: Optional[str] = None
    alias: Optional[str] = None


class FeedUpdate(BaseModel):
    """
    Schema for updating user-owned feed fields.

    All fields are optional - provide only the fields you want to update.
    An empty alias clears it.
    """
    alias: Optional[str] = None
    notifications_enabled: Optional[bool] = None
    notification_priority: Optional[Literal["normal", "high"]] = None


class FeedResponse(FeedBase):
    id: str
    position: int
    created_at: datetime
    last_checked: Optional[datetime] = None
    last_item_ts: Optional[int] = None
    notifications_enabled: bool
    notification_priority: str
    unread_count: int = 0

    class Config:
        from_attributes = True


class RefreshRequest(BaseModel):
    feed_id: Optional[str] = None


class SyncSettings(BaseModel):
    sync_interval_minutes: int = Field(45, ge=1)
    retention_days: int = Field(30, ge=1)
