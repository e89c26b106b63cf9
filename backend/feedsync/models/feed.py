from sqlalchemy import Column, String, DateTime, Integer, BigInteger, Boolean
from datetime import datetime, timezone
import uuid

from feedsync.core.database import Base


def get_utc_now():
    """Return current UTC time with timezone info"""
    return datetime.now(timezone.utc)


def generate_feed_id():
    """Opaque, stable feed identifier assigned at subscribe time"""
    return str(uuid.uuid4())


class Feed(Base):
    __tablename__ = "feeds"

    id = Column(String(36), primary_key=True, default=generate_feed_id)
    url = Column(String, nullable=False, unique=True)
    title = Column(String, nullable=False)
    alias = Column(String, nullable=True)  # User-assigned display name
    position = Column(Integer, nullable=False, default=0, index=True)  # Subscription order
    created_at = Column(DateTime(timezone=True), default=get_utc_now, nullable=False)
    last_checked = Column(DateTime(timezone=True), nullable=True)

    # Newest publication time already ingested, in epoch milliseconds
    last_item_ts = Column(BigInteger, nullable=True)

    # Conditional request validators
    etag = Column(String, nullable=True)
    last_modified = Column(String, nullable=True)

    # Per-feed notification policy
    notifications_enabled = Column(Boolean, default=False, nullable=False)
    notification_priority = Column(String, default="normal", nullable=False)  # normal|high
