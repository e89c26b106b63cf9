from sqlalchemy import Column, String, DateTime, Text, Boolean, BigInteger, JSON
from datetime import datetime, timezone

from feedsync.core.database import Base


def get_utc_now():
    """Return current UTC time with timezone info"""
    return datetime.now(timezone.utc)


class Item(Base):
    __tablename__ = "items"

    id = Column(String, primary_key=True)  # The feed entry guid, unique across all feeds
    feed_id = Column(String(36), nullable=False, index=True)  # Enforced by the application, not a FK
    title = Column(String, nullable=True)
    link = Column(String, nullable=True)
    description = Column(Text, nullable=True)
    content = Column(Text, nullable=True)
    media = Column(JSON, nullable=True)  # {"url", "type", "width", "height"}
    pub_date = Column(String, nullable=True)  # Publication date as declared by the source

    # Normalized sort timestamp in epoch milliseconds
    date_ts = Column(BigInteger, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=get_utc_now, nullable=False, index=True)

    # Item status fields
    is_read = Column(Boolean, default=False, nullable=False, index=True)
    is_starred = Column(Boolean, default=False, nullable=False, index=True)
