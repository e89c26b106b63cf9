from sqlalchemy import Column, String, JSON

from feedsync.core.database import Base


class Preference(Base):
    __tablename__ = "preferences"

    key = Column(String, primary_key=True)
    value = Column(JSON, nullable=True)
