"""
Preference store: persisted user configuration as key/value rows.

Every read has a default, so a missing or malformed preference is never an error.
"""

import logging
from typing import Any

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from feedsync.core.config import Settings, settings as default_settings
from feedsync.core.exceptions import StoreError
from feedsync.models.preference import Preference
from feedsync.schemas import GlobalNotificationSettings

logger = logging.getLogger(__name__)

SYNC_INTERVAL_KEY = "sync_interval_minutes"
RETENTION_DAYS_KEY = "retention_days"
NOTIFICATIONS_KEY = "global_notifications"


class PreferenceStore:
    """Key/value preferences with typed accessors"""

    def __init__(self, session_factory: async_sessionmaker, settings: Settings = None):
        self.session_factory = session_factory
        self.settings = settings or default_settings

    async def get(self, key: str, default: Any = None) -> Any:
        try:
            async with self.session_factory() as db:
                preference = await db.get(Preference, key)
        except SQLAlchemyError as e:
            logger.error(f"Failed to read preference '{key}', using default: {e}")
            return default
        if preference is None or preference.value is None:
            return default
        return preference.value

    async def set(self, key: str, value: Any) -> None:
        async with self.session_factory() as db:
            try:
                preference = await db.get(Preference, key)
                if preference is None:
                    db.add(Preference(key=key, value=value))
                else:
                    preference.value = value
                await db.commit()
            except SQLAlchemyError as e:
                await db.rollback()
                logger.error(f"Failed to save preference '{key}': {e}")
                raise StoreError(f"Failed to save preference '{key}'") from e
        logger.info(f"Preference '{key}' updated")

    async def get_sync_interval_minutes(self) -> int:
        value = await self.get(SYNC_INTERVAL_KEY, self.settings.SYNC_INTERVAL_MINUTES)
        return self._positive_int(value, self.settings.SYNC_INTERVAL_MINUTES)

    async def set_sync_interval_minutes(self, minutes: int) -> None:
        await self.set(SYNC_INTERVAL_KEY, int(minutes))

    async def get_retention_days(self) -> int:
        value = await self.get(RETENTION_DAYS_KEY, self.settings.RETENTION_DAYS)
        return self._positive_int(value, self.settings.RETENTION_DAYS)

    async def set_retention_days(self, days: int) -> None:
        await self.set(RETENTION_DAYS_KEY, int(days))

    async def get_notification_settings(self) -> GlobalNotificationSettings:
        value = await self.get(NOTIFICATIONS_KEY)
        if not value:
            return GlobalNotificationSettings()
        try:
            return GlobalNotificationSettings.model_validate(value)
        except PydanticValidationError as e:
            logger.warning(f"Stored notification settings are invalid, using defaults: {e}")
            return GlobalNotificationSettings()

    async def set_notification_settings(self, notification_settings: GlobalNotificationSettings) -> None:
        await self.set(NOTIFICATIONS_KEY, notification_settings.model_dump())

    @staticmethod
    def _positive_int(value: Any, default: int) -> int:
        # Values may arrive as strings from form inputs
        try:
            number = int(value)
        except (TypeError, ValueError):
            return default
        return number if number > 0 else default
