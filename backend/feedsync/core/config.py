from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./feedsync.db"

    # Application
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Feed synchronization
    SYNC_INTERVAL_MINUTES: int = 45
    OFFLINE_POLL_INTERVAL_MINUTES: int = 3  # Connectivity poll while a fetch is pending
    FETCH_TIMEOUT_SECONDS: float = 30.0
    INITIAL_BASELINE_ITEMS: int = 50  # Items kept on the first sync of a feed
    USER_AGENT: str = "FeedSync/1.0 (+https://github.com/feedsync/feedsync)"

    # Connectivity
    CONNECTIVITY_CHECK_URL: str = "https://www.gstatic.com/generate_204"
    CONNECTIVITY_TIMEOUT_SECONDS: float = 5.0

    # Retention
    RETENTION_DAYS: int = 30
    RETENTION_INTERVAL_HOURS: int = 24

    # Item queries
    PAGE_SIZE: int = 20

    # Notifications
    NOTIFICATION_CLICK_URL: str = "http://localhost:5173/list"

    model_config = SettingsConfigDict(env_file=".env")


settings = Settings()
