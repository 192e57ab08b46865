"""
Application settings and configuration.
Values are loaded from environment variables or a local .env file.
"""

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Storage - DATA_DIR holds both the reminder database and the alert job store
    data_dir: str = "."

    @property
    def database_url(self) -> str:
        """Async database URL for reminders, policies and feed sources."""
        return f"sqlite+aiosqlite:///{self.data_dir}/remindsync.db"

    @property
    def jobstore_url(self) -> str:
        """Synchronous URL for the APScheduler job store."""
        return f"sqlite:///{self.data_dir}/alerts.db"

    # Local calendar used to combine dates with times of day
    timezone: str = "UTC"

    # Escalation
    max_repeat_alerts: int = 50  # Leaves headroom under the scheduler ceiling
    scheduler_capacity: int = 64
    default_policy_name: str = "Standard"

    # Snooze anchors (local hour of day)
    evening_hour: int = 17
    morning_hour: int = 9

    # Calendar feeds
    fetch_timeout_seconds: float = 30.0
    fetch_retry_attempts: int = 3
    sync_poll_minutes: int = 5
    calendar_product_id: str = "-//RemindSync//RemindSync Calendar Export//EN"

    # Application Settings
    debug: bool = False

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
