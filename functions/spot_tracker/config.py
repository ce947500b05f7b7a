"""
Configuration and settings for the tracker backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SPOT_FEED_URL_TEMPLATE = (
    "https://api.findmespot.com/spot-main-web/consumer/rest-api/2.0/public/feed/"
    "{feed_id}/message.json"
)


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/api")

    # Database (SQLite file by default, any SQLAlchemy URL works)
    database_url: str = Field(default="sqlite:///spot_tracker.sqlite3")
    use_in_memory_backends: bool = Field(default=False)

    # SPOT feed. The feed rejects calls closer than 2.5 minutes apart and
    # only carries the last 7 days of messages.
    spot_feed_id: Optional[str] = Field(default=None)
    spot_feed_url_template: str = Field(default=SPOT_FEED_URL_TEMPLATE)
    request_timeout_seconds: float = Field(default=30.0)
    freshness_window_seconds: int = Field(default=300)
    api_call_retention: int = Field(default=100)

    # Daily backup
    backup_timezone: str = Field(default="America/Los_Angeles")
    backup_window_start_hour: int = Field(default=6, ge=0, le=23)
    backup_window_end_hour: int = Field(default=8, ge=1, le=24)
    backup_recipients: list[str] = Field(default_factory=list)

    # SendGrid
    sendgrid_api_key: Optional[str] = Field(default=None)
    sendgrid_from_email: Optional[str] = Field(default=None)
    sendgrid_from_name: str = Field(default="Where is Curtis")

    # Debug routes are disabled unless a password is set.
    debug_password: Optional[str] = Field(default=None)

    @model_validator(mode="after")
    def _check_backup_window(self) -> "Settings":
        # The window never wraps past midnight.
        if self.backup_window_start_hour >= self.backup_window_end_hour:
            raise ValueError(
                "backup_window_start_hour must be before backup_window_end_hour"
            )
        return self

    @property
    def spot_feed_url(self) -> Optional[str]:
        if not self.spot_feed_id:
            return None
        return self.spot_feed_url_template.format(feed_id=self.spot_feed_id)

    @property
    def sendgrid_configured(self) -> bool:
        return bool(self.sendgrid_api_key and self.sendgrid_from_email)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
