from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .formatter import FormatOptions
from .models import TimeFormat


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    notecal_data_dir: Path = Field(default=Path("./data"), validation_alias="NOTECAL_DATA_DIR")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    tz: str = Field(default="UTC", validation_alias="TZ")

    # When set, these take precedence over the values saved with `notecal configure`.
    google_client_id: str | None = Field(default=None, validation_alias="GOOGLE_CLIENT_ID")
    google_client_secret: str | None = Field(
        default=None, validation_alias="GOOGLE_CLIENT_SECRET"
    )
    google_calendar_id: str = Field(default="primary", validation_alias="GOOGLE_CALENDAR_ID")

    oauth_port: int = Field(default=8080, validation_alias="OAUTH_PORT")
    oauth_bind_addr: str = Field(default="127.0.0.1", validation_alias="OAUTH_BIND_ADDR")
    oauth_redirect_host: str = Field(default="localhost", validation_alias="OAUTH_REDIRECT_HOST")
    oauth_callback_path: str = Field(default="/callback", validation_alias="OAUTH_CALLBACK_PATH")
    oauth_timeout_seconds: float = Field(default=300.0, validation_alias="OAUTH_TIMEOUT_SECONDS")
    oauth_exchange_timeout_seconds: float = Field(
        default=30.0, validation_alias="OAUTH_EXCHANGE_TIMEOUT_SECONDS"
    )
    open_browser: bool = Field(default=True, validation_alias="OPEN_BROWSER")

    time_format: TimeFormat = Field(default="12h", validation_alias="TIME_FORMAT")
    include_location: bool = Field(default=True, validation_alias="INCLUDE_LOCATION")
    include_description: bool = Field(default=False, validation_alias="INCLUDE_DESCRIPTION")
    include_ongoing_events: bool = Field(default=True, validation_alias="INCLUDE_ONGOING_EVENTS")

    @property
    def database_path(self) -> Path:
        return self.notecal_data_dir / "notecal.db"

    @property
    def auth_timeout(self) -> float | None:
        if self.oauth_timeout_seconds <= 0:
            return None
        return self.oauth_timeout_seconds

    @property
    def format_options(self) -> FormatOptions:
        return FormatOptions(
            time_format=self.time_format,
            include_location=self.include_location,
            include_description=self.include_description,
            include_ongoing_events=self.include_ongoing_events,
        )
