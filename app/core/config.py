from pathlib import Path
from typing import Literal
from zoneinfo import ZoneInfo

from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve .env from backend project root so it loads regardless of cwd
_BACKEND_ROOT = Path(__file__).resolve().parent.parent.parent
_ENV_FILE = _BACKEND_ROOT / ".env"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=(str(_ENV_FILE), ".env", "../.env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str
    database_ssl: bool = False
    auto_create_tables: bool = False

    # CORS
    cors_origins: str = "*"

    # Env
    env: str = "development"

    # Schedule. All slot times are local to this timezone.
    timezone: str = "Asia/Tokyo"
    opening_hour: int = 10
    closing_hour: int = 18  # exclusive, so last slot ends at 18:00
    break_start_hour: int = 12
    break_end_hour: int = 13
    slot_duration_minutes: int = 60
    lead_time_minutes: int = 60

    # "simple" bookings carry no teacher/subject; "with_teacher_subject" requires both
    booking_mode: Literal["simple", "with_teacher_subject"] = "simple"

    slot_lock_timeout_seconds: float = 5.0
    external_timeout_seconds: float = 5.0

    # LINE (LIFF login + Messaging API push to the admin)
    line_profile_url: str = "https://api.line.me/v2/profile"
    line_push_url: str = "https://api.line.me/v2/bot/message/push"
    line_channel_access_token: str = ""
    line_admin_user_id: str = ""

    # Development login bypass. Ignored when env == "production".
    mock_auth_enabled: bool = True
    mock_access_token: str = "mock-access-token-for-development"
    mock_user_id: str = "U_dev_user_12345"
    mock_display_name: str = "Dev User"

    # Google Calendar (organizer's calendar: busy source + booking mirror)
    google_client_id: str = ""
    google_client_secret: str = ""
    google_refresh_token: str = ""
    google_calendar_id: str = "primary"

    # Admin
    admin_api_key: str = ""
    seed_days: int = 14

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @property
    def is_production(self) -> bool:
        return self.env.lower() == "production"

    @property
    def mock_auth_allowed(self) -> bool:
        return self.mock_auth_enabled and not self.is_production

    @property
    def google_calendar_enabled(self) -> bool:
        return bool(self.google_client_id and self.google_client_secret and self.google_refresh_token)

    @property
    def line_push_enabled(self) -> bool:
        return bool(self.line_channel_access_token and self.line_admin_user_id)


settings = Settings()
