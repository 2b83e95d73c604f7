from __future__ import annotations

from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    database_url: str
    app_public_base_url: str
    cors_allow_origins: str = "http://localhost:3000"

    max_attempts_per_hour: int = 10
    max_verifications_per_day: int = 1
    max_referrals_per_window: int = 15
    referral_window_minutes: int = 60

    store_timeout_seconds: float = 5.0
    store_read_retries: int = 2

    db_pool_size: int = 5
    db_max_overflow: int = 10
    db_pool_timeout_seconds: int = 30
    db_echo_sql: bool = False

    sendgrid_api_key: str | None = None
    email_from: str = "waitlist@example.com"
    email_http_timeout_seconds: float = 10.0

    hubspot_access_token: str | None = None
    crm_http_timeout_seconds: float = 10.0

    admin_emails: str = ""
    web_access_token_secret: str = "change-me-in-production"
    web_access_token_expiry_hours: int = 24 * 7
    signup_webhook_secret: str | None = None

    digest_recipients: str = ""
    digest_top_referrers: int = 5
    digest_interval_days: int = 7

    scheduler_interval_minutes: float = 15.0
    ops_event_buffer_size: int = 500
    counter_sweep_interval_seconds: float = 300.0

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    @field_validator("app_public_base_url")
    @classmethod
    def validate_public_base_url(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("APP_PUBLIC_BASE_URL must be provided")
        return value.rstrip("/")

    def admin_email_list(self) -> list[str]:
        return [item.strip().lower() for item in self.admin_emails.split(",") if item.strip()]

    def digest_recipient_list(self) -> list[str]:
        recipients = [item.strip().lower() for item in self.digest_recipients.split(",") if item.strip()]
        return recipients or self.admin_email_list()

    def cors_allow_origin_list(self) -> list[str]:
        return [item.strip() for item in self.cors_allow_origins.split(",") if item.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
