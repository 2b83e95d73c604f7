from __future__ import annotations

import pytest
from pydantic import ValidationError

from waitlist.config import Settings, get_settings


def test_defaults_match_documented_limits() -> None:
    settings = Settings(_env_file=None)
    assert settings.max_attempts_per_hour == 10
    assert settings.max_verifications_per_day == 1
    assert settings.max_referrals_per_window == 15
    assert settings.referral_window_minutes == 60
    assert settings.store_read_retries == 2
    assert settings.sendgrid_api_key is None


def test_missing_database_url_fails(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("DATABASE_URL")
    with pytest.raises(ValidationError):
        Settings(_env_file=None)


def test_blank_public_base_url_fails(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("APP_PUBLIC_BASE_URL", "   ")
    with pytest.raises(ValidationError):
        Settings(_env_file=None)


def test_public_base_url_trailing_slash_stripped(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("APP_PUBLIC_BASE_URL", "https://waitlist.example.com/")
    assert Settings(_env_file=None).app_public_base_url == "https://waitlist.example.com"


def test_list_helpers(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ADMIN_EMAILS", " Admin@Example.com , ops@example.com,")
    monkeypatch.setenv("CORS_ALLOW_ORIGINS", "https://a.example.com, https://b.example.com")
    settings = Settings(_env_file=None)
    assert settings.admin_email_list() == ["admin@example.com", "ops@example.com"]
    assert settings.cors_allow_origin_list() == ["https://a.example.com", "https://b.example.com"]


def test_digest_recipients_fall_back_to_admins(monkeypatch: pytest.MonkeyPatch) -> None:
    assert Settings(_env_file=None).digest_recipient_list() == ["admin@example.com"]
    monkeypatch.setenv("DIGEST_RECIPIENTS", "team@example.com")
    assert Settings(_env_file=None).digest_recipient_list() == ["team@example.com"]


def test_get_settings_is_cached() -> None:
    get_settings.cache_clear()
    assert get_settings() is get_settings()
