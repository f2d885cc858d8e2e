"""Tests for Settings derived values and startup validation."""

from datetime import time

import pytest

from conftest import make_settings


class TestDerivedValues:
    def test_business_hours(self, settings):
        assert settings.opening_time == time(9, 0)
        assert settings.closing_time == time(17, 0)
        assert str(settings.tz) == "America/Chicago"

    def test_integrations_unconfigured_by_default(self, settings):
        assert not settings.calendar_configured
        assert not settings.crm_configured
        assert not settings.email_configured

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("BUSINESS_HOURS_START", "08:30")
        monkeypatch.setenv("ALLOWED_DURATIONS", "[20, 40]")
        monkeypatch.setenv("DEFAULT_DURATION_MINUTES", "20")
        settings = make_settings()
        assert settings.opening_time == time(8, 30)
        assert settings.allowed_durations == [20, 40]
        assert settings.validate_startup() is not None


class TestValidateStartup:
    @pytest.mark.parametrize(
        "overrides",
        [
            {"calendar_timezone": "Mars/Olympus_Mons"},
            {"business_hours_start": "17:00", "business_hours_end": "09:00"},
            {"default_duration_minutes": 25},
            {"sync_max_attempts": 0},
        ],
    )
    def test_fatal_misconfiguration(self, overrides):
        with pytest.raises(ValueError):
            make_settings(**overrides).validate_startup()

    def test_missing_integrations_are_warnings(self, settings):
        warnings = settings.validate_startup()
        assert any("SMTP" in w for w in warnings)
        assert any("Google" in w for w in warnings)
        assert any("HUBSPOT" in w for w in warnings)
        assert not any("API_KEY" in w for w in warnings)

    def test_missing_keys_warn_differently_in_debug(self):
        prod = make_settings(voice_api_key="", admin_api_key="").validate_startup()
        dev = make_settings(voice_api_key="", admin_api_key="", debug=True).validate_startup()
        assert any("locked in production" in w for w in prod)
        assert any("open (DEBUG=true)" in w for w in dev)

    def test_placeholder_token_counts_as_missing(self):
        warnings = make_settings(hubspot_access_token="pat-...").validate_startup()
        assert any("HUBSPOT" in w for w in warnings)
