"""
Tests for application configuration.

Covers the fail-fast validator and plan-to-price mapping.
"""

import pytest
from conftest import build_settings

from rhythm_gateway.config import ConfigurationError, Settings, get_settings, settings


class TestSettingsValidation:
    """Tests for Settings.validate_critical_config."""

    def test_valid_settings(self):
        config = build_settings()
        assert config.quota_policy == "eventual"
        assert config.free_daily_request_limit == 1000
        assert config.premium_daily_request_limit == 10000
        assert config.max_payload_bytes == 100 * 1024
        assert config.max_webhook_payload_bytes == 512 * 1024

    def test_missing_database_url(self):
        with pytest.raises(ConfigurationError, match="DATABASE_URL is required"):
            build_settings(database_url="")

    def test_non_postgres_database_url(self):
        with pytest.raises(ConfigurationError, match="PostgreSQL"):
            build_settings(database_url="mysql://localhost/db")

    def test_unknown_quota_policy(self):
        with pytest.raises(ConfigurationError, match="QUOTA_POLICY"):
            build_settings(quota_policy="sometimes")

    @pytest.mark.parametrize(
        "overrides",
        [{"free_daily_request_limit": 0}, {"premium_daily_request_limit": -5}],
    )
    def test_non_positive_limits(self, overrides):
        with pytest.raises(ConfigurationError, match="Daily request limits"):
            build_settings(**overrides)

    def test_non_positive_payload_limit(self):
        with pytest.raises(ConfigurationError, match="MAX_PAYLOAD_BYTES"):
            build_settings(max_payload_bytes=0)

    def test_non_positive_webhook_payload_limit(self):
        with pytest.raises(ConfigurationError, match="MAX_WEBHOOK_PAYLOAD_BYTES"):
            build_settings(max_webhook_payload_bytes=-1)

    def test_errors_reported_together(self):
        with pytest.raises(ConfigurationError) as exc_info:
            build_settings(database_url="", quota_policy="sometimes")

        message = str(exc_info.value)
        assert "DATABASE_URL" in message
        assert "QUOTA_POLICY" in message

    def test_environment_loaded(self, monkeypatch):
        monkeypatch.setenv("QUOTA_POLICY", "strict")
        monkeypatch.setenv("FREE_DAILY_REQUEST_LIMIT", "25")

        config = Settings()

        assert config.quota_policy == "strict"
        assert config.free_daily_request_limit == 25


class TestPriceIds:
    """Tests for price_id_for_plan."""

    def test_monthly(self):
        assert build_settings().price_id_for_plan("monthly") == "price_monthly_test"

    def test_yearly(self):
        assert build_settings().price_id_for_plan("yearly") == "price_yearly_test"


def test_get_settings_returns_global():
    assert get_settings() is settings
