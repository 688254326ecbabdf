"""Unit tests for environment-driven settings."""

import pytest
from pydantic import ValidationError

from motohire.config import Settings, load_settings
from motohire.services.payment_config import MpesaConfig

DB_URL = "sqlite+aiosqlite:///:memory:"


def test_simulation_off_by_default():
    settings = Settings(database_url=DB_URL)

    assert settings.mpesa_simulation_enabled is False
    assert settings.mpesa_environment == "sandbox"


def test_log_level_normalized():
    assert Settings(database_url=DB_URL, log_level="debug").log_level == "DEBUG"

    with pytest.raises(ValidationError):
        Settings(database_url=DB_URL, log_level="chatty")


def test_unknown_mpesa_environment_rejected():
    assert Settings(database_url=DB_URL, mpesa_environment=" Production ").mpesa_environment == "production"

    with pytest.raises(ValidationError):
        Settings(database_url=DB_URL, mpesa_environment="staging")


def test_retry_attempts_must_be_positive():
    with pytest.raises(ValidationError):
        Settings(database_url=DB_URL, confirm_retry_attempts=0)


def test_loaded_from_environment(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", DB_URL)
    monkeypatch.setenv("MPESA_SHORTCODE", "600999")
    monkeypatch.setenv("MPESA_SIMULATION_ENABLED", "true")

    settings = load_settings()

    assert settings.mpesa_shortcode == "600999"
    assert settings.mpesa_simulation_enabled is True


def test_gateway_config_follows_settings():
    settings = Settings(
        database_url=DB_URL,
        mpesa_consumer_key="ck",
        mpesa_consumer_secret="cs",
        mpesa_passkey="pk",
        mpesa_callback_url="https://example.com/cb",
        mpesa_environment="production",
    )

    config = MpesaConfig.from_settings(settings)

    assert config.is_configured
    assert config.is_production
