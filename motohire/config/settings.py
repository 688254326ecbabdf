"""Configuration settings loaded from environment variables."""

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine settings; every field maps to an upper-case env variable."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    database_url: str

    redis_url: str = "redis://localhost:6379/0"
    redis_lock_ttl_seconds: int = Field(default=10, gt=0)

    # Safaricom Daraja
    mpesa_consumer_key: str = ""
    mpesa_consumer_secret: str = ""
    mpesa_passkey: str = ""
    mpesa_shortcode: str = "174379"
    mpesa_callback_url: str = ""
    mpesa_environment: Literal["sandbox", "production"] = "sandbox"
    mpesa_timeout_seconds: float = Field(default=30.0, gt=0)

    # Demo-only: settle locally when Daraja cannot be reached
    mpesa_simulation_enabled: bool = False
    mpesa_simulation_delay_seconds: float = Field(default=3.0, ge=0)

    confirm_retry_attempts: int = Field(default=3, ge=1)
    confirm_retry_backoff_seconds: float = Field(default=0.5, ge=0)
    settlement_max_finished_flows: int = Field(default=1000, ge=0)
    settlement_flow_ttl_seconds: int = Field(default=3600, gt=0)

    payment_reconcile_interval_seconds: int = Field(default=60, gt=0)
    payment_reconcile_after_seconds: int = Field(default=120, ge=0)
    payment_abandon_after_seconds: int = Field(default=900, ge=0)
    # Referenced payments still pending after this are cancelled
    payment_unresolved_after_seconds: int = Field(default=3600, ge=0)

    log_level: str = "INFO"
    app_name: str = "motohire-settlement"
    environment: str = "development"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    @field_validator("mpesa_environment", mode="before")
    @classmethod
    def normalize_mpesa_environment(cls, v: str) -> str:
        return v.strip().lower() if isinstance(v, str) else v


def load_settings() -> Settings:
    """Load and validate settings from environment."""
    return Settings()  # type: ignore[call-arg]
