"""
Configuration Management for the Split Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see which backend and limits are in force and
ensures configuration is validated at startup.
"""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from splitledger.money import MAX_MINOR_UNITS


class StorageSettings(BaseSettings):
    """Persistence backend configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_STORAGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    backend: Literal["memory", "sql"] = Field(
        default="memory",
        description="Which ledger backend to use"
    )
    database_url: str = Field(
        default="sqlite:///splitledger.db",
        description="SQLAlchemy database URL (sql backend only)"
    )
    echo_sql: bool = Field(
        default=False,
        description="Log every SQL statement"
    )

    @field_validator('database_url')
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        if "://" not in v:
            raise ValueError(f"Not a database URL: {v}")
        return v


class RetrySettings(BaseSettings):
    """Retry policy for mutations that lose an optimistic version check."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_RETRY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts per mutation, including the first"
    )
    wait_min_seconds: float = Field(
        default=0.01,
        ge=0.0,
        description="Minimum back-off between attempts"
    )
    wait_max_seconds: float = Field(
        default=0.5,
        ge=0.0,
        description="Maximum back-off between attempts"
    )

    @model_validator(mode='after')
    def validate_wait_window(self) -> 'RetrySettings':
        if self.wait_max_seconds < self.wait_min_seconds:
            raise ValueError("wait_max_seconds cannot be below wait_min_seconds")
        return self


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        description="Minimum level for structured logs"
    )

    # Amount limits - DECIMAL(10,2) holds at most 99,999,999.99
    max_amount_minor_units: int = Field(
        default=9_999_999_999,
        ge=1,
        le=MAX_MINOR_UNITS,
        description="Largest amount accepted for one expense or split"
    )
    currency_symbol: str = Field(
        default="₹",
        max_length=4,
        description="Symbol used when formatting amounts in audit messages"
    )

    audit_enabled: bool = Field(
        default=True,
        description="Emit audit events for ledger mutations"
    )

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @property
    def storage(self) -> StorageSettings:
        return StorageSettings()

    @property
    def retry(self) -> RetrySettings:
        return RetrySettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings(settings: Optional[Settings] = None) -> dict[str, object]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, plus `<name>_error`
    entries for the ones that failed. Useful for startup checks.
    """
    results: dict[str, object] = {}

    settings = settings or get_settings()

    for name in ("storage", "retry", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except ValueError as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
