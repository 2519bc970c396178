"""Configuration package."""

from splitledger.config.settings import (
    AppSettings,
    RetrySettings,
    Settings,
    StorageSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "RetrySettings",
    "Settings",
    "StorageSettings",
    "get_settings",
    "validate_all_settings",
]
