"""Configuration package."""

from messledger.config.settings import (
    AppSettings,
    GoogleSheetsSettings,
    Settings,
    StoreSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "GoogleSheetsSettings",
    "Settings",
    "StoreSettings",
    "get_settings",
    "validate_all_settings",
]
