"""
Configuration Management for Mess Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see which record store backend is in use and
ensures all required configuration is validated at startup.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StoreSettings(BaseSettings):
    """Record store backend selection."""

    model_config = SettingsConfigDict(
        env_prefix="MESS_STORE_",
        extra="ignore"
    )

    backend: Literal["memory", "google_sheets"] = Field(
        default="memory",
        description="Which record store adapter to use"
    )


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets record store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the Google Sheets spreadsheet to use"
    )

    # One worksheet per collection
    participants_sheet_name: str = Field(default="Participants")
    meals_sheet_name: str = Field(default="Meals")
    costs_sheet_name: str = Field(default="Costs")
    deposits_sheet_name: str = Field(default="Deposits")
    settings_sheet_name: str = Field(default="Settings")
    audit_sheet_name: str = Field(
        default="AuditLog",
        description="Name of the sheet for audit logs"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Make sure it exists before running the application."
            )
        return v

    def sheet_name_for(self, collection: str) -> str:
        """Worksheet title for a record collection."""
        names = {
            "participants": self.participants_sheet_name,
            "meals": self.meals_sheet_name,
            "costs": self.costs_sheet_name,
            "deposits": self.deposits_sheet_name,
            "settings": self.settings_sheet_name,
            "audit_log": self.audit_sheet_name,
        }
        return names.get(collection, collection)


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

    # Display name for records whose participant no longer exists
    unknown_participant_name: str = Field(
        default="Unknown User",
        min_length=1,
    )

    # Hard-coded meal defaults used when no settings document exists
    default_breakfast: float = Field(default=0.5, ge=0.0)
    default_lunch: float = Field(default=1.0, ge=0.0)
    default_dinner: float = Field(default=1.0, ge=0.0)

    settings_document_id: str = Field(
        default="mess-settings",
        description="Document id of the mess settings singleton"
    )


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

    # Loaded lazily so the memory backend runs without Sheets credentials

    @property
    def store(self) -> StoreSettings:
        return StoreSettings()

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

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


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}.
    Google Sheets is only checked when it is the selected backend.
    """
    results = {}

    settings = get_settings()

    try:
        store = settings.store
        results["store"] = True
    except Exception as e:
        results["store"] = False
        results["store_error"] = str(e)
        store = None

    if store is not None and store.backend == "google_sheets":
        try:
            _ = settings.google_sheets
            results["google_sheets"] = True
        except Exception as e:
            results["google_sheets"] = False
            results["google_sheets_error"] = str(e)

    try:
        _ = settings.app
        results["app"] = True
    except Exception as e:
        results["app"] = False
        results["app_error"] = str(e)

    return results
