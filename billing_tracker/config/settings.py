"""
Configuration Management for Household Billing Tracker

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Remote storage is optional: when it is not configured the store
runs in local-only demo mode instead of failing at startup.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SyncSettings(BaseSettings):
    """Debounce windows for write-through persistence."""

    model_config = SettingsConfigDict(
        env_prefix="SYNC_",
        extra="ignore"
    )

    settings_debounce_seconds: float = Field(
        default=1.0,
        gt=0.0,
        le=30.0,
        description="Quiet period after the last settings edit before saving"
    )
    month_debounce_seconds: float = Field(
        default=0.5,
        gt=0.0,
        le=30.0,
        description="Quiet period after the last month edit before saving"
    )

    @model_validator(mode='after')
    def validate_windows(self) -> 'SyncSettings':
        """Settings edits coalesce over the longer window."""
        if self.month_debounce_seconds > self.settings_debounce_seconds:
            raise ValueError(
                "month_debounce_seconds cannot be longer than settings_debounce_seconds"
            )
        return self


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets storage configuration."""

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

    # Sheet names within the spreadsheet
    settings_sheet_name: str = Field(
        default="Settings",
        description="Name of the sheet holding one settings row per account"
    )
    month_sheet_name: str = Field(
        default="MonthData",
        description="Name of the sheet holding one row per account and month"
    )

    poll_interval_seconds: float = Field(
        default=5.0,
        ge=0.5,
        le=300.0,
        description="How often subscriptions poll the sheet for remote changes"
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

    # Guest/demo data
    sample_months: int = Field(
        default=12,
        ge=1,
        le=60,
        description="How many months of sample data a guest session sees"
    )

    # Month selection
    addable_months_window: int = Field(
        default=24,
        ge=1,
        le=120,
        description="How many recent calendar months can be added to the ledger"
    )
    default_trend_months: int = Field(
        default=6,
        ge=1,
        le=60,
        description="Default length of the historical trend window"
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

    # Sub-settings are loaded lazily so a missing storage config
    # does not prevent the app from starting in demo mode.

    @property
    def sync(self) -> SyncSettings:
        return SyncSettings()

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
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    try:
        _ = settings.sync
        results["sync"] = True
    except Exception as e:
        results["sync"] = False
        results["sync_error"] = str(e)

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


def is_storage_configured() -> bool:
    """Can a remote storage backend be built from the environment?"""
    return validate_all_settings().get("google_sheets", False)
