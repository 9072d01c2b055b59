"""
Configuration Management for FinFree

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: Only operational knobs live here (file paths, timeouts,
retry bounds, worksheet names). Credentials for the remote copy belong to the
user's local AppConfig and are passed explicitly into every remote call, so
nothing in this module is ever synced or merged.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GoogleSheetsSettings(BaseSettings):
    """Direct spreadsheet transport configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    spreadsheet_title: str = Field(
        default="FinFree Data",
        description="Title used when a new spreadsheet is created"
    )

    # Sheet names within the spreadsheet
    expenses_sheet_name: str = Field(default="Expenses")
    income_sheet_name: str = Field(default="Income")
    transfers_sheet_name: str = Field(default="Transfers")
    accounts_sheet_name: str = Field(default="Accounts")
    budgets_sheet_name: str = Field(default="Budgets")
    categories_sheet_name: str = Field(default="Categories")
    config_sheet_name: str = Field(default="Config")


class RelaySettings(BaseSettings):
    """Relay endpoint transport configuration."""

    model_config = SettingsConfigDict(
        env_prefix="RELAY_",
        extra="ignore"
    )

    timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="HTTP timeout for relay calls"
    )


class SyncSettings(BaseSettings):
    """Reconciliation cycle configuration."""

    model_config = SettingsConfigDict(
        env_prefix="SYNC_",
        extra="ignore"
    )

    periodic_interval_seconds: int = Field(
        default=300,
        ge=10,
        description="How often the periodic trigger fires"
    )
    retry_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Transport attempts per remote call"
    )
    retry_min_wait_seconds: float = Field(default=2.0, ge=0)
    retry_max_wait_seconds: float = Field(default=10.0, ge=0)


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
        description="Root log level"
    )

    # Local replica
    data_file: str = Field(
        default="finfree_ledger.json",
        description="Path of the JSON file holding the local ledger"
    )

    # Validation
    max_transaction_amount: int = Field(
        default=10_000_000,
        gt=0,
        description="Amounts above this are flagged for review (smallest currency unit)"
    )

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalise and check the log level name."""
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    @property
    def data_path(self) -> Path:
        """Get the local data file as a Path."""
        return Path(self.data_file).expanduser()


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
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def relay(self) -> RelaySettings:
        return RelaySettings()

    @property
    def sync(self) -> SyncSettings:
        return SyncSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, plus a
    `<name>_error` entry for each section that failed.
    """
    results = {}
    settings = get_settings()

    for name in ("google_sheets", "relay", "sync", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
