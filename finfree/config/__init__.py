"""Configuration package."""

from finfree.config.settings import (
    AppSettings,
    GoogleSheetsSettings,
    RelaySettings,
    Settings,
    SyncSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "GoogleSheetsSettings",
    "RelaySettings",
    "Settings",
    "SyncSettings",
    "get_settings",
    "validate_all_settings",
]
