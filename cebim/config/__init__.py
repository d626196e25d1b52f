"""Configuration package."""

from cebim.config.settings import (
    AppSettings,
    GoogleSheetsSettings,
    MarketDataSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "GoogleSheetsSettings",
    "MarketDataSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
