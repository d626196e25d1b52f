"""
Configuration Management for Cebim

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what external dependencies exist and
ensures all required configuration is validated at startup.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class MarketDataSettings(BaseSettings):
    """Market price source configuration."""

    model_config = SettingsConfigDict(
        env_prefix="MARKET_",
        extra="ignore"
    )

    midas_fx_url: str = Field(
        default="https://www.getmidas.com/wp-json/midas-api/v1/midas_table_data?sortId=&return=doviz",
        description="Vendor endpoint returning the FX and gold table"
    )
    midas_stocks_url: str = Field(
        default="https://www.getmidas.com/wp-json/midas-api/v1/midas_table_data?sortId=&return=table",
        description="Vendor endpoint returning the equity table"
    )
    tefas_fund_url: str = Field(
        default="https://www.tefas.gov.tr/FonAnaliz.aspx?FonKod={code}",
        description="Fund analysis page template, {code} is the fund code"
    )
    tefas_chart_marker: str = Field(
        default="chartMainContent_FonFiyatGrafik",
        description="Text identifying the script block holding the price chart"
    )
    request_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        le=120,
        description="Timeout for a single HTTP request"
    )
    stock_cache_seconds: int = Field(
        default=60,
        ge=0,
        description="How long the equity table is reused before refetching"
    )
    refresh_interval_seconds: int = Field(
        default=60,
        ge=5,
        description="Cadence of the periodic price refresh"
    )
    user_agent: str = Field(
        default="Mozilla/5.0 (compatible; cebim/1.0)",
        description="User-Agent header sent to price sources"
    )


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
    records_sheet_name: str = Field(
        default="Records",
        description="Name of the sheet holding per-user records"
    )
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
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Minimum level for local structured logs"
    )
    home_currency: str = Field(
        default="TRY",
        min_length=3,
        max_length=3,
        description="Currency that costs and prices are expressed in"
    )
    default_user_id: str = Field(
        default="local",
        description="User id used when no login context is supplied"
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

    # Note: These are loaded lazily to allow partial configuration

    @property
    def market(self) -> MarketDataSettings:
        return MarketDataSettings()

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

    for name in ("market", "google_sheets", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
