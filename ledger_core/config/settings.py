"""
Configuration Management for Ledger Core

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what external dependencies exist and
ensures all required configuration is validated at startup.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GoogleSheetsSettings(BaseSettings):
    """Remote store (Google Sheets) configuration."""

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
        description="ID of the spreadsheet holding the ledger tables"
    )

    # One worksheet per table
    wallets_sheet_name: str = Field(
        default="Wallets",
        description="Name of the sheet for wallets"
    )
    transactions_sheet_name: str = Field(
        default="Transactions",
        description="Name of the sheet for transactions"
    )
    budgets_sheet_name: str = Field(
        default="Budgets",
        description="Name of the sheet for budgets"
    )
    predictions_sheet_name: str = Field(
        default="BudgetPredictions",
        description="Name of the sheet for cached budget predictions"
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


class GeminiSettings(BaseSettings):
    """Gemini forecaster configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GEMINI_",
        extra="ignore"
    )

    api_key: str = Field(
        ...,
        description="Gemini API key"
    )
    model_name: str = Field(
        default="gemini-2.0-flash",
        description="Gemini model to use"
    )
    max_tokens: int = Field(
        default=2048,
        ge=100,
        le=8192,
        description="Maximum tokens in response"
    )
    temperature: float = Field(
        default=0.2,
        ge=0.0,
        le=1.0,
        description="Model temperature (lower = more deterministic)"
    )


class LedgerSettings(BaseSettings):
    """
    Ledger engine and prediction cache settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Prediction cache
    prediction_cache_ttl_hours: float = Field(
        default=6.0,
        gt=0,
        description="How long a cached prediction is served without regenerating"
    )
    prediction_cleanup_age_hours: float = Field(
        default=24.0,
        gt=0,
        description="Cache entries older than this are removed by cleanup"
    )

    # Forecaster retry policy
    forecast_max_retries: int = Field(
        default=2,
        ge=0,
        le=10,
        description="Retries after the first failed forecaster call"
    )
    forecast_backoff_base_seconds: float = Field(
        default=1.0,
        ge=0.0,
        description="First backoff delay"
    )
    forecast_backoff_factor: float = Field(
        default=2.0,
        ge=1.0,
        description="Multiplier applied to the delay after each retry"
    )
    forecast_backoff_cap_seconds: float = Field(
        default=10.0,
        ge=0.0,
        description="Upper bound for a single backoff delay"
    )

    # Ledger writes
    write_retry_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts for record deletes and compensating writes"
    )
    enforce_sufficient_balance: bool = Field(
        default=False,
        description="Reject expenses/transfers that would overdraw a wallet"
    )

    # Budgets
    budget_timezone: str = Field(
        default="UTC",
        description="Timezone used to decide which budget window 'today' falls in"
    )
    budget_warning_threshold: float = Field(
        default=0.75,
        gt=0.0,
        lt=1.0,
        description="Utilization at which a budget is flagged as a warning"
    )

    default_language: str = Field(
        default="id",
        pattern="^(en|id)$",
        description="Language used for forecaster prompts and summaries"
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
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def gemini(self) -> GeminiSettings:
        return GeminiSettings()

    @property
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()


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

    for name in ("google_sheets", "gemini", "ledger"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
