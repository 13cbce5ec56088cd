"""
Configuration Management for Expense Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what the ledger depends on and
ensures all required configuration is validated at startup.
"""

from functools import lru_cache
from uuid import UUID

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


PLACEHOLDER_USER_ID = UUID("00000000-0000-0000-0000-000000000000")


class DatabaseSettings(BaseSettings):
    """Ledger store database configuration."""

    model_config = SettingsConfigDict(
        env_prefix="DATABASE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    url: str = Field(
        default="sqlite+aiosqlite:///./ledger.db",
        description="SQLAlchemy async database URL"
    )
    echo: bool = Field(
        default=False,
        description="Echo emitted SQL (debugging only)"
    )
    connect_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts when opening the store before giving up"
    )

    @field_validator('url')
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Require a URL SQLAlchemy can parse into dialect+driver."""
        if "://" not in v:
            raise ValueError(f"Not a database URL: {v!r}")
        return v


class LedgerSettings(BaseSettings):
    """Business defaults for sheets, categories and descriptions."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    default_column_name: str = Field(
        default="notes",
        description="Column a description is attached to when none is given"
    )
    uncategorized_category: str = Field(
        default="uncategorized",
        description="Category expenses fall back to when theirs is deleted"
    )
    sheet_name_max_length: int = Field(default=100, ge=1)
    category_name_max_length: int = Field(default=100, ge=1)
    column_name_max_length: int = Field(default=50, ge=1)

    seed_default_categories: bool = Field(
        default=False,
        description="Register the default categories on every new sheet"
    )
    default_categories: str = Field(
        default="food,transport,utilities,entertainment,shopping,"
                "healthcare,education,savings,other",
        description="Comma-separated list of categories seeded on new sheets"
    )

    placeholder_user_id: UUID = Field(
        default=PLACEHOLDER_USER_ID,
        description="Owner of demo data claimed by the first real user"
    )

    @property
    def default_categories_list(self) -> list[str]:
        """Get default categories as a normalized list."""
        seen: list[str] = []
        for name in self.default_categories.split(","):
            name = name.strip().lower()
            if name and name not in seen:
                seen.append(name)
        return seen


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

    # Sub-settings are loaded lazily to allow partial configuration

    @property
    def database(self) -> DatabaseSettings:
        return DatabaseSettings()

    @property
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()

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

    for name in ("database", "ledger", "app"):
        try:
            _ = getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
