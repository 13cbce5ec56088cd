"""Configuration package."""

from expense_ledger.config.settings import (
    PLACEHOLDER_USER_ID,
    AppSettings,
    DatabaseSettings,
    LedgerSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "PLACEHOLDER_USER_ID",
    "AppSettings",
    "DatabaseSettings",
    "LedgerSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
