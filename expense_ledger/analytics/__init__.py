"""Analytics package."""

from expense_ledger.analytics.engine import AnalyticsEngine, bucket_expenses

__all__ = ["AnalyticsEngine", "bucket_expenses"]
