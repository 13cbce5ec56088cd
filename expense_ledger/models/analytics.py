"""
Analytics Models

Read-only views derived from the ledger. Nothing here is stored.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from expense_ledger.models.ledger import utcnow
from expense_ledger.models.window import DateWindow


ZERO = Decimal("0")


class AnalyticsReport(BaseModel):
    """
    Totals for one sheet over one window.

    category_totals and monthly_totals keep first-encounter order,
    daily_totals is ordered by ISO date.
    """

    sheet_id: UUID
    window: DateWindow
    generated_at: datetime = Field(default_factory=utcnow)

    category_totals: dict[str, Decimal] = Field(default_factory=dict)
    daily_totals: dict[str, Decimal] = Field(default_factory=dict)
    monthly_totals: dict[str, Decimal] = Field(default_factory=dict)

    current_period_total: Decimal = ZERO
    previous_period_total: Decimal = ZERO

    # Registry (or fallback) list, independent of the window
    categories: list[str] = Field(default_factory=list)

    @property
    def change(self) -> Decimal:
        return self.current_period_total - self.previous_period_total

    def filters(self) -> dict[str, Any]:
        """The resolved selection, for echoing back to callers."""
        return {
            "sheet_id": str(self.sheet_id),
            "granularity": self.window.granularity.value,
            "label": self.window.label,
            "start": self.window.start.isoformat(),
            "end": self.window.end.isoformat(),
        }
