"""
Analytics Engine

DESIGN DECISION: Analytics is a pure read over the Ledger Store.
It never mutates anything and never answers from anywhere but the store.

Bucketing rules:
- category totals: grouped by category, in first-encounter order
- daily totals: grouped by ISO date, ascending
- monthly totals: grouped by "YYYY-MM", in first-encounter order
Expenses are walked chronologically, so "first encounter" is the earliest
date in the window.

The current and previous period totals are NOT re-summed from the fetched
rows. They come from the store's own range-sum query, which is the
authoritative figure. The previous period is always the calendar month
before the window's start month, even for a year window.

All arithmetic is Decimal. No float anywhere.
"""

from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

from expense_ledger.config import LedgerSettings
from expense_ledger.ledger.base import LedgerComponent
from expense_ledger.ledger.categories import CategoryRegistry
from expense_ledger.models.analytics import AnalyticsReport
from expense_ledger.models.ledger import Expense
from expense_ledger.models.window import DateWindow
from expense_ledger.services.storage.interface import (
    LedgerStoreInterface,
    LedgerTransaction,
)


ZERO = Decimal("0")


def bucket_expenses(
    expenses: list[Expense],
) -> tuple[dict[str, Decimal], dict[str, Decimal], dict[str, Decimal]]:
    """
    Group expenses into (category_totals, daily_totals, monthly_totals).
    """
    by_category: dict[str, Decimal] = {}
    by_day: dict[str, Decimal] = {}
    by_month: dict[str, Decimal] = {}

    for expense in sorted(expenses, key=lambda e: (e.date, e.created_at)):
        by_category[expense.category] = by_category.get(expense.category, ZERO) + expense.amount

        day = expense.date.isoformat()
        by_day[day] = by_day.get(day, ZERO) + expense.amount

        month = expense.date.strftime("%Y-%m")
        by_month[month] = by_month.get(month, ZERO) + expense.amount

    daily = dict(sorted(by_day.items()))
    return by_category, daily, by_month


class AnalyticsEngine(LedgerComponent):
    """Turns a sheet's expenses into time-bucketed totals."""

    def __init__(
        self,
        store: LedgerStoreInterface,
        categories: Optional[CategoryRegistry] = None,
        settings: Optional[LedgerSettings] = None,
    ):
        super().__init__(store, settings)
        self._categories = categories or CategoryRegistry(store, self._settings)

    async def report(
        self,
        user_id: UUID,
        sheet_id: UUID,
        month: Optional[str] = None,
        year: Optional[str] = None,
        today: Optional[date] = None,
        tx: Optional[LedgerTransaction] = None,
    ) -> AnalyticsReport:
        """
        Build the analytics report for one sheet.

        Window resolution: month token, else year token, else the calendar
        month containing `today`.

        Raises:
            NotFoundError: If the sheet is not owned by user_id
            InvalidArgumentError: If a token is malformed
        """
        window = DateWindow.resolve(month=month, year=year, today=today)
        previous = window.previous_month()

        async with self._unit_of_work(tx) as tx:
            await self._require_sheet(tx, user_id, sheet_id)
            expenses = await tx.find_expenses(
                user_id,
                sheet_id=sheet_id,
                date_from=window.start,
                date_to=window.end,
            )
            current_total = await tx.sum_expenses(
                sheet_id, user_id, window.start, window.end
            )
            previous_total = await tx.sum_expenses(
                sheet_id, user_id, previous.start, previous.end
            )
            categories = await self._categories.list_categories(sheet_id, tx=tx)

        category_totals, daily_totals, monthly_totals = bucket_expenses(expenses)

        self._logger.debug(
            "analytics_computed",
            sheet_id=str(sheet_id),
            window=window.label,
            expenses=len(expenses),
        )
        return AnalyticsReport(
            sheet_id=sheet_id,
            window=window,
            category_totals=category_totals,
            daily_totals=daily_totals,
            monthly_totals=monthly_totals,
            current_period_total=current_total,
            previous_period_total=previous_total,
            categories=categories,
        )
