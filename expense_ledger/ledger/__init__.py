"""
Ledger package.

The managers that keep sheets, expenses, categories and cell descriptions
mutually consistent. Each takes the store in its constructor and an
optional transaction per call.
"""

from expense_ledger.ledger.base import LedgerComponent
from expense_ledger.ledger.categories import (
    CategoryChange,
    CategoryRegistry,
    ordered_category_names,
)
from expense_ledger.ledger.descriptions import DescriptionManager
from expense_ledger.ledger.expenses import ExpenseManager
from expense_ledger.ledger.sheets import SheetManager
from expense_ledger.ledger.users import UserDirectory

__all__ = [
    "CategoryChange",
    "CategoryRegistry",
    "DescriptionManager",
    "ExpenseManager",
    "LedgerComponent",
    "SheetManager",
    "UserDirectory",
    "ordered_category_names",
]
