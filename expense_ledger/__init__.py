"""
Expense Ledger - Source Package

The consistency and aggregation engine behind a personal expense ledger:
users own sheets, sheets hold dated, categorized expenses, and totals per
category, day and month are derived from them.

DESIGN PRINCIPLES:
1. Money is Decimal, never float
2. Fail early, fail visibly, with a typed error
3. Multi-step changes commit together or not at all
4. Concurrent writers are detected, never silently overwritten
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Expense Ledger Team"
