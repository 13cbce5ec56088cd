"""
Shared plumbing for the ledger managers.

DESIGN DECISION: Every manager operation takes an optional `tx`.
- Called without one, the operation opens (and commits) its own transaction.
- Called with one, it joins the caller's transaction and commits nothing.

This is how multi-step operations stay atomic: the orchestrator opens one
transaction and passes the same value through every step.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional
from uuid import UUID

import structlog

from expense_ledger.config import LedgerSettings, get_settings
from expense_ledger.errors import NotFoundError
from expense_ledger.models.ledger import Sheet
from expense_ledger.services.storage.interface import (
    LedgerStoreInterface,
    LedgerTransaction,
)


class LedgerComponent:
    """Base class holding the store, the ledger settings and a logger."""

    def __init__(
        self,
        store: LedgerStoreInterface,
        settings: Optional[LedgerSettings] = None,
    ):
        self._store = store
        self._settings = settings or get_settings().ledger
        self._logger = structlog.get_logger(type(self).__module__)

    @asynccontextmanager
    async def _unit_of_work(
        self,
        tx: Optional[LedgerTransaction] = None,
    ) -> AsyncIterator[LedgerTransaction]:
        if tx is not None:
            yield tx
            return
        async with self._store.transaction() as own:
            yield own

    @staticmethod
    async def _require_sheet(
        tx: LedgerTransaction,
        user_id: UUID,
        sheet_id: UUID,
        for_update: bool = False,
    ) -> Sheet:
        sheet = await tx.get_sheet(sheet_id, user_id, for_update=for_update)
        if sheet is None:
            raise NotFoundError("Sheet", sheet_id)
        return sheet
