"""
One-time placeholder data migration.

Before sign in existed, every row was owned by a sentinel "placeholder"
user (the all-zero UUID). The first real user to sign in inherits that
data. This runs at sign in only, never from steady-state sheet or expense
operations, and running it again changes nothing.
"""

from typing import Optional
from uuid import UUID

import structlog

from expense_ledger.config import LedgerSettings, get_settings
from expense_ledger.services.storage.interface import LedgerStoreInterface


logger = structlog.get_logger(__name__)

NOTHING_CLAIMED = {"sheets": 0, "expenses": 0, "descriptions": 0}


async def claim_placeholder_data(
    store: LedgerStoreInterface,
    user_id: UUID,
    settings: Optional[LedgerSettings] = None,
) -> dict[str, int]:
    """
    Reassign placeholder-owned rows to user_id if they are the only real user.

    Returns:
        Row counts moved per table (all zero when nothing was claimed)
    """
    settings = settings or get_settings().ledger
    placeholder = settings.placeholder_user_id
    if user_id == placeholder:
        return dict(NOTHING_CLAIMED)

    async with store.transaction() as tx:
        others = await tx.count_users(exclude=user_id)
        if await tx.get_user(placeholder) is not None:
            others -= 1
        if others > 0:
            return dict(NOTHING_CLAIMED)
        counts = await tx.reassign_owner(placeholder, user_id)

    if any(counts.values()):
        logger.info("placeholder_data_claimed", user_id=str(user_id), **counts)
    return counts
