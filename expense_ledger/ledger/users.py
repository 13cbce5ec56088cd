"""
User Directory

Maps a verified external identity to a ledger user. Token verification
itself happens outside the ledger; this only sees what was vouched for.
"""

from typing import Optional
from uuid import UUID

from expense_ledger.errors import NotFoundError
from expense_ledger.ledger.base import LedgerComponent
from expense_ledger.models.ledger import User, VerifiedIdentity
from expense_ledger.services.storage.interface import LedgerTransaction


class UserDirectory(LedgerComponent):
    """Find-or-create users on sign in."""

    async def sign_in(
        self,
        identity: VerifiedIdentity,
        tx: Optional[LedgerTransaction] = None,
    ) -> tuple[User, bool]:
        """
        Resolve a verified identity to a user.

        Lookup order: provider subject, then email (linking the subject to
        that user), then a new user. Name and picture refresh every time.

        Returns:
            (user, created)
        """
        email = identity.email.strip().lower()

        async with self._unit_of_work(tx) as tx:
            user = None
            if identity.subject:
                user = await tx.find_user_by_subject(identity.subject)
            if user is None:
                user = await tx.find_user_by_email(email)

            if user is None:
                stored = await tx.insert_user(User(
                    email=email,
                    name=identity.name,
                    picture=identity.picture,
                    provider_subject=identity.subject,
                ))
                created = True
            else:
                stored = await tx.update_user(user.model_copy(update={
                    "name": identity.name or user.name,
                    "picture": identity.picture or user.picture,
                    "provider_subject": user.provider_subject or identity.subject,
                }))
                created = False

        self._logger.info("user_signed_in", user_id=str(stored.id), created=created)
        return stored, created

    async def get(
        self,
        user_id: UUID,
        tx: Optional[LedgerTransaction] = None,
    ) -> User:
        async with self._unit_of_work(tx) as tx:
            user = await tx.get_user(user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        return user
