"""Tests for the LedgerService orchestration boundary."""

import pytest
from uuid import uuid4

from expense_ledger.config import Settings
from expense_ledger.errors import (
    DuplicateResourceError,
    InvalidArgumentError,
    NotFoundError,
    StorageError,
    UnauthenticatedError,
)
from expense_ledger.models.audit import AuditEventType
from expense_ledger.orchestrator import LedgerService, create_app_components
from expense_ledger.services.storage import InMemoryLedgerStore


def _expense(sheet_id, day="2024-01-05", amount="10", category="food"):
    return {"sheet_id": str(sheet_id), "date": day, "amount": amount, "category": category}


async def _event_types(audit_storage):
    return [e.event_type for e in reversed(await audit_storage.get_recent_events())]


class TestIdentity:
    """Tests for the verified-identity requirement."""

    async def test_missing_identity_is_unauthenticated(self, service):
        with pytest.raises(UnauthenticatedError):
            await service.create_sheet(None, {"name": "Household"})

    async def test_every_read_needs_identity(self, service):
        with pytest.raises(UnauthenticatedError):
            await service.list_sheets(None)
        with pytest.raises(UnauthenticatedError):
            await service.analytics(None, uuid4(), month="2024-01")

    async def test_refusal_is_audited(self, service, audit_storage):
        """An unauthenticated call leaves an operation_rejected event."""
        correlation_id = uuid4()
        with pytest.raises(UnauthenticatedError):
            await service.create_sheet(None, {"name": "x"}, correlation_id=correlation_id)
        events = await audit_storage.get_events_by_correlation_id(correlation_id)
        assert [e.event_type for e in events] == [AuditEventType.OPERATION_REJECTED]
        assert events[0].error_code == "UNAUTHENTICATED"
        assert events[0].details == {"operation": "create_sheet"}


class TestSignIn:
    """Tests for sign in through the service."""

    async def test_first_user_claims_placeholder_data(self, service, store, ledger_settings):
        """Rows owned by the placeholder user move to the first real user."""
        placeholder = ledger_settings.placeholder_user_id
        legacy = await service.create_sheet(placeholder, {"name": "Legacy"})

        user = await service.sign_in({"subject": "sub-1", "email": "Me@Example.com"})

        assert user.email == "me@example.com"
        sheets = await service.list_sheets(user.id)
        assert [s.id for s in sheets] == [legacy.id]

    async def test_second_user_claims_nothing(self, service, ledger_settings):
        placeholder = ledger_settings.placeholder_user_id
        await service.sign_in({"subject": "sub-1", "email": "first@example.com"})
        await service.create_sheet(placeholder, {"name": "Legacy"})

        second = await service.sign_in({"subject": "sub-2", "email": "second@example.com"})
        assert await service.list_sheets(second.id) == []

    async def test_sign_in_audits(self, service, audit_storage):
        await service.sign_in({"subject": "sub-1", "email": "me@example.com"})
        assert AuditEventType.USER_SIGNED_IN in await _event_types(audit_storage)

    async def test_bad_identity_shape(self, service):
        with pytest.raises(InvalidArgumentError):
            await service.sign_in({"subject": "sub-1"})


class TestValidationBoundary:
    """Tests for converting shape errors."""

    async def test_bad_amount_is_invalid_argument(self, service, user_id):
        sheet = await service.create_sheet(user_id, {"name": "Household"})
        with pytest.raises(InvalidArgumentError) as exc:
            await service.create_expense(user_id, _expense(sheet.id, amount="lots"))
        assert "amount" in exc.value.message

    async def test_bad_date_is_invalid_argument(self, service, user_id):
        sheet = await service.create_sheet(user_id, {"name": "Household"})
        with pytest.raises(InvalidArgumentError):
            await service.create_expense(user_id, _expense(sheet.id, day="2024-02-30"))

    async def test_business_errors_pass_through(self, service, audit_storage, user_id):
        """Managers' errors reach the caller unchanged and are audited."""
        sheet = await service.create_sheet(user_id, {"name": "Household"})
        await service.create_expense(user_id, _expense(sheet.id))
        with pytest.raises(DuplicateResourceError):
            await service.create_expense(user_id, _expense(sheet.id, amount="3"))
        types = await _event_types(audit_storage)
        assert types[-1] == AuditEventType.OPERATION_REJECTED

    async def test_storage_errors_are_not_rewritten(self, service, monkeypatch, user_id):
        """A backend failure stays a StorageError."""

        async def broken(*args, **kwargs):
            raise StorageError("disk full")

        monkeypatch.setattr(service.sheets, "list_sheets", broken)
        with pytest.raises(StorageError):
            await service.list_sheets(user_id)


class TestOperations:
    """Tests for the cross-component operations."""

    async def test_delete_expense_purges_descriptions(self, service, user_id):
        sheet = await service.create_sheet(user_id, {"name": "Household"})
        expense = await service.create_expense(user_id, _expense(sheet.id))
        await service.save_description(
            user_id, {"expense_id": str(expense.id), "description": "lunch"}
        )
        await service.save_description(
            user_id,
            {"expense_id": str(expense.id), "column_name": "amount", "description": "cash"},
        )

        deleted = await service.delete_expense(user_id, expense.id)

        assert deleted.id == expense.id
        assert await service.list_descriptions(user_id) == []
        with pytest.raises(NotFoundError):
            await service.get_expense(user_id, expense.id)

    async def test_failed_description_purge_keeps_expense(self, service, monkeypatch, user_id):
        """If the descriptions cannot be purged, the expense is not deleted either."""
        sheet = await service.create_sheet(user_id, {"name": "Household"})
        expense = await service.create_expense(user_id, _expense(sheet.id))
        await service.save_description(
            user_id, {"expense_id": str(expense.id), "description": "lunch"}
        )

        async def broken(*args, **kwargs):
            raise StorageError("disk full")

        monkeypatch.setattr(service.descriptions, "delete_by_expense_id", broken)
        with pytest.raises(StorageError):
            await service.delete_expense(user_id, expense.id)
        monkeypatch.undo()

        assert (await service.get_expense(user_id, expense.id)).id == expense.id
        assert [d.description for d in await service.list_descriptions(user_id)] == ["lunch"]

    async def test_mutations_are_audited(self, service, audit_storage, user_id):
        sheet = await service.create_sheet(user_id, {"name": "Household"})
        await service.create_category(user_id, sheet.id, "Food")
        await service.rename_category(user_id, sheet.id, "food", "dining")
        await service.delete_category(user_id, sheet.id, "dining")
        await service.delete_sheet(user_id, sheet.id)

        assert await _event_types(audit_storage) == [
            AuditEventType.SHEET_CREATED,
            AuditEventType.CATEGORY_CREATED,
            AuditEventType.CATEGORY_RENAMED,
            AuditEventType.CATEGORY_DELETED,
            AuditEventType.SHEET_DELETED,
        ]

    async def test_category_round_trip(self, service, user_id):
        sheet = await service.create_sheet(user_id, {"name": "Household"})
        expense = await service.create_expense(user_id, _expense(sheet.id))
        assert await service.list_categories(user_id, sheet.id) == ["food"]

        await service.create_category(user_id, sheet.id, "food")
        assert await service.rename_category(user_id, sheet.id, "food", "Dining") == "dining"
        assert await service.delete_category(user_id, sheet.id, "dining") == 1
        assert (await service.get_expense(user_id, expense.id)).category == "uncategorized"

    async def test_list_categories_foreign_sheet(self, service, user_id, other_user_id):
        sheet = await service.create_sheet(user_id, {"name": "Household"})
        with pytest.raises(NotFoundError):
            await service.list_categories(other_user_id, sheet.id)

    async def test_update_expense_from_dict(self, service, user_id):
        sheet = await service.create_sheet(user_id, {"name": "Household"})
        expense = await service.create_expense(user_id, _expense(sheet.id))
        updated = await service.update_expense(user_id, expense.id, {
            "date": "2024-01-05",
            "amount": "12.00",
            "category": "food",
            "version": expense.version,
        })
        assert updated.version == expense.version + 1

    async def test_delete_expense_descriptions_by_column(self, service, user_id):
        sheet = await service.create_sheet(user_id, {"name": "Household"})
        expense = await service.create_expense(user_id, _expense(sheet.id))
        await service.save_description(
            user_id, {"expense_id": str(expense.id), "description": "lunch"}
        )
        assert await service.delete_expense_descriptions(
            user_id, expense.id, column_name="amount"
        ) == 0
        assert await service.delete_expense_descriptions(user_id, expense.id) == 1

    async def test_analytics_through_service(self, service, user_id):
        sheet = await service.create_sheet(user_id, {"name": "Household"})
        await service.create_expense(user_id, _expense(sheet.id, amount="10"))
        await service.create_expense(
            user_id, _expense(sheet.id, day="2024-01-20", amount="7", category="transport")
        )
        report = await service.analytics(user_id, sheet.id, month="2024-01")
        assert str(report.current_period_total) == "17"


class TestFactory:
    """Tests for create_app_components."""

    async def test_factory_with_injected_store(self):
        store = InMemoryLedgerStore()
        service = create_app_components(settings=Settings(), store=store)
        assert isinstance(service, LedgerService)
        assert service.store is store
        await service.start()
        sheet = await service.create_sheet(uuid4(), {"name": "Household"})
        assert sheet.version == 1
        await service.close()
