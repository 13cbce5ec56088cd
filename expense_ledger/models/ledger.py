"""
Core Data Models for Expense Ledger

These models define the strict schemas for all data flowing through the ledger.
They are designed to:
1. Enforce primitive shape at runtime (types, lengths, decimal precision)
2. Provide clear validation error messages
3. Be serializable for storage and logging

Business invariants (ownership, uniqueness, versions) are NOT checked here.
They belong to the managers in expense_ledger.ledger, which see the store.

DESIGN DECISION: Money is always Decimal. A float never touches an amount.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)


INITIAL_VERSION = 1


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_category(name: str) -> str:
    """Categories are compared trimmed and lower-cased everywhere."""
    return name.strip().lower()


# =============================================================================
# STORED ENTITIES
# =============================================================================

class User(BaseModel):
    """
    A person who owns sheets.

    Created on the first successful external identity verification.
    The id never changes; name and picture are refreshed on sign in.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    email: str = Field(
        ...,
        min_length=3,
        max_length=255,
        description="Globally unique, stored lower-cased"
    )
    name: Optional[str] = Field(default=None, max_length=200)
    picture: Optional[str] = Field(
        default=None,
        max_length=1024,
        description="Profile picture URL"
    )
    provider_subject: Optional[str] = Field(
        default=None,
        max_length=255,
        description="Subject id at the identity provider (globally unique)"
    )
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator('email')
    @classmethod
    def lower_email(cls, v: str) -> str:
        return v.lower()

    @property
    def display_name(self) -> str:
        return self.name or self.email.split("@")[0]


class Sheet(BaseModel):
    """
    A named container scoping expenses and categories to one owner.

    Deleting a sheet deletes everything below it.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    name: str = Field(..., min_length=1, max_length=100)
    pin: Optional[str] = Field(default=None, max_length=20)
    has_pin: bool = False
    user_id: UUID
    created_at: datetime = Field(default_factory=utcnow)
    version: int = Field(default=INITIAL_VERSION, ge=INITIAL_VERSION)

    def public_view(self) -> dict[str, Any]:
        """Serializable form without the PIN itself."""
        return self.model_dump(mode="json", exclude={"pin"})


class SheetSummary(BaseModel):
    """
    A sheet as listed to its owner, with its derived expense count.

    Carries has_pin but never the PIN.
    """

    id: UUID
    name: str
    has_pin: bool = False
    user_id: UUID
    created_at: datetime
    version: int = Field(default=INITIAL_VERSION, ge=INITIAL_VERSION)
    expense_count: int = Field(default=0, ge=0)

    @classmethod
    def from_sheet(cls, sheet: Sheet, expense_count: int) -> "SheetSummary":
        return cls(**sheet.model_dump(exclude={"pin"}), expense_count=expense_count)


class Expense(BaseModel):
    """
    One dated, categorized money entry on a sheet.

    Amount may be any sign. Zero amounts are placeholder rows and are
    exempt from the one-expense-per-date-and-category rule.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    date: date
    amount: Decimal = Field(..., max_digits=14, decimal_places=2)
    category: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(
        default=None,
        max_length=1000,
        description="Free-text note"
    )
    user_id: UUID
    sheet_id: UUID
    created_at: datetime = Field(default_factory=utcnow)
    version: int = Field(default=INITIAL_VERSION, ge=INITIAL_VERSION)

    @field_validator('category')
    @classmethod
    def lower_category(cls, v: str) -> str:
        return normalize_category(v)

    @property
    def is_placeholder(self) -> bool:
        return self.amount == 0


class SheetCategory(BaseModel):
    """A curated category name on a sheet, with its display order."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    sheet_id: UUID
    name: str = Field(..., min_length=1, max_length=100)
    display_order: Optional[int] = None
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator('name')
    @classmethod
    def lower_name(cls, v: str) -> str:
        return normalize_category(v)


class ColumnDescription(BaseModel):
    """
    Free-text annotation on one (expense, column) cell.

    Linked to the expense by id only. Whoever deletes an expense
    must delete its descriptions too.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    expense_id: UUID
    column_name: str = Field(default="notes", min_length=1, max_length=50)
    description: str = Field(..., min_length=1)
    user_id: UUID
    created_at: datetime = Field(default_factory=utcnow)


# =============================================================================
# VALIDATED INPUTS
# =============================================================================

class VerifiedIdentity(BaseModel):
    """What the identity provider vouched for after a successful sign in."""
    model_config = ConfigDict(str_strip_whitespace=True)

    subject: Optional[str] = Field(default=None, max_length=255)
    email: str = Field(..., min_length=3, max_length=255)
    name: Optional[str] = Field(default=None, max_length=200)
    picture: Optional[str] = Field(default=None, max_length=1024)


class SheetInput(BaseModel):
    """Fields accepted when creating or updating a sheet."""
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., max_length=200)
    pin: Optional[str] = Field(default=None, max_length=20)
    version: Optional[int] = Field(
        default=None,
        description="Version the caller last read (updates only)"
    )


class ExpenseInput(BaseModel):
    """Fields accepted when creating an expense."""
    model_config = ConfigDict(str_strip_whitespace=True)

    sheet_id: UUID
    date: date
    amount: Decimal = Field(..., max_digits=14, decimal_places=2)
    category: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=1000)


class ExpenseUpdate(BaseModel):
    """
    Fields accepted when updating an expense.

    version is the concurrency version the caller read. When omitted, the
    version read inside the update's own transaction is used, so a racing
    commit is still detected at the store boundary.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    date: date
    amount: Decimal = Field(..., max_digits=14, decimal_places=2)
    category: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=1000)
    version: Optional[int] = None


class DescriptionInput(BaseModel):
    """Fields accepted when saving a cell description."""
    model_config = ConfigDict(str_strip_whitespace=True)

    expense_id: UUID
    column_name: Optional[str] = Field(default=None, max_length=50)
    description: str
