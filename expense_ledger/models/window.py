"""
Date Windows

A window is an inclusive date range: one calendar month or one calendar
year. Listings and analytics both select expenses through a window, so the
month/year token parsing lives here, once.
"""

import calendar
import re
from datetime import date
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict

from expense_ledger.errors import InvalidArgumentError


_MONTH_TOKEN = re.compile(r"^(\d{4})-(\d{1,2})$")
_YEAR_TOKEN = re.compile(r"^\d{4}$")


class WindowGranularity(str, Enum):
    MONTH = "month"
    YEAR = "year"


def month_start(year: int, month: int) -> date:
    return date(year, month, 1)


def month_end(year: int, month: int) -> date:
    return date(year, month, calendar.monthrange(year, month)[1])


class DateWindow(BaseModel):
    """Inclusive [start, end] date range with its granularity."""
    model_config = ConfigDict(frozen=True)

    start: date
    end: date
    granularity: WindowGranularity

    @classmethod
    def for_month(cls, year: int, month: int) -> "DateWindow":
        return cls(
            start=month_start(year, month),
            end=month_end(year, month),
            granularity=WindowGranularity.MONTH,
        )

    @classmethod
    def for_year(cls, year: int) -> "DateWindow":
        return cls(
            start=date(year, 1, 1),
            end=date(year, 12, 31),
            granularity=WindowGranularity.YEAR,
        )

    @classmethod
    def containing(cls, day: date) -> "DateWindow":
        """The calendar month that contains day."""
        return cls.for_month(day.year, day.month)

    @classmethod
    def from_month_token(cls, token: str) -> "DateWindow":
        """Parse a "YYYY-MM" month token."""
        match = _MONTH_TOKEN.match(str(token).strip())
        if not match:
            raise InvalidArgumentError(
                f"Month must look like YYYY-MM, got {token!r}"
            )
        year, month = int(match.group(1)), int(match.group(2))
        if not 1 <= month <= 12 or year < 1:
            raise InvalidArgumentError(f"No such month: {token!r}")
        return cls.for_month(year, month)

    @classmethod
    def from_year_token(cls, token: Union[str, int]) -> "DateWindow":
        """Parse a four-digit year token."""
        text = str(token).strip()
        if not _YEAR_TOKEN.match(text) or int(text) < 1:
            raise InvalidArgumentError(
                f"Year must be four digits, got {token!r}"
            )
        return cls.for_year(int(text))

    @classmethod
    def from_tokens(
        cls,
        month: Optional[str] = None,
        year: Optional[Union[str, int]] = None,
    ) -> Optional["DateWindow"]:
        """
        Month window, else year window, else None (unbounded).

        A blank token counts as absent.
        """
        if month is not None and str(month).strip():
            return cls.from_month_token(month)
        if year is not None and str(year).strip():
            return cls.from_year_token(year)
        return None

    @classmethod
    def resolve(
        cls,
        month: Optional[str] = None,
        year: Optional[Union[str, int]] = None,
        today: Optional[date] = None,
    ) -> "DateWindow":
        """Like from_tokens, but defaults to the current calendar month."""
        window = cls.from_tokens(month=month, year=year)
        if window is None:
            window = cls.containing(today or date.today())
        return window

    def previous_month(self) -> "DateWindow":
        """
        The calendar month before this window's start month.

        Raises:
            InvalidArgumentError: If the window starts at the first
                representable month (0001-01)
        """
        if self.start.month == 1:
            if self.start.year == date.min.year:
                raise InvalidArgumentError(f"No month precedes {self.label}")
            return DateWindow.for_month(self.start.year - 1, 12)
        return DateWindow.for_month(self.start.year, self.start.month - 1)

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end

    @property
    def label(self) -> str:
        if self.granularity == WindowGranularity.YEAR:
            return f"{self.start.year:04d}"
        return f"{self.start.year:04d}-{self.start.month:02d}"
