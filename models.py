"""
Row models for the borrow engine.

Dates are handled at calendar-day granularity in UTC. Timestamps are stored
as ISO-8601 strings, due and return dates as YYYY-MM-DD.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from errors import ValidationError

END_OF_DAY = time(23, 59, 59, 999000)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_today() -> date:
    return utc_now().date()


def to_date(value) -> Optional[date]:
    """Normalize a date, datetime or ISO string to a calendar date in UTC.

    Aware datetimes are converted to UTC before the date is taken. Naive
    datetimes are assumed to already be UTC. Raises ValueError on a string
    that is not an ISO date.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if 'T' in text or ' ' in text:
        return to_date(datetime.fromisoformat(text))
    return date.fromisoformat(text)


def day_or_today(value) -> date:
    """Caller supplied as-of day, or today in UTC when none is given"""
    if value is None:
        return utc_today()
    try:
        return to_date(value)
    except ValueError:
        raise ValidationError(f'Not a valid date: {value!r}')


def to_datetime(value) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def to_money(value) -> Decimal:
    if value is None or value == '':
        return Decimal('0.00')
    return Decimal(str(value)).quantize(Decimal('0.01'))


class BorrowStatus(str, Enum):
    PENDING = 'PENDING'
    BORROWED = 'BORROWED'
    RETURNED = 'RETURNED'


@dataclass
class CatalogItem:
    id: int
    title: str
    author: str
    total_copies: int
    available_copies: int
    isbn: Optional[str] = None

    @classmethod
    def from_row(cls, row) -> 'CatalogItem':
        return cls(
            id=row['id'],
            title=row['title'],
            author=row['author'],
            total_copies=row['total_copies'],
            available_copies=row['available_copies'],
            isbn=row['isbn'],
        )

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'title': self.title,
            'author': self.author,
            'isbn': self.isbn,
            'total_copies': self.total_copies,
            'available_copies': self.available_copies,
        }


@dataclass
class BorrowRecord:
    id: int
    user_id: int
    book_id: int
    status: BorrowStatus
    borrow_date: datetime
    due_date: Optional[date] = None
    return_date: Optional[date] = None
    fine_amount: Decimal = field(default_factory=lambda: Decimal('0.00'))
    renewal_count: int = 0
    last_reminder_sent: Optional[datetime] = None
    borrowed_by: Optional[str] = None
    returned_by: Optional[str] = None
    notes: Optional[str] = None
    updated_at: Optional[datetime] = None
    updated_by: Optional[str] = None

    @classmethod
    def from_row(cls, row) -> 'BorrowRecord':
        return cls(
            id=row['id'],
            user_id=row['user_id'],
            book_id=row['book_id'],
            status=BorrowStatus(row['status']),
            borrow_date=to_datetime(row['borrow_date']),
            due_date=to_date(row['due_date']),
            return_date=to_date(row['return_date']),
            fine_amount=to_money(row['fine_amount']),
            renewal_count=row['renewal_count'] or 0,
            last_reminder_sent=to_datetime(row['last_reminder_sent']),
            borrowed_by=row['borrowed_by'],
            returned_by=row['returned_by'],
            notes=row['notes'],
            updated_at=to_datetime(row['updated_at']),
            updated_by=row['updated_by'],
        )

    @property
    def due_at(self) -> Optional[datetime]:
        """End of the due day, the last instant the book still counts as on time"""
        if self.due_date is None:
            return None
        return datetime.combine(self.due_date, END_OF_DAY, tzinfo=timezone.utc)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'user_id': self.user_id,
            'book_id': self.book_id,
            'status': self.status.value,
            'borrow_date': self.borrow_date.isoformat() if self.borrow_date else None,
            'due_date': self.due_date.isoformat() if self.due_date else None,
            'return_date': self.return_date.isoformat() if self.return_date else None,
            'fine_amount': str(self.fine_amount),
            'renewal_count': self.renewal_count,
            'last_reminder_sent': self.last_reminder_sent.isoformat() if self.last_reminder_sent else None,
            'borrowed_by': self.borrowed_by,
            'returned_by': self.returned_by,
            'notes': self.notes,
        }


@dataclass
class FineSummary:
    days_overdue: int
    fine_amount: Decimal

    @property
    def is_overdue(self) -> bool:
        return self.days_overdue > 0

    def to_dict(self) -> dict:
        return {
            'fine_amount': str(self.fine_amount),
            'days_overdue': self.days_overdue,
            'is_overdue': self.is_overdue,
        }


@dataclass
class SweepOutcome:
    record_id: int
    status: str  # sent, skipped, updated, failed
    detail: Optional[str] = None
    days_overdue: Optional[int] = None
    fine_amount: Optional[Decimal] = None
    recipient: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            'record_id': self.record_id,
            'status': self.status,
            'detail': self.detail,
            'days_overdue': self.days_overdue,
            'fine_amount': str(self.fine_amount) if self.fine_amount is not None else None,
            'recipient': self.recipient,
        }
