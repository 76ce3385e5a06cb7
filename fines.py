"""
Fine calculation and the admin-editable fine policy.

compute_fine is pure. The policy values live in the system_config table and
are read fresh on every call, so an admin change applies to the next return
or sweep without a restart.
"""

import os
import sys
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from errors import ValidationError, returns_result
from database import transaction
from models import FineSummary, to_date, utc_now

# Configuration keys
DAILY_FINE_AMOUNT = 'daily_fine_amount'
BORROW_DURATION_DAYS = 'borrow_duration_days'

DEFAULT_DAILY_FINE = Decimal('1.00')
MAX_DAILY_FINE = Decimal('1000.00')
DEFAULT_LOAN_PERIOD_DAYS = int(os.environ.get('LOAN_PERIOD_DAYS', 7))

CENTS = Decimal('0.01')


def round_money(amount) -> Decimal:
    return Decimal(amount).quantize(CENTS, rounding=ROUND_HALF_UP)


def compute_fine(due_date, as_of, daily_rate) -> FineSummary:
    """Overdue days and fine owed for a book due on due_date, as of as_of.

    Both sides are compared as calendar dates, so a book due today is not
    overdue no matter what time of day it is returned.
    """
    try:
        rate = Decimal(str(daily_rate))
    except (InvalidOperation, ValueError):
        raise ValidationError(f'Daily fine rate must be a number, got {daily_rate!r}')
    if not rate.is_finite() or rate < 0:
        raise ValidationError(f'Daily fine rate must be zero or more, got {daily_rate!r}')

    due = to_date(due_date)
    if due is None:
        return FineSummary(days_overdue=0, fine_amount=Decimal('0.00'))
    days_overdue = max(0, (to_date(as_of) - due).days)
    if days_overdue == 0:
        return FineSummary(days_overdue=0, fine_amount=Decimal('0.00'))
    try:
        fine_amount = round_money(days_overdue * rate)
    except InvalidOperation:
        raise ValidationError(f'Fine for {days_overdue} day(s) at {rate} per day is out of range')
    return FineSummary(days_overdue=days_overdue, fine_amount=fine_amount)


def parse_fine_rate(value) -> Decimal:
    """Validate an admin supplied daily fine amount"""
    try:
        amount = Decimal(str(value).strip())
        rate = round_money(amount) if amount.is_finite() else None
    except (InvalidOperation, ValueError):
        raise ValidationError(f'Fine amount must be a number, got {value!r}')
    if rate is None or rate <= 0:
        raise ValidationError('Fine amount must be greater than zero')
    if rate > MAX_DAILY_FINE:
        raise ValidationError(f'Fine amount cannot exceed {MAX_DAILY_FINE} per day')
    return rate


def get_config_value(conn, key, default=None):
    row = conn.execute('SELECT value FROM system_config WHERE key = ?', (key,)).fetchone()
    if row is None or row['value'] in (None, ''):
        return default
    return row['value']


def set_config_value(conn, key, value, description=None, updated_by=None):
    now = utc_now().isoformat()
    with transaction(conn):
        conn.execute('''
            INSERT INTO system_config (key, value, description, updated_at, updated_by, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
                value = excluded.value,
                description = COALESCE(excluded.description, system_config.description),
                updated_at = excluded.updated_at,
                updated_by = excluded.updated_by
        ''', (key, str(value), description, now, updated_by, now))


def daily_fine_rate(conn) -> Decimal:
    """Current daily fine, falling back to the default for unusable stored values"""
    raw = get_config_value(conn, DAILY_FINE_AMOUNT)
    if raw is None:
        return DEFAULT_DAILY_FINE
    try:
        return parse_fine_rate(raw)
    except ValidationError:
        print(f"[fine config] Ignoring invalid {DAILY_FINE_AMOUNT} {raw!r}, using {DEFAULT_DAILY_FINE}",
              file=sys.stderr, flush=True)
        return DEFAULT_DAILY_FINE


def loan_period_days(conn) -> int:
    raw = get_config_value(conn, BORROW_DURATION_DAYS)
    if raw is None:
        return DEFAULT_LOAN_PERIOD_DAYS
    try:
        days = int(raw)
    except ValueError:
        days = 0
    if days <= 0:
        print(f"[fine config] Ignoring invalid {BORROW_DURATION_DAYS} {raw!r}, using {DEFAULT_LOAN_PERIOD_DAYS}",
              file=sys.stderr, flush=True)
        return DEFAULT_LOAN_PERIOD_DAYS
    return days


@returns_result
def get_daily_fine_rate(conn):
    return daily_fine_rate(conn)


@returns_result
def set_daily_fine_rate(conn, amount, updated_by=None):
    rate = parse_fine_rate(amount)
    set_config_value(conn, DAILY_FINE_AMOUNT, rate, 'Daily fine amount for overdue books', updated_by)
    print(f"[fine config] Daily fine set to {rate} by {updated_by or 'unknown'}", file=sys.stderr, flush=True)
    return rate


@returns_result
def get_loan_period_days(conn):
    return loan_period_days(conn)


@returns_result
def set_loan_period_days(conn, days, updated_by=None):
    if isinstance(days, bool):
        raise ValidationError('Loan period must be a whole number of days')
    try:
        days = int(days)
    except (TypeError, ValueError):
        raise ValidationError('Loan period must be a whole number of days')
    if days <= 0:
        raise ValidationError('Loan period must be at least one day')
    set_config_value(conn, BORROW_DURATION_DAYS, days, 'How many days a book can be borrowed', updated_by)
    return days


@returns_result
def initialize_default_configs(conn):
    """Insert default policy rows that are missing, leaving existing ones alone"""
    now = utc_now().isoformat()
    defaults = [
        (DAILY_FINE_AMOUNT, str(DEFAULT_DAILY_FINE), 'Daily fine amount for overdue books'),
        (BORROW_DURATION_DAYS, str(DEFAULT_LOAN_PERIOD_DAYS), 'How many days a book can be borrowed'),
    ]
    with transaction(conn):
        for key, value, description in defaults:
            conn.execute('''
                INSERT INTO system_config (key, value, description, updated_at, updated_by, created_at)
                VALUES (?, ?, ?, ?, 'system', ?)
                ON CONFLICT(key) DO NOTHING
            ''', (key, value, description, now, now))
