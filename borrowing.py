"""
Borrow record lifecycle: PENDING -> BORROWED -> RETURNED.

A request is created PENDING with no due date and no effect on inventory.
Approval sets the due date and takes a copy, return computes the fine and
gives the copy back. Rejection deletes a PENDING request. Each transition
runs in one transaction so the record and the inventory change together.
"""

import sys
from datetime import timedelta

from errors import (
    ConcurrencyConflict,
    InvalidTransition,
    RecordNotFound,
    StorageError,
    ValidationError,
    returns_result,
)
from database import transaction
from fines import compute_fine, daily_fine_rate, loan_period_days
from inventory import load_item, release, reserve
from models import BorrowRecord, BorrowStatus, day_or_today, utc_now

RECORD_COLUMNS = '''
    r.id, r.user_id, r.book_id, r.status, r.borrow_date, r.due_date, r.return_date,
    r.fine_amount, r.renewal_count, r.last_reminder_sent, r.borrowed_by, r.returned_by,
    r.notes, r.updated_at, r.updated_by
'''


def _record_from_row(row):
    try:
        return BorrowRecord.from_row(row)
    except ValueError as e:
        raise StorageError(f"Borrow record {row['id']} has malformed data: {e}")


def _load_record(conn, record_id):
    row = conn.execute(f'SELECT {RECORD_COLUMNS} FROM borrow_records r WHERE r.id = ?', (record_id,)).fetchone()
    if row is None:
        raise RecordNotFound(f'Borrow record {record_id} not found')
    return _record_from_row(row)


def _user_email(conn, user_id):
    row = conn.execute('SELECT email FROM users WHERE id = ?', (user_id,)).fetchone()
    return row['email'] if row else None


@returns_result
def create_borrow_request(conn, user_id, item_id, now=None):
    """File a PENDING request. Availability is only checked at approval."""
    now = now or utc_now()
    with transaction(conn):
        load_item(conn, item_id)
        cur = conn.execute('''
            INSERT INTO borrow_records (user_id, book_id, borrow_date, status, fine_amount,
                                        renewal_count, updated_at, updated_by)
            VALUES (?, ?, ?, 'PENDING', '0.00', 0, ?, ?)
        ''', (user_id, item_id, now.isoformat(), now.isoformat(), _user_email(conn, user_id)))
        record = _load_record(conn, cur.lastrowid)
    print(f"[borrow request] record {record.id}: user {user_id} requested book {item_id}",
          file=sys.stderr, flush=True)
    return record


@returns_result
def approve_borrow_request(conn, record_id, today=None, borrowed_by=None):
    """Move a PENDING request to BORROWED and take one copy.

    The due date is today plus the configured loan period; the record keeps
    the calendar date and BorrowRecord.due_at gives the end of that day.
    """
    today = day_or_today(today)
    with transaction(conn):
        record = _load_record(conn, record_id)
        if record.status is not BorrowStatus.PENDING:
            raise InvalidTransition(f'Cannot approve a {record.status.value} record')

        reserve(conn, record.book_id)

        due_date = today + timedelta(days=loan_period_days(conn))
        actor = borrowed_by or _user_email(conn, record.user_id) or str(record.user_id)
        cur = conn.execute('''
            UPDATE borrow_records
            SET status = 'BORROWED', due_date = ?, borrowed_by = ?, updated_at = ?, updated_by = ?
            WHERE id = ? AND status = 'PENDING'
        ''', (due_date.isoformat(), actor, utc_now().isoformat(), actor, record_id))
        if cur.rowcount != 1:
            raise ConcurrencyConflict()
        record = _load_record(conn, record_id)
    print(f"[approve] record {record_id}: book {record.book_id} due {record.due_date}",
          file=sys.stderr, flush=True)
    return record


@returns_result
def reject_borrow_request(conn, record_id):
    """Delete a PENDING request. Inventory was never touched, so nothing to undo."""
    with transaction(conn):
        record = _load_record(conn, record_id)
        if record.status is not BorrowStatus.PENDING:
            raise InvalidTransition(f'Cannot reject a {record.status.value} record')
        cur = conn.execute("DELETE FROM borrow_records WHERE id = ? AND status = 'PENDING'", (record_id,))
        if cur.rowcount != 1:
            raise ConcurrencyConflict()
    print(f"[reject] record {record_id} deleted", file=sys.stderr, flush=True)


@returns_result
def return_book(conn, record_id, as_of=None, returned_by=None):
    """Close a BORROWED record, settle its fine and give the copy back.

    Returns a FineSummary so the caller can show the fine with the return.
    """
    as_of = day_or_today(as_of)
    with transaction(conn):
        record = _load_record(conn, record_id)
        if record.status is not BorrowStatus.BORROWED:
            raise InvalidTransition(f'Cannot return a {record.status.value} record')

        summary = compute_fine(record.due_date, as_of, daily_fine_rate(conn))
        actor = returned_by or _user_email(conn, record.user_id) or str(record.user_id)
        cur = conn.execute('''
            UPDATE borrow_records
            SET status = 'RETURNED', return_date = ?, fine_amount = ?, returned_by = ?,
                borrowed_by = COALESCE(borrowed_by, ?), updated_at = ?, updated_by = ?
            WHERE id = ? AND status = 'BORROWED'
        ''', (as_of.isoformat(), str(summary.fine_amount), actor, actor,
              utc_now().isoformat(), actor, record_id))
        if cur.rowcount != 1:
            raise ConcurrencyConflict()

        release(conn, record.book_id)
    if summary.is_overdue:
        print(f"[return] record {record_id}: {summary.days_overdue} day(s) late, fine ${summary.fine_amount}",
              file=sys.stderr, flush=True)
    else:
        print(f"[return] record {record_id}: returned on time", file=sys.stderr, flush=True)
    return summary


@returns_result
def get_borrow_record(conn, record_id):
    return _load_record(conn, record_id)


@returns_result
def list_borrow_records(conn, status=None, user_id=None):
    """Borrow records with user and book details, newest first"""
    clauses = []
    params = []
    if status:
        try:
            params.append(BorrowStatus(str(status).upper()).value)
        except ValueError:
            raise ValidationError(f'Unknown borrow status {status!r}')
        clauses.append('r.status = ?')
    if user_id is not None:
        clauses.append('r.user_id = ?')
        params.append(user_id)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ''
    rows = conn.execute(f'''
        SELECT {RECORD_COLUMNS},
               u.full_name AS user_name, u.email AS user_email,
               b.title AS book_title, b.author AS book_author
        FROM borrow_records r
        LEFT JOIN users u ON u.id = r.user_id
        LEFT JOIN books b ON b.id = r.book_id
        {where}
        ORDER BY r.borrow_date DESC, r.id DESC
    ''', params).fetchall()
    records = []
    for row in rows:
        entry = _record_from_row(row).to_dict()
        entry.update({
            'user_name': row['user_name'],
            'user_email': row['user_email'],
            'book_title': row['book_title'],
            'book_author': row['book_author'],
        })
        records.append(entry)
    return records
