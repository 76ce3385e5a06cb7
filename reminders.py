"""
Batch sweeps over BORROWED records: due-soon reminders, overdue notices and
automatic overdue fines.

The sweeps are triggered from outside (an admin button or a cron job hitting
the Flask route) and are safe to run repeatedly:
- a record already reminded on the current calendar day is skipped
- the automatic fine is written only while the stored fine is still zero,
  with the check repeated inside the UPDATE, so a record returned or fined
  mid-sweep is left alone

A failure on one record is logged and reported in that record's outcome;
only a failure to query the store fails the whole sweep.
"""

import sqlite3
import sys
from datetime import timedelta, timezone

from errors import LibraryError, ValidationError, returns_result
from fines import compute_fine, daily_fine_rate, parse_fine_rate
from models import SweepOutcome, day_or_today, to_date, to_money, utc_now
from notifications import send_email_with_fallback

DUE_SOON_DAYS = 2

REMINDER_COLUMNS = '''
    r.id, r.due_date, r.fine_amount, r.last_reminder_sent,
    u.full_name AS user_name, u.email AS user_email,
    b.title AS book_title, b.author AS book_author
'''

ZERO_FINE = "(fine_amount IS NULL OR CAST(fine_amount AS REAL) = 0)"


def _nice_date(value):
    return value.strftime('%A, %B %d, %Y')


def due_soon_message(row, today):
    due = to_date(row['due_date'])
    days_left = (due - today).days
    subject = f"Library Book Return Reminder - {row['book_title']}"
    body = f"""Dear {row['user_name'] or 'reader'},

This is a friendly reminder that your borrowed book is due for return soon.

Book Details:
- Title: {row['book_title']}
- Author: {row['book_author']}
- Due Date: {_nice_date(due)}
- Days Remaining: {days_left} day(s)

Please return the book by the due date to avoid late fees.

Thank you for using the library."""
    return subject, body


def overdue_message(row, today, rate):
    due = to_date(row['due_date'])
    days_overdue = (today - due).days
    subject = f"Overdue Book Notice - {row['book_title']}"
    body = f"""Dear {row['user_name'] or 'reader'},

Your borrowed book is overdue and needs to be returned.

Book Details:
- Title: {row['book_title']}
- Author: {row['book_author']}
- Original Due Date: {_nice_date(due)}
- Days Overdue: {days_overdue} day(s)
- Current Fine Amount: ${to_money(row['fine_amount'])}

Late fees accrue at ${rate} per day until the book is returned.

Thank you for your prompt attention."""
    return subject, body


def reminded_today(last_sent, now):
    """True when last_sent falls on the same calendar day as now"""
    if not last_sent:
        return False
    return to_date(last_sent) == to_date(now)


def _notify(notifier, recipient, subject, body):
    try:
        result = notifier(recipient, subject, body)
    except Exception as e:
        return False, str(e)
    if isinstance(result, dict):
        return bool(result.get('success')), result.get('error')
    return bool(result), None


def _send_reminder(conn, row, notifier, now, compose):
    record_id = row['id']
    recipient = row['user_email']
    try:
        if reminded_today(row['last_reminder_sent'], now):
            return SweepOutcome(record_id, 'skipped', 'Reminder already sent today', recipient=recipient)
        if not recipient:
            raise ValidationError(f'No email address on file for record {record_id}')

        subject, body = compose(row, to_date(now))

        # Claim today's reminder before sending; a concurrent sweep then sees rowcount 0
        stamp = (now.astimezone(timezone.utc) if now.tzinfo else now).isoformat()
        cur = conn.execute('''
            UPDATE borrow_records SET last_reminder_sent = ?, updated_at = ?
            WHERE id = ? AND status = 'BORROWED'
              AND (last_reminder_sent IS NULL OR substr(last_reminder_sent, 1, 10) <> ?)
        ''', (stamp, stamp, record_id, to_date(now).isoformat()))
        if cur.rowcount == 0:
            return SweepOutcome(record_id, 'skipped', 'Reminder already sent today', recipient=recipient)

        sent, error = _notify(notifier, recipient, subject, body)
        if not sent:
            conn.execute('''
                UPDATE borrow_records SET last_reminder_sent = ?
                WHERE id = ? AND last_reminder_sent = ?
            ''', (row['last_reminder_sent'], record_id, stamp))
            print(f"[reminders] record {record_id}: send to {recipient} failed: {error}",
                  file=sys.stderr, flush=True)
            return SweepOutcome(record_id, 'failed', error or 'Notification failed', recipient=recipient)
        return SweepOutcome(record_id, 'sent', recipient=recipient)
    except (LibraryError, ValueError, sqlite3.Error) as e:
        print(f"[reminders] record {record_id}: skipped after error: {e}", file=sys.stderr, flush=True)
        return SweepOutcome(record_id, 'failed', str(e), recipient=recipient)


def _report(tag, outcomes):
    counts = {}
    for outcome in outcomes:
        counts[outcome.status] = counts.get(outcome.status, 0) + 1
    summary = ', '.join(f'{n} {status}' for status, n in sorted(counts.items())) or 'nothing to do'
    print(f"[{tag}] {len(outcomes)} record(s): {summary}", file=sys.stderr, flush=True)


@returns_result
def run_due_soon_sweep(conn, notifier=None, now=None):
    """Remind borrowers whose book is due today or within the next two days"""
    notifier = notifier or send_email_with_fallback
    now = now or utc_now()
    today = to_date(now)
    rows = conn.execute(f'''
        SELECT {REMINDER_COLUMNS}
        FROM borrow_records r
        LEFT JOIN users u ON u.id = r.user_id
        LEFT JOIN books b ON b.id = r.book_id
        WHERE r.status = 'BORROWED'
          AND r.due_date IS NOT NULL
          AND r.due_date >= ? AND r.due_date <= ?
        ORDER BY r.due_date, r.id
    ''', (today.isoformat(), (today + timedelta(days=DUE_SOON_DAYS)).isoformat())).fetchall()

    outcomes = [_send_reminder(conn, row, notifier, now, due_soon_message) for row in rows]
    _report('due soon sweep', outcomes)
    return outcomes


@returns_result
def run_overdue_notice_sweep(conn, notifier=None, now=None):
    """Send overdue notices, at most one per record per day"""
    notifier = notifier or send_email_with_fallback
    now = now or utc_now()
    rate = daily_fine_rate(conn)
    rows = conn.execute(f'''
        SELECT {REMINDER_COLUMNS}
        FROM borrow_records r
        LEFT JOIN users u ON u.id = r.user_id
        LEFT JOIN books b ON b.id = r.book_id
        WHERE r.status = 'BORROWED'
          AND r.due_date IS NOT NULL
          AND r.due_date < ?
        ORDER BY r.due_date, r.id
    ''', (to_date(now).isoformat(),)).fetchall()

    def compose(row, today):
        return overdue_message(row, today, rate)

    outcomes = [_send_reminder(conn, row, notifier, now, compose) for row in rows]
    _report('overdue notice sweep', outcomes)
    return outcomes


def _write_fines(conn, rows, rate, today, guard):
    outcomes = []
    for row in rows:
        record_id = row['id']
        try:
            summary = compute_fine(row['due_date'], today, rate)
            cur = conn.execute(f'''
                UPDATE borrow_records
                SET fine_amount = ?, updated_at = ?, updated_by = 'system'
                WHERE id = ? AND status = 'BORROWED' {guard}
            ''', (str(summary.fine_amount), utc_now().isoformat(), record_id))
        except (LibraryError, ValueError, sqlite3.Error) as e:
            print(f"[fine sweep] record {record_id}: skipped after error: {e}", file=sys.stderr, flush=True)
            outcomes.append(SweepOutcome(record_id, 'failed', str(e)))
            continue
        if cur.rowcount == 0:
            outcomes.append(SweepOutcome(record_id, 'skipped', 'Record changed during sweep'))
            continue
        outcomes.append(SweepOutcome(
            record_id, 'updated',
            detail=f"previous fine {to_money(row['fine_amount'])}",
            days_overdue=summary.days_overdue,
            fine_amount=summary.fine_amount,
        ))
    return outcomes


@returns_result
def run_overdue_fine_sweep(conn, custom_rate=None, today=None):
    """Assign a fine to overdue records that do not have one yet.

    A fine is set once by the sweep and not escalated on later runs; the
    return path or an explicit recalculation changes it after that.
    """
    rate = parse_fine_rate(custom_rate) if custom_rate is not None else daily_fine_rate(conn)
    today = day_or_today(today)
    rows = conn.execute(f'''
        SELECT id, due_date, fine_amount
        FROM borrow_records
        WHERE status = 'BORROWED'
          AND due_date IS NOT NULL
          AND due_date < ?
          AND {ZERO_FINE}
        ORDER BY due_date, id
    ''', (today.isoformat(),)).fetchall()

    outcomes = _write_fines(conn, rows, rate, today, f'AND {ZERO_FINE}')
    _report('fine sweep', outcomes)
    return outcomes


@returns_result
def recalculate_overdue_fines(conn, custom_rate=None, today=None):
    """Admin override: recompute the fine of every overdue BORROWED record.

    RETURNED records keep the fine settled at return.
    """
    rate = parse_fine_rate(custom_rate) if custom_rate is not None else daily_fine_rate(conn)
    today = day_or_today(today)
    rows = conn.execute('''
        SELECT id, due_date, fine_amount
        FROM borrow_records
        WHERE status = 'BORROWED'
          AND due_date IS NOT NULL
          AND due_date < ?
        ORDER BY due_date, id
    ''', (today.isoformat(),)).fetchall()

    print(f"[fine recalculation] {len(rows)} overdue record(s) at ${rate} per day", file=sys.stderr, flush=True)
    outcomes = _write_fines(conn, rows, rate, today, '')
    _report('fine recalculation', outcomes)
    return outcomes


@returns_result
def get_reminder_stats(conn, now=None):
    now = now or utc_now()
    today = to_date(now)
    due_soon = conn.execute('''
        SELECT COUNT(*) AS n FROM borrow_records
        WHERE status = 'BORROWED' AND due_date IS NOT NULL AND due_date >= ? AND due_date <= ?
    ''', (today.isoformat(), (today + timedelta(days=DUE_SOON_DAYS)).isoformat())).fetchone()['n']
    overdue = conn.execute('''
        SELECT COUNT(*) AS n FROM borrow_records
        WHERE status = 'BORROWED' AND due_date IS NOT NULL AND due_date < ?
    ''', (today.isoformat(),)).fetchone()['n']
    sent_today = conn.execute('''
        SELECT COUNT(*) AS n FROM borrow_records
        WHERE last_reminder_sent IS NOT NULL AND substr(last_reminder_sent, 1, 10) = ?
    ''', (today.isoformat(),)).fetchone()['n']
    return {'due_soon': due_soon, 'overdue': overdue, 'reminders_sent_today': sent_today}
