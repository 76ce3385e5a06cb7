"""
Inventory ledger: total and available copies per catalog item.

Every change to available_copies is a single conditional UPDATE so the
read-check-write happens inside SQLite, never in Python.
"""

import sys

from errors import ItemNotFound, ItemUnavailable, OverCapacity, ValidationError, returns_result
from database import transaction
from models import CatalogItem, utc_now


def load_item(conn, item_id):
    row = conn.execute(
        'SELECT id, title, author, isbn, total_copies, available_copies FROM books WHERE id = ?',
        (item_id,),
    ).fetchone()
    if row is None:
        raise ItemNotFound(f'Book {item_id} not found')
    return CatalogItem.from_row(row)


def reserve(conn, item_id):
    """Take one copy out of circulation"""
    cur = conn.execute('''
        UPDATE books SET available_copies = available_copies - 1, updated_at = ?
        WHERE id = ? AND available_copies > 0
    ''', (utc_now().isoformat(), item_id))
    if cur.rowcount == 0:
        load_item(conn, item_id)
        raise ItemUnavailable()


def release(conn, item_id):
    """Put one copy back into circulation"""
    cur = conn.execute('''
        UPDATE books SET available_copies = available_copies + 1, updated_at = ?
        WHERE id = ? AND available_copies < total_copies
    ''', (utc_now().isoformat(), item_id))
    if cur.rowcount == 0:
        item = load_item(conn, item_id)
        raise OverCapacity(
            f'Book {item_id} already has {item.available_copies} of {item.total_copies} copies available'
        )


def borrowed_count(conn, item_id):
    row = conn.execute(
        "SELECT COUNT(*) AS n FROM borrow_records WHERE book_id = ? AND status = 'BORROWED'",
        (item_id,),
    ).fetchone()
    return row['n']


@returns_result
def is_item_referenced(conn, item_id):
    """True while a pending or borrowed record points at the item"""
    row = conn.execute(
        "SELECT 1 FROM borrow_records WHERE book_id = ? AND status IN ('PENDING', 'BORROWED') LIMIT 1",
        (item_id,),
    ).fetchone()
    return row is not None


@returns_result
def get_item(conn, item_id):
    return load_item(conn, item_id)


@returns_result
def add_item(conn, title, author, total_copies=1, isbn=None):
    if not title or not author:
        raise ValidationError('Title and author are required')
    if isinstance(total_copies, bool) or not isinstance(total_copies, int) or total_copies < 0:
        raise ValidationError('Total copies must be a whole number of zero or more')
    with transaction(conn):
        cur = conn.execute('''
            INSERT INTO books (title, author, isbn, total_copies, available_copies, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
        ''', (title, author, isbn, total_copies, total_copies, utc_now().isoformat()))
        return load_item(conn, cur.lastrowid)


@returns_result
def adjust_total_copies(conn, item_id, total_copies):
    """Change how many copies the library owns, moving available by the same delta"""
    if isinstance(total_copies, bool) or not isinstance(total_copies, int) or total_copies < 0:
        raise ValidationError('Total copies must be a whole number of zero or more')
    with transaction(conn):
        item = load_item(conn, item_id)
        out = borrowed_count(conn, item_id)
        if total_copies < out:
            raise ValidationError(f'{out} copies are currently borrowed, total cannot drop below that')
        available = max(0, min(total_copies, item.available_copies + (total_copies - item.total_copies)))
        conn.execute('''
            UPDATE books SET total_copies = ?, available_copies = ?, updated_at = ?
            WHERE id = ?
        ''', (total_copies, available, utc_now().isoformat(), item_id))
        return load_item(conn, item_id)


@returns_result
def reconcile_inventory(conn):
    """Recompute available copies from borrow records.

    available = total - borrowed. Returns one entry per corrected item.
    """
    corrections = []
    with transaction(conn):
        rows = conn.execute('''
            SELECT b.id, b.title, b.total_copies, b.available_copies,
                   COUNT(r.id) AS borrowed
            FROM books b
            LEFT JOIN borrow_records r ON r.book_id = b.id AND r.status = 'BORROWED'
            GROUP BY b.id
        ''').fetchall()
        for row in rows:
            expected = max(0, row['total_copies'] - row['borrowed'])
            if expected == row['available_copies']:
                continue
            conn.execute('UPDATE books SET available_copies = ?, updated_at = ? WHERE id = ?',
                         (expected, utc_now().isoformat(), row['id']))
            print(f"[reconcile] {row['title']}: available {row['available_copies']} -> {expected}",
                  file=sys.stderr, flush=True)
            corrections.append({
                'book_id': row['id'],
                'title': row['title'],
                'before': row['available_copies'],
                'after': expected,
                'borrowed': row['borrowed'],
            })
    return corrections
