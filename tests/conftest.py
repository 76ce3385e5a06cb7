import os
import tempfile
from datetime import date, timedelta

import pytest

# app.py opens its database at import time; keep it away from the real one
os.environ['LIBRARY_DB'] = os.path.join(tempfile.mkdtemp(prefix='library-tests-'), 'library.db')
for name in ('SMTP_SERVER', 'SMTP_USERNAME', 'SMTP_PASSWORD', 'BREVO_API_KEY', 'LOAN_PERIOD_DAYS'):
    os.environ.pop(name, None)

import database  # noqa: E402
from borrowing import approve_borrow_request, create_borrow_request  # noqa: E402
from fines import initialize_default_configs  # noqa: E402
from inventory import add_item  # noqa: E402

TODAY = date(2025, 3, 10)


@pytest.fixture
def db_path(tmp_path):
    path = tmp_path / 'library.db'
    database.check_setup(path)
    conn = database.connect(path)
    try:
        initialize_default_configs(conn)
    finally:
        conn.close()
    return path


@pytest.fixture
def conn(db_path):
    conn = database.connect(db_path)
    yield conn
    conn.close()


@pytest.fixture
def user(conn):
    cur = conn.execute("INSERT INTO users (full_name, email) VALUES ('Ada Reader', 'ada@example.edu')")
    return cur.lastrowid


@pytest.fixture
def make_book(conn):
    def make(copies=1, title='Dune', author='Frank Herbert'):
        result = add_item(conn, title, author, copies)
        assert result.success, result.message
        return result.data
    return make


@pytest.fixture
def lend(conn):
    """Create and approve a request; the loan starts on `start` with the default 7 day period"""
    def lend(user_id, book_id, start=TODAY):
        record = create_borrow_request(conn, user_id, book_id).data
        result = approve_borrow_request(conn, record.id, today=start)
        assert result.success, result.message
        return result.data
    return lend


def days(n):
    return timedelta(days=n)


def available(conn, book_id):
    return conn.execute('SELECT available_copies FROM books WHERE id = ?', (book_id,)).fetchone()[0]


def record_row(conn, record_id):
    return conn.execute('SELECT * FROM borrow_records WHERE id = ?', (record_id,)).fetchone()
