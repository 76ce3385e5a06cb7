"""
SQLite storage for the borrow engine: connections, transactions and schema.
"""

import contextlib
import os
import pathlib
import sqlite3
import sys

from errors import storage_error

# Database path configuration
DB_PATH = pathlib.Path(os.environ.get('LIBRARY_DB', pathlib.Path(__file__).parent / 'library.db'))

# Seconds a writer waits for the lock before giving up with a conflict
BUSY_TIMEOUT = float(os.environ.get('LIBRARY_DB_TIMEOUT', 5))

SCHEMA = '''
    CREATE TABLE IF NOT EXISTS users (
        id INTEGER PRIMARY KEY,
        full_name TEXT NOT NULL,
        email TEXT UNIQUE,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP
    );

    CREATE TABLE IF NOT EXISTS books (
        id INTEGER PRIMARY KEY,
        title TEXT NOT NULL,
        author TEXT NOT NULL,
        isbn TEXT,
        total_copies INTEGER NOT NULL DEFAULT 1 CHECK (total_copies >= 0),
        available_copies INTEGER NOT NULL DEFAULT 0,
        updated_at TEXT,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP,
        CHECK (available_copies >= 0 AND available_copies <= total_copies)
    );

    CREATE TABLE IF NOT EXISTS borrow_records (
        id INTEGER PRIMARY KEY,
        user_id INTEGER NOT NULL,
        book_id INTEGER NOT NULL,
        borrow_date TEXT NOT NULL,
        due_date DATE,
        return_date DATE,
        status TEXT NOT NULL DEFAULT 'PENDING'
            CHECK (status IN ('PENDING', 'BORROWED', 'RETURNED')),
        borrowed_by TEXT,
        returned_by TEXT,
        fine_amount TEXT DEFAULT '0.00',
        notes TEXT,
        renewal_count INTEGER NOT NULL DEFAULT 0,
        last_reminder_sent TEXT,
        updated_at TEXT,
        updated_by TEXT,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP,
        CHECK ((status = 'PENDING') = (due_date IS NULL)),
        CHECK ((status = 'RETURNED') = (return_date IS NOT NULL)),
        FOREIGN KEY (user_id) REFERENCES users(id),
        FOREIGN KEY (book_id) REFERENCES books(id)
    );

    CREATE INDEX IF NOT EXISTS borrow_records_status_due
        ON borrow_records (status, due_date);

    CREATE INDEX IF NOT EXISTS borrow_records_book
        ON borrow_records (book_id, status);

    CREATE TABLE IF NOT EXISTS system_config (
        id INTEGER PRIMARY KEY,
        key TEXT NOT NULL UNIQUE,
        value TEXT NOT NULL,
        description TEXT,
        updated_at TEXT,
        updated_by TEXT,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP
    );
'''

SCHEMA_CHECKS = [
    ('users', ['id', 'full_name', 'email']),
    ('books', ['id', 'title', 'author', 'total_copies', 'available_copies']),
    ('borrow_records', ['id', 'user_id', 'book_id', 'borrow_date', 'due_date', 'return_date',
                        'status', 'fine_amount', 'renewal_count', 'last_reminder_sent']),
    ('system_config', ['key', 'value']),
]


def connect(db_path=None, timeout=None):
    """Open a connection in autocommit mode; writes go through transaction()"""
    conn = sqlite3.connect(
        str(db_path or DB_PATH),
        timeout=BUSY_TIMEOUT if timeout is None else timeout,
        isolation_level=None,
    )
    conn.row_factory = sqlite3.Row
    return conn


@contextlib.contextmanager
def transaction(conn):
    """Run the block inside one BEGIN IMMEDIATE transaction.

    IMMEDIATE takes the write lock up front, so two writers never interleave
    their read-then-write steps. Nested use joins the outer transaction.
    """
    if conn.in_transaction:
        yield conn
        return
    try:
        conn.execute('BEGIN IMMEDIATE')
    except sqlite3.OperationalError as e:
        raise storage_error(e) from e
    try:
        yield conn
    except BaseException:
        conn.rollback()
        raise
    else:
        conn.commit()


def check_setup(data_path):
    """Initialize database tables if they don't exist"""
    conn = sqlite3.connect(str(data_path))
    try:
        conn.executescript(SCHEMA)
        conn.commit()
        print("[DB SETUP] Tables created successfully", file=sys.stderr, flush=True)
    except Exception as e:
        print(f"[DB SETUP] Error creating tables: {e}", file=sys.stderr, flush=True)
        raise
    finally:
        conn.close()


def validate_database_schema(db_path):
    """Validate that the database has the correct schema structure"""
    try:
        conn = sqlite3.connect(str(db_path))
        cur = conn.cursor()
        for table_name, required_columns in SCHEMA_CHECKS:
            cur.execute("SELECT name FROM sqlite_master WHERE type='table' AND name=?", (table_name,))
            if not cur.fetchone():
                conn.close()
                print(f"[DB CHECK] Table {table_name} does not exist", file=sys.stderr, flush=True)
                return False

            cur.execute(f"PRAGMA table_info({table_name})")
            columns = [row[1] for row in cur.fetchall()]
            missing_columns = [col for col in required_columns if col not in columns]
            if missing_columns:
                conn.close()
                print(f"[DB CHECK] Table {table_name} is missing columns: {missing_columns}",
                      file=sys.stderr, flush=True)
                return False
        conn.close()
        return True
    except sqlite3.Error as e:
        print(f"[DB CHECK] Database validation failed: {e}", file=sys.stderr, flush=True)
        return False


def recreate_database_if_invalid(db_path):
    """Check database validity and recreate it if corrupted or invalid.

    An unusable file is moved aside with a .corrupt suffix rather than deleted.
    """
    db_path = pathlib.Path(db_path)
    print(f"[DB CHECK] Starting database validation for {db_path}", file=sys.stderr, flush=True)

    if not db_path.exists():
        print("[DB CHECK] Database file does not exist, creating new database...", file=sys.stderr, flush=True)
        check_setup(db_path)
        return

    conn = sqlite3.connect(str(db_path))
    try:
        conn.execute('SELECT name FROM sqlite_master LIMIT 1').fetchall()
    except sqlite3.Error as e:
        print(f"[DB CHECK] Database connection failed: {e}", file=sys.stderr, flush=True)
        conn.close()
        _move_aside(db_path)
        check_setup(db_path)
        return
    conn.close()

    if not validate_database_schema(db_path):
        # A fresh file or one from an older release only needs the missing tables
        check_setup(db_path)
        if not validate_database_schema(db_path):
            print("[DB CHECK] Database schema is invalid, recreating...", file=sys.stderr, flush=True)
            _move_aside(db_path)
            check_setup(db_path)
            print(f"[DB CHECK] Database recreated successfully at {db_path}", file=sys.stderr, flush=True)
    else:
        print("[DB CHECK] Database schema is valid", file=sys.stderr, flush=True)


def _move_aside(db_path):
    target = db_path.with_suffix(db_path.suffix + '.corrupt')
    try:
        db_path.replace(target)
        print(f"[DB CHECK] Moved unusable database to {target}", file=sys.stderr, flush=True)
    except OSError as e:
        print(f"[DB CHECK] Failed to move database: {e}", file=sys.stderr, flush=True)
        raise
