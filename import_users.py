import re
import sqlite3
import sys

import pandas as pd

import database

EMAIL_RE = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')


def import_users_from_csv(csv_path, db_path=database.DB_PATH):
    """
    Import borrowers from a CSV with "Name" and "Email" columns.

    Existing users with the same email are updated in place so borrow
    records keep pointing at them.

    Returns:
        dict: Result with success status and message
    """
    try:
        df = pd.read_csv(csv_path, dtype=str)
    except FileNotFoundError:
        return {'success': False, 'error': 'User list file not found'}

    if 'Name' not in df.columns or 'Email' not in df.columns:
        return {'success': False, 'error': 'File must have "Name" and "Email" columns'}

    users = []
    warnings = []
    for name, email in zip(df['Name'], df['Email']):
        if not isinstance(name, str) or not name.strip():
            continue
        email = email.strip().lower() if isinstance(email, str) else ''
        if not EMAIL_RE.match(email):
            warnings.append(f'Skipped {name.strip()}: invalid email {email!r}')
            continue
        users.append((name.strip(), email))

    if not users:
        return {'success': False, 'error': 'No user data found in file'}

    database.check_setup(db_path)
    conn = database.connect(db_path)
    try:
        with database.transaction(conn):
            conn.executemany('''
                INSERT INTO users (full_name, email) VALUES (?, ?)
                ON CONFLICT(email) DO UPDATE SET full_name = excluded.full_name
            ''', users)
    finally:
        conn.close()

    result = {
        'success': True,
        'message': f'{len(users)} user(s) imported',
        'inserted': len(users),
    }
    if warnings:
        result['warnings'] = warnings
    return result


if __name__ == '__main__':
    if len(sys.argv) < 2:
        print("Usage: python import_users.py <csv_path> [db_path]")
        sys.exit(1)

    file_path = sys.argv[1]
    db_path = sys.argv[2] if len(sys.argv) > 2 else database.DB_PATH

    try:
        result = import_users_from_csv(file_path, db_path)
    except sqlite3.Error as e:
        print(f"ERROR: {e}")
        sys.exit(1)

    if result['success']:
        print(f"SUCCESS: {result['message']}")
        if 'warnings' in result:
            print("WARNINGS:")
            for warning in result['warnings']:
                print(f"  - {warning}")
    else:
        print(f"ERROR: {result['error']}")
        sys.exit(1)
