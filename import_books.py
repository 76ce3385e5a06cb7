import pathlib
import sqlite3
import sys

import pandas as pd

import database
from inventory import add_item

# Columns of the catalog export, mapped to the books table
COLUMN_MAP = {
    'Title': 'title',
    'Author(s)': 'author',
    'ISBN #': 'isbn',
    'Copies': 'total_copies',
}


def import_books_from_csv(csv_path, db_path=database.DB_PATH):
    """Add every row of a catalog CSV to the books table.

    Rows without a title or author are skipped. A missing or unreadable
    copy count means one copy.
    """
    df = pd.read_csv(csv_path, quotechar='"', doublequote=True, engine='python', on_bad_lines='skip', dtype=str)
    print(f'[import_books] DataFrame shape: {df.shape}')

    missing = [col for col in ('Title', 'Author(s)') if col not in df.columns]
    if missing:
        return {'success': False, 'error': f'Missing required columns: {missing}'}

    present_cols = [col for col in COLUMN_MAP if col in df.columns]
    df_selected = df[present_cols].rename(columns=COLUMN_MAP)
    if 'total_copies' in df_selected:
        df_selected['total_copies'] = pd.to_numeric(df_selected['total_copies'], errors='coerce').fillna(1).astype(int)
    else:
        df_selected['total_copies'] = 1
    if 'isbn' not in df_selected:
        df_selected['isbn'] = None
    df_selected = df_selected.dropna(subset=['title', 'author'])

    database.check_setup(db_path)
    conn = database.connect(db_path)
    inserted = 0
    errors = []
    try:
        for row in df_selected.itertuples(index=False):
            isbn = row.isbn if isinstance(row.isbn, str) and row.isbn.strip() else None
            result = add_item(conn, row.title.strip(), row.author.strip(), max(0, int(row.total_copies)), isbn)
            if result.success:
                inserted += 1
            else:
                errors.append(f'{row.title}: {result.message}')
    finally:
        conn.close()

    print(f'[import_books] Imported {inserted} book(s)')
    response = {'success': True, 'message': f'{inserted} book(s) imported', 'inserted': inserted}
    if errors:
        response['warnings'] = errors
    return response


if __name__ == '__main__':
    if len(sys.argv) < 2:
        print("Usage: python import_books.py <csv_path> [db_path]")
        sys.exit(1)

    csv_path = pathlib.Path(sys.argv[1])
    db_path = sys.argv[2] if len(sys.argv) > 2 else database.DB_PATH
    try:
        result = import_books_from_csv(csv_path, db_path)
    except (OSError, pd.errors.ParserError, sqlite3.Error) as e:
        print(f"ERROR: {e}")
        sys.exit(1)

    if result['success']:
        print(f"SUCCESS: {result['message']}")
        for warning in result.get('warnings', []):
            print(f"  - {warning}")
    else:
        print(f"ERROR: {result['error']}")
        sys.exit(1)
