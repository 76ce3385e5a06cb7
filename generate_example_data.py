import random
import sys
from datetime import timedelta

import database
from borrowing import approve_borrow_request, create_borrow_request, return_book
from fines import initialize_default_configs
from models import utc_now

conn = database.connect(database.DB_PATH)
database.check_setup(database.DB_PATH)
initialize_default_configs(conn)

user_ids = [row['id'] for row in conn.execute("SELECT id FROM users")]
book_ids = [row['id'] for row in conn.execute("SELECT id FROM books WHERE total_copies > 0")]

if not user_ids or not book_ids:
    print("Error: No users or books found in database. Please import users and books first.")
    conn.close()
    sys.exit(1)

print(f"Found {len(user_ids)} users and {len(book_ids)} books")

# Start over; the inventory ledger is rebuilt from the cleared records
with database.transaction(conn):
    conn.execute("DELETE FROM borrow_records")
    conn.execute("UPDATE books SET available_copies = total_copies")

now = utc_now()
today = now.date()
counts = {'returned': 0, 'borrowed': 0, 'overdue': 0, 'pending': 0, 'unavailable': 0}


def borrow(user_id, book_id, days_ago):
    """Request and approve a loan as if it happened days_ago days back"""
    created = create_borrow_request(conn, user_id, book_id, now=now - timedelta(days=days_ago))
    if not created.success:
        return None
    approved = approve_borrow_request(conn, created.data.id, today=today - timedelta(days=days_ago),
                                      borrowed_by='seed')
    if not approved.success:
        counts['unavailable'] += 1
        return None
    return approved.data


print("Generating historical borrow data...")
for _ in range(len(book_ids) * 5):
    record = borrow(random.choice(user_ids), random.choice(book_ids), random.randint(30, 365))
    if record is None:
        continue
    returned_on = record.due_date + timedelta(days=random.randint(-6, 5))
    return_book(conn, record.id, as_of=returned_on, returned_by='seed')
    counts['returned'] += 1

print("Generating current borrow data...")
shuffled = book_ids.copy()
random.shuffle(shuffled)
for book_id in shuffled[:max(1, len(book_ids) // 3)]:
    days_ago = random.randint(0, 14)
    record = borrow(random.choice(user_ids), book_id, days_ago)
    if record is None:
        continue
    if record.due_date < today:
        counts['overdue'] += 1
    else:
        counts['borrowed'] += 1

print("Generating pending requests...")
for book_id in random.sample(book_ids, min(len(book_ids), 5)):
    if create_borrow_request(conn, random.choice(user_ids), book_id).success:
        counts['pending'] += 1

conn.close()

print("Borrow data generation complete!")
print(f"  - {counts['returned']} returned loans")
print(f"  - {counts['borrowed']} current loans")
print(f"  - {counts['overdue']} overdue loans")
print(f"  - {counts['pending']} pending requests")
print(f"  - {counts['unavailable']} requests skipped, no copy available")
