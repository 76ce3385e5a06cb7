import threading
from datetime import datetime, timezone
from decimal import Decimal

import database
from borrowing import (
    approve_borrow_request,
    create_borrow_request,
    get_borrow_record,
    list_borrow_records,
    reject_borrow_request,
    return_book,
)
from conftest import TODAY, available, days, record_row
from fines import set_daily_fine_rate, set_loan_period_days
from inventory import add_item, reconcile_inventory
from models import BorrowStatus


def test_create_request_is_pending_and_leaves_inventory(conn, user, make_book):
    book = make_book(copies=1)
    result = create_borrow_request(conn, user, book.id)

    assert result.success
    record = result.data
    assert record.status is BorrowStatus.PENDING
    assert record.due_date is None
    assert record.return_date is None
    assert record.fine_amount == Decimal('0.00')
    assert available(conn, book.id) == 1


def test_create_request_for_unknown_book(conn, user):
    result = create_borrow_request(conn, user, 999)
    assert result.error == 'ItemNotFound'
    assert conn.execute('SELECT COUNT(*) FROM borrow_records').fetchone()[0] == 0


def test_create_request_does_not_check_availability(conn, user, make_book):
    book = make_book(copies=0)
    assert create_borrow_request(conn, user, book.id).success


def test_approve_sets_due_date_and_takes_a_copy(conn, user, make_book):
    book = make_book(copies=2)
    pending = create_borrow_request(conn, user, book.id).data

    result = approve_borrow_request(conn, pending.id, today=TODAY)

    assert result.success
    record = result.data
    assert record.status is BorrowStatus.BORROWED
    assert record.due_date == TODAY + days(7)
    assert record.due_at == datetime(2025, 3, 17, 23, 59, 59, 999000, tzinfo=timezone.utc)
    assert record.borrowed_by == 'ada@example.edu'
    assert available(conn, book.id) == 1


def test_approve_uses_configured_loan_period(conn, user, make_book):
    set_loan_period_days(conn, 14)
    book = make_book()
    pending = create_borrow_request(conn, user, book.id).data
    assert approve_borrow_request(conn, pending.id, today=TODAY).data.due_date == TODAY + days(14)


def test_approve_when_no_copy_left_changes_nothing(conn, user, make_book, lend):
    book = make_book(copies=1)
    lend(user, book.id)
    waiting = create_borrow_request(conn, user, book.id).data

    result = approve_borrow_request(conn, waiting.id, today=TODAY)

    assert result.error == 'ItemUnavailable'
    row = record_row(conn, waiting.id)
    assert row['status'] == 'PENDING'
    assert row['due_date'] is None
    assert available(conn, book.id) == 0


def test_approve_only_pending(conn, user, make_book, lend):
    book = make_book(copies=2)
    record = lend(user, book.id)

    result = approve_borrow_request(conn, record.id, today=TODAY)

    assert result.error == 'InvalidTransition'
    assert available(conn, book.id) == 1


def test_approve_unknown_record(conn):
    assert approve_borrow_request(conn, 42).error == 'RecordNotFound'


def test_reject_deletes_pending_request(conn, user, make_book):
    book = make_book()
    pending = create_borrow_request(conn, user, book.id).data

    assert reject_borrow_request(conn, pending.id).success
    assert record_row(conn, pending.id) is None
    assert available(conn, book.id) == 1


def test_reject_borrowed_record_is_refused(conn, user, make_book, lend):
    book = make_book()
    record = lend(user, book.id)

    assert reject_borrow_request(conn, record.id).error == 'InvalidTransition'
    assert record_row(conn, record.id)['status'] == 'BORROWED'
    assert available(conn, book.id) == 0


def test_return_on_due_date_has_no_fine(conn, user, make_book, lend):
    book = make_book()
    record = lend(user, book.id)

    result = return_book(conn, record.id, as_of=record.due_date)

    assert result.success
    assert result.data.fine_amount == Decimal('0.00')
    assert not result.data.is_overdue
    row = record_row(conn, record.id)
    assert row['status'] == 'RETURNED'
    assert row['return_date'] == record.due_date.isoformat()
    assert row['fine_amount'] == '0.00'
    assert available(conn, book.id) == 1


def test_return_one_day_late_charges_one_day(conn, user, make_book, lend):
    book = make_book()
    record = lend(user, book.id)

    result = return_book(conn, record.id, as_of=record.due_date + days(1))

    assert result.data.days_overdue == 1
    assert result.data.fine_amount == Decimal('1.00')
    assert record_row(conn, record.id)['fine_amount'] == '1.00'


def test_return_uses_current_fine_rate(conn, user, make_book, lend):
    book = make_book()
    record = lend(user, book.id)
    set_daily_fine_rate(conn, '2.50')

    result = return_book(conn, record.id, as_of=record.due_date + days(3), returned_by='desk')

    assert result.data.fine_amount == Decimal('7.50')
    assert record_row(conn, record.id)['returned_by'] == 'desk'


def test_return_pending_record_is_refused(conn, user, make_book):
    book = make_book()
    pending = create_borrow_request(conn, user, book.id).data

    assert return_book(conn, pending.id, as_of=TODAY).error == 'InvalidTransition'
    row = record_row(conn, pending.id)
    assert row['status'] == 'PENDING'
    assert row['return_date'] is None
    assert available(conn, book.id) == 1


def test_second_return_is_refused(conn, user, make_book, lend):
    book = make_book()
    record = lend(user, book.id)
    assert return_book(conn, record.id, as_of=record.due_date + days(2)).success

    result = return_book(conn, record.id, as_of=record.due_date + days(9))

    assert result.error == 'InvalidTransition'
    row = record_row(conn, record.id)
    assert row['fine_amount'] == '2.00'
    assert available(conn, book.id) == 1


def test_return_with_malformed_date(conn, user, make_book, lend):
    book = make_book()
    record = lend(user, book.id)
    assert return_book(conn, record.id, as_of='next tuesday').error == 'ValidationError'
    assert record_row(conn, record.id)['status'] == 'BORROWED'


def test_borrow_and_return_restores_inventory(conn, user, make_book, lend):
    book = make_book(copies=3)
    records = [lend(user, book.id) for _ in range(3)]
    assert available(conn, book.id) == 0

    for record in records:
        assert return_book(conn, record.id, as_of=TODAY).success
    assert available(conn, book.id) == 3


def test_return_rolls_back_when_copy_count_is_already_full(conn, user, make_book, lend):
    book = make_book()
    record = lend(user, book.id)
    conn.execute('UPDATE books SET available_copies = total_copies WHERE id = ?', (book.id,))

    result = return_book(conn, record.id, as_of=TODAY)

    assert result.error == 'OverCapacity'
    assert record_row(conn, record.id)['status'] == 'BORROWED'

    assert reconcile_inventory(conn).success
    assert available(conn, book.id) == 0
    assert return_book(conn, record.id, as_of=TODAY).success
    assert available(conn, book.id) == 1


def test_concurrent_approvals_never_lend_more_than_owned(db_path):
    conn = database.connect(db_path)
    book = add_item(conn, 'Neuromancer', 'William Gibson', 2).data
    record_ids = [create_borrow_request(conn, n, book.id).data.id for n in (1, 2, 3)]
    conn.close()

    barrier = threading.Barrier(len(record_ids))
    results = {}

    def approve(record_id):
        worker_conn = database.connect(db_path, timeout=30)
        try:
            barrier.wait()
            results[record_id] = approve_borrow_request(worker_conn, record_id, today=TODAY)
        finally:
            worker_conn.close()

    threads = [threading.Thread(target=approve, args=(record_id,)) for record_id in record_ids]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    outcomes = sorted('ok' if r.success else r.error for r in results.values())
    assert outcomes == ['ItemUnavailable', 'ok', 'ok']

    conn = database.connect(db_path)
    try:
        assert available(conn, book.id) == 0
        borrowed = conn.execute("SELECT COUNT(*) FROM borrow_records WHERE status = 'BORROWED'").fetchone()[0]
        assert borrowed == 2
    finally:
        conn.close()


def test_get_borrow_record(conn, user, make_book):
    book = make_book()
    pending = create_borrow_request(conn, user, book.id).data
    assert get_borrow_record(conn, pending.id).data.id == pending.id
    assert get_borrow_record(conn, 404).error == 'RecordNotFound'


def test_list_borrow_records_filters_by_status(conn, user, make_book, lend):
    book = make_book(copies=2)
    lend(user, book.id)
    create_borrow_request(conn, user, book.id)

    pending = list_borrow_records(conn, status='pending').data
    assert [entry['status'] for entry in pending] == ['PENDING']
    assert pending[0]['book_title'] == 'Dune'
    assert pending[0]['user_email'] == 'ada@example.edu'

    assert len(list_borrow_records(conn, user_id=user).data) == 2
    assert list_borrow_records(conn, status='LOST').error == 'ValidationError'
