import pytest

from borrowing import create_borrow_request, reject_borrow_request
from conftest import available
from errors import ItemNotFound, ItemUnavailable, OverCapacity
from inventory import (
    add_item,
    adjust_total_copies,
    get_item,
    is_item_referenced,
    reconcile_inventory,
    release,
    reserve,
)


def test_add_item_starts_fully_available(conn):
    item = add_item(conn, 'The Hobbit', 'J.R.R. Tolkien', 4, isbn='9780261103344').data
    assert item.total_copies == 4
    assert item.available_copies == 4
    assert get_item(conn, item.id).data.isbn == '9780261103344'


@pytest.mark.parametrize('title,author,copies', [
    ('', 'Someone', 1),
    ('Untitled', '', 1),
    ('Untitled', 'Someone', -1),
    ('Untitled', 'Someone', '3'),
])
def test_add_item_validation(conn, title, author, copies):
    assert add_item(conn, title, author, copies).error == 'ValidationError'


def test_get_unknown_item(conn):
    assert get_item(conn, 12).error == 'ItemNotFound'


def test_reserve_and_release(conn, make_book):
    book = make_book(copies=1)
    reserve(conn, book.id)
    assert available(conn, book.id) == 0

    with pytest.raises(ItemUnavailable):
        reserve(conn, book.id)

    release(conn, book.id)
    assert available(conn, book.id) == 1

    with pytest.raises(OverCapacity):
        release(conn, book.id)
    assert available(conn, book.id) == 1


def test_reserve_unknown_item(conn):
    with pytest.raises(ItemNotFound):
        reserve(conn, 77)


def test_adjust_total_copies_moves_available_by_the_same_amount(conn, user, make_book, lend):
    book = make_book(copies=2)
    lend(user, book.id)

    grown = adjust_total_copies(conn, book.id, 4).data
    assert (grown.total_copies, grown.available_copies) == (4, 3)

    shrunk = adjust_total_copies(conn, book.id, 1).data
    assert (shrunk.total_copies, shrunk.available_copies) == (1, 0)


def test_adjust_total_copies_below_borrowed_is_refused(conn, user, make_book, lend):
    book = make_book(copies=2)
    lend(user, book.id)
    lend(user, book.id)

    assert adjust_total_copies(conn, book.id, 1).error == 'ValidationError'
    assert get_item(conn, book.id).data.total_copies == 2


def test_reconcile_inventory(conn, user, make_book, lend):
    drifted = make_book(copies=3, title='Emma', author='Jane Austen')
    fine = make_book(copies=2)
    lend(user, drifted.id)
    lend(user, fine.id)
    conn.execute('UPDATE books SET available_copies = 0 WHERE id = ?', (drifted.id,))

    corrections = reconcile_inventory(conn).data

    assert corrections == [{
        'book_id': drifted.id,
        'title': 'Emma',
        'before': 0,
        'after': 2,
        'borrowed': 1,
    }]
    assert available(conn, drifted.id) == 2
    assert available(conn, fine.id) == 1
    assert reconcile_inventory(conn).data == []


def test_is_item_referenced(conn, user, make_book):
    book = make_book()
    assert is_item_referenced(conn, book.id).data is False

    pending = create_borrow_request(conn, user, book.id).data
    assert is_item_referenced(conn, book.id).data is True

    reject_borrow_request(conn, pending.id)
    assert is_item_referenced(conn, book.id).data is False
