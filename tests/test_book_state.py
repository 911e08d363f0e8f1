import pytest

from book_state import (
    adjust_total_copies,
    can_transition_to,
    decrement_available_copies,
    increment_available_copies,
    update_book_status,
)
from errors import InvalidOperationError, InvalidStateTransitionError, NotFoundError
from models import BookPatch, BookStatus


@pytest.mark.parametrize("current,new,allowed", [
    (BookStatus.AVAILABLE, BookStatus.BORROWED, True),
    (BookStatus.AVAILABLE, BookStatus.MAINTENANCE, True),
    (BookStatus.AVAILABLE, BookStatus.RESERVED, True),
    (BookStatus.BORROWED, BookStatus.AVAILABLE, True),
    (BookStatus.BORROWED, BookStatus.MAINTENANCE, False),
    (BookStatus.MAINTENANCE, BookStatus.AVAILABLE, True),
    (BookStatus.MAINTENANCE, BookStatus.BORROWED, False),
    (BookStatus.RESERVED, BookStatus.BORROWED, True),
    (BookStatus.RESERVED, BookStatus.AVAILABLE, True),
    (BookStatus.RESERVED, BookStatus.MAINTENANCE, False),
])
def test_transition_table(current, new, allowed):
    assert can_transition_to(current, new) is allowed


def test_maintenance_round_trip(lib, book):
    with lib.store.atomic() as session:
        assert update_book_status(session, book.id, BookStatus.MAINTENANCE).status == BookStatus.MAINTENANCE
        assert update_book_status(session, book.id, BookStatus.AVAILABLE).status == BookStatus.AVAILABLE


def test_invalid_transition_leaves_status(lib, book):
    with lib.store.atomic() as session:
        update_book_status(session, book.id, BookStatus.MAINTENANCE)
    with pytest.raises(InvalidStateTransitionError, match="from 'maintenance' to 'reserved'"):
        with lib.store.atomic() as session:
            update_book_status(session, book.id, BookStatus.RESERVED)
    assert lib.find_book(book.id).status == BookStatus.MAINTENANCE


def test_borrowed_status_requires_no_copies(lib, book):
    with pytest.raises(InvalidOperationError):
        with lib.store.atomic() as session:
            update_book_status(session, book.id, BookStatus.BORROWED)


def test_decrement_to_zero_marks_borrowed(lib, book):
    with lib.store.atomic() as session:
        assert decrement_available_copies(session, book.id).available_copies == 1
        last = decrement_available_copies(session, book.id)
    assert last.available_copies == 0
    assert last.status == BookStatus.BORROWED

    with pytest.raises(InvalidOperationError, match="No available copies"):
        with lib.store.atomic() as session:
            decrement_available_copies(session, book.id)


def test_decrement_from_reserved(lib):
    single = lib.register_book("9782222222222", "Reserved", "Author", total_copies=1)
    lib.set_book_status(single.id, BookStatus.RESERVED)
    with lib.store.atomic() as session:
        book = decrement_available_copies(session, single.id)
    assert book.status == BookStatus.BORROWED


def test_increment_restores_available(lib, book):
    with lib.store.atomic() as session:
        decrement_available_copies(session, book.id)
        decrement_available_copies(session, book.id)
        restored = increment_available_copies(session, book.id)
    assert restored.available_copies == 1
    assert restored.status == BookStatus.AVAILABLE


def test_increment_past_total_rejected(lib, book):
    with pytest.raises(InvalidOperationError, match="already available"):
        with lib.store.atomic() as session:
            increment_available_copies(session, book.id)


def test_increment_keeps_maintenance(lib, book):
    with lib.store.atomic() as session:
        decrement_available_copies(session, book.id)
        update_book_status(session, book.id, BookStatus.MAINTENANCE)
        after = increment_available_copies(session, book.id)
    assert after.status == BookStatus.MAINTENANCE
    assert after.available_copies == 2


def test_adjust_total_copies_keeps_loans(lib, book):
    with lib.store.atomic() as session:
        decrement_available_copies(session, book.id)
        grown = adjust_total_copies(session, book.id, 5)
    assert (grown.total_copies, grown.available_copies) == (5, 4)

    with lib.store.atomic() as session:
        shrunk = adjust_total_copies(session, book.id, 1)
    assert (shrunk.total_copies, shrunk.available_copies) == (1, 0)
    assert shrunk.status == BookStatus.BORROWED

    with pytest.raises(InvalidOperationError, match="on loan"):
        with lib.store.atomic() as session:
            adjust_total_copies(session, book.id, 0)


def test_unknown_book(lib):
    with pytest.raises(NotFoundError, match="Book not found"):
        with lib.store.atomic() as session:
            decrement_available_copies(session, 404)


@pytest.mark.parametrize("held_status", [BookStatus.MAINTENANCE, BookStatus.RESERVED])
def test_available_status_requires_free_copy(lib, member, book, held_status):
    lib.borrow_book(member.id, book.id)
    lib.set_book_status(book.id, held_status)
    lib.update_book(book.id, BookPatch(total_copies=1))
    assert lib.find_book(book.id).available_copies == 0

    with pytest.raises(InvalidOperationError, match="cannot be marked as available"):
        lib.set_book_status(book.id, BookStatus.AVAILABLE)
    assert lib.find_book(book.id).status == held_status
