"""Book availability state machine.

States and allowed moves::

    available   -> borrowed, maintenance, reserved
    borrowed    -> available
    maintenance -> available
    reserved    -> borrowed, available

``available_copies`` is the source of truth: when the last copy goes out
the status becomes ``borrowed`` whatever it was before.  This module is the
only writer of ``status`` and ``available_copies`` on books.
"""

import logging
from typing import Dict, FrozenSet

from errors import InvalidOperationError, InvalidStateTransitionError, NotFoundError
from models import Book, BookStatus
from store import Session

logger = logging.getLogger(__name__)

VALID_TRANSITIONS: Dict[BookStatus, FrozenSet[BookStatus]] = {
    BookStatus.AVAILABLE: frozenset({BookStatus.BORROWED, BookStatus.MAINTENANCE, BookStatus.RESERVED}),
    BookStatus.BORROWED: frozenset({BookStatus.AVAILABLE}),
    BookStatus.MAINTENANCE: frozenset({BookStatus.AVAILABLE}),
    BookStatus.RESERVED: frozenset({BookStatus.BORROWED, BookStatus.AVAILABLE}),
}


def can_transition_to(current: BookStatus, new: BookStatus) -> bool:
    return new in VALID_TRANSITIONS.get(current, frozenset())


def initial_status(available_copies: int) -> BookStatus:
    return BookStatus.BORROWED if available_copies == 0 else BookStatus.AVAILABLE


def _get_book(session: Session, book_id: int) -> Book:
    book = session.books.find_by_id(book_id)
    if book is None:
        raise NotFoundError("Book", book_id)
    return book


def update_book_status(session: Session, book_id: int, new_status: BookStatus) -> Book:
    book = _get_book(session, book_id)
    new_status = BookStatus(new_status)

    if not can_transition_to(book.status, new_status):
        raise InvalidStateTransitionError(
            f"Invalid state transition from '{book.status.value}' to '{new_status.value}'"
        )
    # status must stay consistent with the copy count
    if new_status == BookStatus.BORROWED and book.available_copies > 0:
        raise InvalidOperationError("Book still has available copies and cannot be marked as borrowed")
    if new_status == BookStatus.AVAILABLE and book.available_copies == 0:
        raise InvalidOperationError("Book has no available copies and cannot be marked as available")

    logger.info("Book %s status %s -> %s", book_id, book.status.value, new_status.value)
    return session.books.update(book_id, {"status": new_status})


def decrement_available_copies(session: Session, book_id: int) -> Book:
    book = _get_book(session, book_id)

    if book.available_copies <= 0:
        raise InvalidOperationError("No available copies")

    remaining = book.available_copies - 1
    changes = {"available_copies": remaining}
    if remaining == 0:
        changes["status"] = BookStatus.BORROWED
    return session.books.update(book_id, changes)


def increment_available_copies(session: Session, book_id: int) -> Book:
    book = _get_book(session, book_id)

    if book.available_copies >= book.total_copies:
        raise InvalidOperationError("All copies are already available")

    changes = {"available_copies": book.available_copies + 1}
    if book.status == BookStatus.BORROWED:
        changes["status"] = BookStatus.AVAILABLE
    return session.books.update(book_id, changes)


def adjust_total_copies(session: Session, book_id: int, total_copies: int) -> Book:
    """Resize the stock of a book, keeping the number of copies on loan."""
    book = _get_book(session, book_id)

    if total_copies < 0:
        raise ValueError("Total copies cannot be negative")
    on_loan = book.total_copies - book.available_copies
    if total_copies < on_loan:
        raise InvalidOperationError(
            f"Cannot reduce total copies to {total_copies}: {on_loan} copies are on loan"
        )

    available = total_copies - on_loan
    changes = {"total_copies": total_copies, "available_copies": available}
    if available == 0 and book.status == BookStatus.AVAILABLE:
        changes["status"] = BookStatus.BORROWED
    elif available > 0 and book.status == BookStatus.BORROWED:
        changes["status"] = BookStatus.AVAILABLE
    return session.books.update(book_id, changes)
