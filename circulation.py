"""Borrow / return workflow.

Each public operation runs inside a single ``store.atomic()`` unit: either
every write it performs is committed, or none is.  The store handle is
always passed in explicitly; this module keeps no state of its own.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from book_state import decrement_available_copies, increment_available_copies
from config import FINE_PER_DAY, LOAN_PERIOD_DAYS
from errors import AlreadyReturnedError, FineAlreadyPaidError, NotFoundError, ValidationFailedError
from member_state import evaluate_member_status
from models import Book, Fine, ReturnResult, Transaction, TransactionStatus, utcnow
from store import EntityStore, Session
from validation import OPEN_LOAN_STATUSES, validate_borrowing

logger = logging.getLogger(__name__)


# ------------------------- Date and fine rules ------------------------- #
def calculate_due_date(borrowed_at: datetime) -> datetime:
    return borrowed_at + timedelta(days=LOAN_PERIOD_DAYS)


def calculate_overdue_days(due_date: datetime, returned_at: datetime) -> int:
    """Whole calendar days between the due date and the return, never negative."""
    if returned_at <= due_date:
        return 0
    return max(0, (returned_at.date() - due_date.date()).days)


def calculate_fine_amount(overdue_days: int) -> float:
    return round(overdue_days * FINE_PER_DAY, 2)


def _with_details(session: Session, transaction: Transaction, member: bool = True) -> Transaction:
    transaction.book = session.books.find_by_id(transaction.book_id)
    if member:
        transaction.member = session.members.find_by_id(transaction.member_id)
    return transaction


# ------------------------- Workflow ------------------------- #
def borrow_book(store: EntityStore, member_id: int, book_id: int, now: Optional[datetime] = None) -> Transaction:
    """Lend one copy of ``book_id`` to ``member_id``.

    Raises ValidationFailedError listing every broken borrowing rule; no
    write happens in that case.
    """
    now = now or utcnow()
    with store.atomic() as session:
        validation = validate_borrowing(session, member_id, book_id)
        if not validation.valid:
            logger.info("Borrow refused for member %s, book %s: %s", member_id, book_id, validation.errors)
            raise ValidationFailedError(validation.errors)

        decrement_available_copies(session, book_id)
        transaction = session.transactions.create({
            "member_id": member_id,
            "book_id": book_id,
            "borrowed_at": now,
            "due_date": calculate_due_date(now),
            "returned_at": None,
            "status": TransactionStatus.ACTIVE,
        })
        transaction = _with_details(session, transaction)

    logger.info("Member %s borrowed book %s (transaction %s)", member_id, book_id, transaction.id)
    return transaction


def return_book(store: EntityStore, transaction_id: int, now: Optional[datetime] = None) -> ReturnResult:
    now = now or utcnow()
    with store.atomic() as session:
        transaction = session.transactions.find_by_id(transaction_id)
        if transaction is None:
            raise NotFoundError("Transaction", transaction_id)
        if transaction.returned_at is not None or transaction.status == TransactionStatus.RETURNED:
            raise AlreadyReturnedError()

        overdue_days = calculate_overdue_days(transaction.due_date, now)
        transaction = session.transactions.update(transaction_id, {
            "returned_at": now,
            "status": TransactionStatus.RETURNED,
        })
        increment_available_copies(session, transaction.book_id)

        fine = None
        if overdue_days > 0:
            fine = session.fines.create({
                "member_id": transaction.member_id,
                "transaction_id": transaction.id,
                "amount": calculate_fine_amount(overdue_days),
            })

        evaluate_member_status(session, transaction.member_id)
        transaction = _with_details(session, transaction)

    if fine:
        logger.info("Transaction %s returned %s day(s) late, fine %.2f", transaction_id, overdue_days, fine.amount)
    else:
        logger.info("Transaction %s returned on time", transaction_id)
    return ReturnResult(transaction=transaction, fine=fine, overdue_days=overdue_days)


def update_overdue_statuses(store: EntityStore, now: Optional[datetime] = None) -> int:
    """Mark every past-due open loan as overdue; returns how many changed.

    Runs under the write lock, so a return committed earlier has already
    moved its transaction out of ``active`` and is left alone.
    """
    now = now or utcnow()
    with store.atomic() as session:
        past_due = session.transactions.find_all(
            status=TransactionStatus.ACTIVE,
            due_date__lt=now,
            returned_at__isnull=True,
        )
        for transaction in past_due:
            session.transactions.update(transaction.id, {"status": TransactionStatus.OVERDUE})

        for member_id in sorted({t.member_id for t in past_due}):
            evaluate_member_status(session, member_id)

    if past_due:
        logger.info("Marked %d transaction(s) overdue", len(past_due))
    return len(past_due)


def pay_fine(store: EntityStore, fine_id: int, now: Optional[datetime] = None) -> Fine:
    now = now or utcnow()
    with store.atomic() as session:
        fine = session.fines.find_by_id(fine_id)
        if fine is None:
            raise NotFoundError("Fine", fine_id)
        if fine.paid_at is not None:
            raise FineAlreadyPaidError()

        fine = session.fines.update(fine_id, {"paid_at": now})
        evaluate_member_status(session, fine.member_id)

    logger.info("Fine %s paid (%.2f)", fine_id, fine.amount)
    return fine


# ------------------------- Queries ------------------------- #
def get_transaction(store: EntityStore, transaction_id: int) -> Optional[Transaction]:
    """One transaction joined with its book and member, or None."""
    with store.read() as session:
        transaction = session.transactions.find_by_id(transaction_id)
        return _with_details(session, transaction) if transaction else None


def list_overdue_transactions(store: EntityStore, now: Optional[datetime] = None) -> List[Transaction]:
    now = now or utcnow()
    with store.read() as session:
        transactions = session.transactions.find_all(
            order_by="due_date",
            status__in=OPEN_LOAN_STATUSES,
            due_date__lt=now,
            returned_at__isnull=True,
        )
        return [_with_details(session, t) for t in transactions]


def list_member_loans(store: EntityStore, member_id: int) -> List[Transaction]:
    """Active and overdue loans of a member, newest first."""
    with store.read() as session:
        if session.members.find_by_id(member_id) is None:
            raise NotFoundError("Member", member_id)
        transactions = session.transactions.find_all(
            order_by="-borrowed_at",
            member_id=member_id,
            status__in=OPEN_LOAN_STATUSES,
        )
        return [_with_details(session, t, member=False) for t in transactions]


def list_unpaid_fines(store: EntityStore, member_id: int) -> List[Fine]:
    with store.read() as session:
        return session.fines.find_all(order_by="created_at", member_id=member_id, paid_at__isnull=True)


def list_member_fines(store: EntityStore, member_id: int) -> List[Fine]:
    with store.read() as session:
        return session.fines.find_all(order_by="-created_at", member_id=member_id)


def list_fines(store: EntityStore) -> List[Fine]:
    with store.read() as session:
        return session.fines.find_all(order_by="-created_at")


def list_available_books(store: EntityStore) -> List[Book]:
    with store.read() as session:
        return session.books.find_all(order_by="title", available_copies__gt=0)
