"""Borrowing eligibility rules.

Pure read-only checks against the state visible in the given session.
Every rule is evaluated so that a caller learns about all violations at
once, not only the first one.
"""

from config import MAX_BOOKS_PER_MEMBER
from models import MemberStatus, TransactionStatus, ValidationResult
from store import Session

OPEN_LOAN_STATUSES = (TransactionStatus.ACTIVE, TransactionStatus.OVERDUE)


def is_member_active(session: Session, member_id: int) -> bool:
    member = session.members.find_by_id(member_id)
    return member is not None and member.status == MemberStatus.ACTIVE


def count_open_loans(session: Session, member_id: int) -> int:
    return session.transactions.count(member_id=member_id, status__in=OPEN_LOAN_STATUSES)


def can_member_borrow(session: Session, member_id: int) -> bool:
    return count_open_loans(session, member_id) < MAX_BOOKS_PER_MEMBER


def count_unpaid_fines(session: Session, member_id: int) -> int:
    return session.fines.count(member_id=member_id, paid_at__isnull=True)


def has_unpaid_fines(session: Session, member_id: int) -> bool:
    return count_unpaid_fines(session, member_id) > 0


def is_book_available(session: Session, book_id: int) -> bool:
    book = session.books.find_by_id(book_id)
    return book is not None and book.available_copies > 0


def validate_borrowing(session: Session, member_id: int, book_id: int) -> ValidationResult:
    errors = []

    if not is_member_active(session, member_id):
        errors.append("Member is not active or does not exist")

    if not can_member_borrow(session, member_id):
        errors.append(f"Member has reached the maximum limit of {MAX_BOOKS_PER_MEMBER} books")

    if has_unpaid_fines(session, member_id):
        errors.append("Member has unpaid fines")

    if not is_book_available(session, book_id):
        errors.append("Book is not available")

    return ValidationResult(valid=not errors, errors=errors)
