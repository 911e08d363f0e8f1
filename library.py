import os
import logging
from datetime import datetime
from typing import List, Optional, Dict, Any

import book_state
import circulation
import member_state
from config import settings
from errors import NotFoundError
from models import (
    Book,
    BookPatch,
    BookStatus,
    Fine,
    Member,
    MemberPatch,
    MemberStatus,
    ReturnResult,
    Transaction,
    TransactionStatus,
)
from store import EntityStore
from validators import EmailValidator, ISBNValidator, TextValidator

logger = logging.getLogger(__name__)


class Library:
    """Entry point for catalogue, membership and circulation operations.

    Wires an :class:`EntityStore` to the workflow modules.  Each instance is
    bound to one database file: an explicit ``db_file`` wins, then the
    ``LIBRARY_DB_FILE`` environment variable, then the configured default.
    """

    def __init__(self, db_file: Optional[str] = None) -> None:
        self.db_file = db_file or os.environ.get("LIBRARY_DB_FILE") or settings.db_file
        self.store = EntityStore(self.db_file)

    # ------------------------- Books ------------------------- #
    def register_book(
        self,
        isbn: str,
        title: str,
        author: str,
        category: Optional[str] = None,
        total_copies: int = 1,
        available_copies: Optional[int] = None,
    ) -> Book:
        """Add a book to the catalogue. ISBN must be unique."""
        isbn = self._clean_isbn(isbn)
        title = self._require_text(title, "Title")
        author = self._require_text(author, "Author")
        if total_copies < 0:
            raise ValueError("Total copies cannot be negative")
        if available_copies is None:
            available_copies = total_copies
        if not 0 <= available_copies <= total_copies:
            raise ValueError("Available copies must be between 0 and total copies")

        with self.store.atomic() as session:
            book = session.books.create({
                "isbn": isbn,
                "title": title,
                "author": author,
                "category": TextValidator.sanitize(category) or None,
                "total_copies": total_copies,
                "available_copies": available_copies,
                "status": book_state.initial_status(available_copies),
            })
        logger.info("Registered book %s (%s)", book.id, book.isbn)
        return book

    def list_books(self) -> List[Book]:
        with self.store.read() as session:
            return session.books.find_all()

    def list_available_books(self) -> List[Book]:
        return circulation.list_available_books(self.store)

    def find_book(self, book_id: int) -> Optional[Book]:
        with self.store.read() as session:
            return session.books.find_by_id(book_id)

    def update_book(self, book_id: int, patch: BookPatch) -> Optional[Book]:
        """Apply a partial update. Returns the updated book or None if not found."""
        changes = patch.changes()
        if not changes:
            raise ValueError("Nothing to update. Provide isbn, title, author, category or total_copies.")

        if "isbn" in changes:
            changes["isbn"] = self._clean_isbn(changes["isbn"])
        for key, label in (("title", "Title"), ("author", "Author")):
            if key in changes:
                changes[key] = self._require_text(changes[key], label)
        if "category" in changes:
            changes["category"] = TextValidator.sanitize(changes["category"]) or None
        total_copies = changes.pop("total_copies", None)

        with self.store.atomic() as session:
            if session.books.find_by_id(book_id) is None:
                return None
            if total_copies is not None:
                book_state.adjust_total_copies(session, book_id, total_copies)
            return session.books.update(book_id, changes)

    def set_book_status(self, book_id: int, status: BookStatus) -> Book:
        with self.store.atomic() as session:
            return book_state.update_book_status(session, book_id, BookStatus(status))

    def remove_book(self, book_id: int) -> bool:
        with self.store.atomic() as session:
            return session.books.delete(book_id)

    # ------------------------- Members ------------------------- #
    def register_member(self, name: str, email: str, membership_number: str) -> Member:
        name = self._require_name(name)
        email = self._clean_email(email)
        membership_number = self._require_text(membership_number, "Membership number")

        with self.store.atomic() as session:
            member = session.members.create({
                "name": name,
                "email": email,
                "membership_number": membership_number,
                "status": MemberStatus.ACTIVE,
            })
        logger.info("Registered member %s (%s)", member.id, member.membership_number)
        return member

    def list_members(self) -> List[Member]:
        with self.store.read() as session:
            return session.members.find_all()

    def find_member(self, member_id: int) -> Optional[Member]:
        with self.store.read() as session:
            return session.members.find_by_id(member_id)

    def update_member(self, member_id: int, patch: MemberPatch) -> Optional[Member]:
        changes = patch.changes()
        if not changes:
            raise ValueError("Nothing to update. Provide name, email or membership_number.")
        if "name" in changes:
            changes["name"] = self._require_name(changes["name"])
        if "email" in changes:
            changes["email"] = self._clean_email(changes["email"])
        if "membership_number" in changes:
            changes["membership_number"] = self._require_text(changes["membership_number"], "Membership number")

        with self.store.atomic() as session:
            return session.members.update(member_id, changes)

    def remove_member(self, member_id: int) -> bool:
        with self.store.atomic() as session:
            return session.members.delete(member_id)

    def suspend_member(self, member_id: int) -> Member:
        with self.store.atomic() as session:
            return member_state.suspend_member(session, member_id)

    def activate_member(self, member_id: int) -> Member:
        with self.store.atomic() as session:
            return member_state.activate_member(session, member_id)

    def member_loans(self, member_id: int) -> List[Transaction]:
        return circulation.list_member_loans(self.store, member_id)

    # ------------------------- Circulation ------------------------- #
    def borrow_book(self, member_id: int, book_id: int, now: Optional[datetime] = None) -> Transaction:
        return circulation.borrow_book(self.store, member_id, book_id, now=now)

    def return_book(self, transaction_id: int, now: Optional[datetime] = None) -> ReturnResult:
        return circulation.return_book(self.store, transaction_id, now=now)

    def find_transaction(self, transaction_id: int) -> Optional[Transaction]:
        return circulation.get_transaction(self.store, transaction_id)

    def list_overdue(self, now: Optional[datetime] = None) -> List[Transaction]:
        return circulation.list_overdue_transactions(self.store, now=now)

    def sweep_overdue(self, now: Optional[datetime] = None) -> int:
        return circulation.update_overdue_statuses(self.store, now=now)

    # ------------------------- Fines ------------------------- #
    def pay_fine(self, fine_id: int, now: Optional[datetime] = None) -> Fine:
        return circulation.pay_fine(self.store, fine_id, now=now)

    def list_fines(self) -> List[Fine]:
        return circulation.list_fines(self.store)

    def member_fines(self, member_id: int, unpaid_only: bool = False) -> List[Fine]:
        if self.find_member(member_id) is None:
            raise NotFoundError("Member", member_id)
        if unpaid_only:
            return circulation.list_unpaid_fines(self.store, member_id)
        return circulation.list_member_fines(self.store, member_id)

    # ------------------------- Statistics ------------------------- #
    def get_statistics(self) -> Dict[str, Any]:
        with self.store.read() as session:
            unpaid = session.fines.find_all(paid_at__isnull=True)
            return {
                "total_books": session.books.count(),
                "available_books": session.books.count(available_copies__gt=0),
                "total_members": session.members.count(),
                "suspended_members": session.members.count(status=MemberStatus.SUSPENDED),
                "active_loans": session.transactions.count(status=TransactionStatus.ACTIVE),
                "overdue_loans": session.transactions.count(status=TransactionStatus.OVERDUE),
                "unpaid_fines_total": round(sum(f.amount for f in unpaid), 2),
            }

    def ping(self) -> bool:
        return self.store.ping()

    # ------------------------- Helpers ------------------------- #
    @staticmethod
    def _clean_isbn(raw: Optional[str]) -> str:
        isbn = ISBNValidator.normalize_isbn(raw)
        if not isbn:
            raise ValueError("ISBN is required")
        if not ISBNValidator.is_valid_isbn(isbn):
            raise ValueError("ISBN must be 10-20 digits (optionally ending in X)")
        return isbn

    @staticmethod
    def _clean_email(raw: Optional[str]) -> str:
        if not EmailValidator.is_valid_email(raw):
            raise ValueError("Valid email is required")
        return EmailValidator.normalize_email(raw)

    @staticmethod
    def _require_text(value: Optional[str], label: str) -> str:
        if TextValidator.is_blank(value):
            raise ValueError(f"{label} is required")
        return TextValidator.sanitize(value)

    @staticmethod
    def _require_name(value: Optional[str]) -> str:
        if not TextValidator.validate_name(value):
            raise ValueError("Name is required")
        return TextValidator.sanitize(value)
