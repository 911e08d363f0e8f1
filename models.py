from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime the way it is stored: UTC, microsecond precision."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class BookStatus(str, Enum):
    AVAILABLE = "available"
    BORROWED = "borrowed"
    MAINTENANCE = "maintenance"
    RESERVED = "reserved"


class MemberStatus(str, Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"


class TransactionStatus(str, Enum):
    ACTIVE = "active"
    OVERDUE = "overdue"
    RETURNED = "returned"


@dataclass
class Book:
    """A catalogue entry with its copy bookkeeping."""
    id: int
    isbn: str
    title: str
    author: str
    category: Optional[str] = None
    total_copies: int = 1
    available_copies: int = 1
    status: BookStatus = BookStatus.AVAILABLE
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def __str__(self) -> str:
        return f"{self.title} by {self.author} (ISBN: {self.isbn})"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "isbn": self.isbn,
            "title": self.title,
            "author": self.author,
            "category": self.category,
            "total_copies": self.total_copies,
            "available_copies": self.available_copies,
            "status": self.status.value,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @staticmethod
    def from_dict(data: dict) -> "Book":
        return Book(
            id=data["id"],
            isbn=data["isbn"],
            title=data["title"],
            author=data["author"],
            category=data.get("category"),
            total_copies=data["total_copies"],
            available_copies=data["available_copies"],
            status=BookStatus(data["status"]),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )


@dataclass
class Member:
    id: int
    name: str
    email: str
    membership_number: str
    status: MemberStatus = MemberStatus.ACTIVE
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status == MemberStatus.ACTIVE

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "membership_number": self.membership_number,
            "status": self.status.value,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @staticmethod
    def from_dict(data: dict) -> "Member":
        return Member(
            id=data["id"],
            name=data["name"],
            email=data["email"],
            membership_number=data["membership_number"],
            status=MemberStatus(data["status"]),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )


@dataclass
class Transaction:
    """A single loan of one copy of a book to a member.

    ``book`` and ``member`` are optional snapshots attached by the
    workflow when a joined view is requested; they are never persisted.
    """
    id: int
    book_id: int
    member_id: int
    borrowed_at: datetime
    due_date: datetime
    returned_at: Optional[datetime] = None
    status: TransactionStatus = TransactionStatus.ACTIVE
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    book: Optional[Book] = None
    member: Optional[Member] = None

    @property
    def is_returned(self) -> bool:
        return self.returned_at is not None

    def is_overdue(self, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        return self.returned_at is None and now > self.due_date

    def to_dict(self) -> dict:
        data: Dict[str, Any] = {
            "id": self.id,
            "book_id": self.book_id,
            "member_id": self.member_id,
            "borrowed_at": to_iso(self.borrowed_at),
            "due_date": to_iso(self.due_date),
            "returned_at": to_iso(self.returned_at),
            "status": self.status.value,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
        if self.book is not None:
            data["book"] = self.book.to_dict()
        if self.member is not None:
            data["member"] = self.member.to_dict()
        return data

    @staticmethod
    def from_dict(data: dict) -> "Transaction":
        return Transaction(
            id=data["id"],
            book_id=data["book_id"],
            member_id=data["member_id"],
            borrowed_at=parse_iso(data["borrowed_at"]),
            due_date=parse_iso(data["due_date"]),
            returned_at=parse_iso(data.get("returned_at")),
            status=TransactionStatus(data["status"]),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )


@dataclass
class Fine:
    id: int
    member_id: int
    transaction_id: int
    amount: float
    paid_at: Optional[datetime] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def is_paid(self) -> bool:
        return self.paid_at is not None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "member_id": self.member_id,
            "transaction_id": self.transaction_id,
            "amount": self.amount,
            "paid_at": to_iso(self.paid_at),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @staticmethod
    def from_dict(data: dict) -> "Fine":
        return Fine(
            id=data["id"],
            member_id=data["member_id"],
            transaction_id=data["transaction_id"],
            amount=data["amount"],
            paid_at=parse_iso(data.get("paid_at")),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )


# ------------------------- Patches ------------------------- #
@dataclass
class Patch:
    """Base for partial updates: only fields that were set are written."""

    def changes(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name) is not None}

    def is_empty(self) -> bool:
        return not self.changes()


@dataclass
class BookPatch(Patch):
    """Client-editable book fields. ``total_copies`` is applied by the
    availability state machine, never written directly."""
    isbn: Optional[str] = None
    title: Optional[str] = None
    author: Optional[str] = None
    category: Optional[str] = None
    total_copies: Optional[int] = None


@dataclass
class MemberPatch(Patch):
    name: Optional[str] = None
    email: Optional[str] = None
    membership_number: Optional[str] = None


@dataclass
class ReturnResult:
    transaction: Transaction
    fine: Optional[Fine]
    overdue_days: int

    def to_dict(self) -> dict:
        return {
            "transaction": self.transaction.to_dict(),
            "fine": self.fine.to_dict() if self.fine else None,
            "overdue_days": self.overdue_days,
        }


@dataclass
class ValidationResult:
    valid: bool
    errors: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"valid": self.valid, "errors": list(self.errors)}
