"""Entity store: record-level access to books, members, transactions and fines.

The store knows nothing about circulation rules.  It offers create /
find_by_id / update / find_all / count / delete per table and runs a set of
operations as one unit of work through :meth:`EntityStore.atomic`.

Filters passed to ``find_all`` and ``count`` use ``column__lookup`` keys::

    session.transactions.find_all(status="active", due_date__lt=now, returned_at__isnull=True)

Supported lookups: exact (no suffix), ``in``, ``lt``, ``lte``, ``gt``,
``gte`` and ``isnull``.
"""

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Generic, Iterator, List, Mapping, Optional, Sequence, Tuple, TypeVar

from database import get_db_connection, initialize_database
from errors import ConflictError, InvalidOperationError
from models import Book, Fine, Member, Transaction, to_iso, utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")

_LOOKUPS = {
    "lt": "<",
    "lte": "<=",
    "gt": ">",
    "gte": ">=",
}


def _to_db(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return to_iso(value)
    return value


class Table(Generic[T]):
    """Record access for one table with a fixed column schema."""

    def __init__(
        self,
        conn: sqlite3.Connection,
        name: str,
        columns: Sequence[str],
        factory: Callable[[dict], T],
    ) -> None:
        self.conn = conn
        self.name = name
        self.columns = frozenset(columns)
        self.factory = factory

    # ------------------------- helpers ------------------------- #
    def _check_columns(self, names: Sequence[str]) -> None:
        unknown = [n for n in names if n not in self.columns]
        if unknown:
            raise ValueError(f"Unknown column(s) for {self.name}: {', '.join(sorted(unknown))}")

    def _build_where(self, filters: Mapping[str, Any]) -> Tuple[str, List[Any]]:
        clauses: List[str] = []
        params: List[Any] = []
        for key, value in filters.items():
            column, _, lookup = key.partition("__")
            self._check_columns([column])
            if not lookup:
                if value is None:
                    clauses.append(f"{column} IS NULL")
                else:
                    clauses.append(f"{column} = ?")
                    params.append(_to_db(value))
            elif lookup == "in":
                values = [_to_db(v) for v in value]
                if not values:
                    clauses.append("0")
                    continue
                clauses.append(f"{column} IN ({', '.join('?' for _ in values)})")
                params.extend(values)
            elif lookup == "isnull":
                clauses.append(f"{column} IS NULL" if value else f"{column} IS NOT NULL")
            elif lookup in _LOOKUPS:
                clauses.append(f"{column} {_LOOKUPS[lookup]} ?")
                params.append(_to_db(value))
            else:
                raise ValueError(f"Unsupported lookup: {lookup}")
        where = " AND ".join(clauses) if clauses else "1"
        return where, params

    def _translate_integrity_error(self, exc: sqlite3.IntegrityError) -> Exception:
        message = str(exc)
        if "UNIQUE constraint failed" in message:
            column = message.rsplit(".", 1)[-1].strip()
            return ConflictError(f"{column} already exists", field=column)
        if "FOREIGN KEY constraint failed" in message:
            return ConflictError(f"{self.name[:-1].capitalize()} is referenced by other records")
        if "CHECK constraint failed" in message:
            return InvalidOperationError(f"Constraint violated on {self.name}: {message}")
        return ValueError(message)

    # ------------------------- operations ------------------------- #
    def create(self, fields: Mapping[str, Any]) -> T:
        data = dict(fields)
        now = to_iso(utcnow())
        data.setdefault("created_at", now)
        data.setdefault("updated_at", now)
        self._check_columns(list(data.keys()))
        names = list(data.keys())
        placeholders = ", ".join("?" for _ in names)
        try:
            cursor = self.conn.execute(
                f"INSERT INTO {self.name} ({', '.join(names)}) VALUES ({placeholders})",
                [_to_db(data[n]) for n in names],
            )
        except sqlite3.IntegrityError as e:
            raise self._translate_integrity_error(e) from e
        return self.find_by_id(cursor.lastrowid)

    def find_by_id(self, record_id: int) -> Optional[T]:
        row = self.conn.execute(f"SELECT * FROM {self.name} WHERE id = ?", (record_id,)).fetchone()
        return self.factory(dict(row)) if row else None

    def update(self, record_id: int, fields: Mapping[str, Any]) -> Optional[T]:
        """Write the given fields; returns the fresh record or None when absent."""
        data = dict(fields)
        if not data:
            return self.find_by_id(record_id)
        data["updated_at"] = to_iso(utcnow())
        self._check_columns(list(data.keys()))
        set_clause = ", ".join(f"{name} = ?" for name in data)
        params = [_to_db(v) for v in data.values()] + [record_id]
        try:
            cursor = self.conn.execute(f"UPDATE {self.name} SET {set_clause} WHERE id = ?", params)
        except sqlite3.IntegrityError as e:
            raise self._translate_integrity_error(e) from e
        if cursor.rowcount == 0:
            return None
        return self.find_by_id(record_id)

    def update_where(self, fields: Mapping[str, Any], **filters: Any) -> int:
        """Bulk update of every row matching ``filters``; returns the row count."""
        data = dict(fields)
        data["updated_at"] = to_iso(utcnow())
        self._check_columns(list(data.keys()))
        where, where_params = self._build_where(filters)
        set_clause = ", ".join(f"{name} = ?" for name in data)
        cursor = self.conn.execute(
            f"UPDATE {self.name} SET {set_clause} WHERE {where}",
            [_to_db(v) for v in data.values()] + where_params,
        )
        return cursor.rowcount

    def find_all(self, order_by: str = "id", **filters: Any) -> List[T]:
        descending = order_by.startswith("-")
        column = order_by.lstrip("-")
        self._check_columns([column])
        where, params = self._build_where(filters)
        rows = self.conn.execute(
            f"SELECT * FROM {self.name} WHERE {where} ORDER BY {column} {'DESC' if descending else 'ASC'}, id ASC",
            params,
        ).fetchall()
        return [self.factory(dict(row)) for row in rows]

    def count(self, **filters: Any) -> int:
        where, params = self._build_where(filters)
        return self.conn.execute(f"SELECT COUNT(*) FROM {self.name} WHERE {where}", params).fetchone()[0]

    def delete(self, record_id: int) -> bool:
        try:
            cursor = self.conn.execute(f"DELETE FROM {self.name} WHERE id = ?", (record_id,))
        except sqlite3.IntegrityError as e:
            raise self._translate_integrity_error(e) from e
        return cursor.rowcount > 0


BOOK_COLUMNS = (
    "id", "isbn", "title", "author", "category", "total_copies",
    "available_copies", "status", "created_at", "updated_at",
)
MEMBER_COLUMNS = ("id", "name", "email", "membership_number", "status", "created_at", "updated_at")
TRANSACTION_COLUMNS = (
    "id", "book_id", "member_id", "borrowed_at", "due_date", "returned_at",
    "status", "created_at", "updated_at",
)
FINE_COLUMNS = ("id", "member_id", "transaction_id", "amount", "paid_at", "created_at", "updated_at")


class Session:
    """The tables of one unit of work, all bound to the same connection."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn
        self.books: Table[Book] = Table(conn, "books", BOOK_COLUMNS, Book.from_dict)
        self.members: Table[Member] = Table(conn, "members", MEMBER_COLUMNS, Member.from_dict)
        self.transactions: Table[Transaction] = Table(conn, "transactions", TRANSACTION_COLUMNS, Transaction.from_dict)
        self.fines: Table[Fine] = Table(conn, "fines", FINE_COLUMNS, Fine.from_dict)


class EntityStore:
    """Handle on one SQLite database file.

    Nothing is cached between calls: each unit of work opens its own
    connection, so a single store can be shared between threads.
    """

    def __init__(self, db_file: str, timeout: Optional[float] = None) -> None:
        self.db_file = db_file
        self.timeout = timeout
        initialize_database(db_file)

    @contextmanager
    def _unit(self, begin: str) -> Iterator[Session]:
        conn = get_db_connection(self.db_file, timeout=self.timeout)
        try:
            conn.execute(begin)
            try:
                yield Session(conn)
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                logger.warning("Unit of work rolled back on %s", self.db_file)
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()

    def atomic(self):
        """Unit of work holding the database write lock from the first read.

        Use for every operation that writes; reads made inside observe the
        state the writes will be applied to.
        """
        return self._unit("BEGIN IMMEDIATE")

    def read(self):
        """Consistent read-only snapshot."""
        return self._unit("BEGIN")

    def ping(self) -> bool:
        conn = get_db_connection(self.db_file, timeout=self.timeout)
        try:
            conn.execute("SELECT 1")
            return True
        finally:
            conn.close()
