import sqlite3
import logging
from typing import Optional

from config import settings

logger = logging.getLogger(__name__)


def get_db_connection(db_file: str, timeout: Optional[float] = None) -> sqlite3.Connection:
    """Open a connection to the SQLite database.

    Autocommit mode is used so that callers control transaction boundaries
    explicitly with BEGIN / COMMIT / ROLLBACK.
    """
    conn = sqlite3.connect(
        db_file,
        timeout=settings.db_busy_timeout if timeout is None else timeout,
        isolation_level=None,
        check_same_thread=False,
    )
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys=ON;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    return conn


def create_tables(db_file: str) -> None:
    """Create the required tables if they do not exist yet."""
    conn = get_db_connection(db_file)
    try:
        # WAL lets readers proceed while a workflow holds the write lock
        conn.execute("PRAGMA journal_mode=WAL;")
        cursor = conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS books (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                isbn TEXT UNIQUE NOT NULL,
                title TEXT NOT NULL,
                author TEXT NOT NULL,
                category TEXT,
                total_copies INTEGER NOT NULL DEFAULT 1 CHECK(total_copies >= 0),
                available_copies INTEGER NOT NULL DEFAULT 1 CHECK(available_copies >= 0),
                status TEXT NOT NULL DEFAULT 'available'
                    CHECK(status IN ('available', 'borrowed', 'maintenance', 'reserved')),
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                CHECK(available_copies <= total_copies)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS members (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                email TEXT UNIQUE NOT NULL,
                membership_number TEXT UNIQUE NOT NULL,
                status TEXT NOT NULL DEFAULT 'active'
                    CHECK(status IN ('active', 'suspended')),
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS transactions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                book_id INTEGER NOT NULL,
                member_id INTEGER NOT NULL,
                borrowed_at TEXT NOT NULL,
                due_date TEXT NOT NULL,
                returned_at TEXT,
                status TEXT NOT NULL DEFAULT 'active'
                    CHECK(status IN ('active', 'overdue', 'returned')),
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                FOREIGN KEY (book_id) REFERENCES books(id) ON DELETE RESTRICT,
                FOREIGN KEY (member_id) REFERENCES members(id) ON DELETE RESTRICT
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS fines (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                member_id INTEGER NOT NULL,
                transaction_id INTEGER NOT NULL,
                amount REAL NOT NULL CHECK(amount >= 0),
                paid_at TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                FOREIGN KEY (member_id) REFERENCES members(id) ON DELETE RESTRICT,
                FOREIGN KEY (transaction_id) REFERENCES transactions(id) ON DELETE RESTRICT
            )
        """)

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_books_available ON books(available_copies)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_transactions_member_status ON transactions(member_id, status)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_transactions_status_due ON transactions(status, due_date)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_fines_member_paid ON fines(member_id, paid_at)")
    finally:
        conn.close()


def initialize_database(db_file: str) -> None:
    """Initialize the database, creating tables when needed."""
    create_tables(db_file)
    logger.debug("Database initialized at %s", db_file)
