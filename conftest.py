import os
from datetime import datetime, timezone

import pytest

from library import Library


@pytest.fixture
def db_file(tmp_path, request):
    # A separate database file for every test
    return str(tmp_path / f"test_{request.node.name}.db")


@pytest.fixture
def lib(db_file):
    lib = Library(db_file=db_file)
    yield lib
    if os.path.exists(db_file):
        os.remove(db_file)


@pytest.fixture
def member(lib):
    return lib.register_member("Ada Lovelace", "ada@example.com", "M-0001")


@pytest.fixture
def book(lib):
    return lib.register_book("9780262033848", "Introduction to Algorithms", "Cormen", total_copies=2)


@pytest.fixture
def t0():
    """Fixed borrow time so due dates and fines are predictable."""
    return datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)
