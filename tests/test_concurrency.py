import threading
from datetime import timedelta

from errors import ValidationFailedError
from library import Library
from models import BookStatus, TransactionStatus


def _race(workers):
    barrier = threading.Barrier(len(workers))
    outcomes = []
    lock = threading.Lock()

    def run(fn):
        barrier.wait()
        try:
            result = fn()
        except ValidationFailedError as e:
            result = e
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=run, args=(fn,)) for fn in workers]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)
    return outcomes


def test_two_borrows_of_last_copy(db_file):
    lib = Library(db_file=db_file)
    single = lib.register_book("9787777777777", "Contested", "Author", total_copies=1)
    first = lib.register_member("First", "first@example.com", "M-1")
    second = lib.register_member("Second", "second@example.com", "M-2")

    # separate Library instances, as two API workers would have
    lib_a, lib_b = Library(db_file=db_file), Library(db_file=db_file)
    outcomes = _race([
        lambda: lib_a.borrow_book(first.id, single.id),
        lambda: lib_b.borrow_book(second.id, single.id),
    ])

    failures = [o for o in outcomes if isinstance(o, ValidationFailedError)]
    assert len(outcomes) == 2
    assert len(failures) == 1
    assert failures[0].errors == ["Book is not available"]

    book = lib.find_book(single.id)
    assert book.available_copies == 0
    assert book.status == BookStatus.BORROWED


def test_concurrent_borrows_respect_loan_limit(db_file):
    lib = Library(db_file=db_file)
    member = lib.register_member("Busy", "busy@example.com", "M-1")
    books = [lib.register_book(f"97888888888{i:02d}", f"Book {i}", "Author") for i in range(5)]
    for b in books[:2]:
        lib.borrow_book(member.id, b.id)

    outcomes = _race([
        lambda: lib.borrow_book(member.id, books[2].id),
        lambda: lib.borrow_book(member.id, books[3].id),
        lambda: lib.borrow_book(member.id, books[4].id),
    ])

    failures = [o for o in outcomes if isinstance(o, ValidationFailedError)]
    assert len(failures) == 2
    assert len(lib.member_loans(member.id)) == 3


def test_return_and_sweep_race(db_file, t0):
    lib = Library(db_file=db_file)
    stock = lib.register_book("9789999999999", "Raced", "Author", total_copies=5)
    late = t0 + timedelta(days=20)

    for i in range(5):
        member = lib.register_member(f"Reader {i}", f"reader{i}@example.com", f"M-{i}")
        loan = lib.borrow_book(member.id, stock.id, now=t0)

        lib_a, lib_b = Library(db_file=db_file), Library(db_file=db_file)
        outcomes = _race([
            lambda: lib_a.return_book(loan.id, now=late),
            lambda: lib_b.sweep_overdue(now=late),
        ])
        assert len(outcomes) == 2

        final = lib.find_transaction(loan.id)
        assert final.status == TransactionStatus.RETURNED
        assert final.returned_at == late

    with lib.store.read() as session:
        assert session.transactions.count(status=TransactionStatus.OVERDUE, returned_at__isnull=False) == 0
    assert lib.find_book(stock.id).available_copies == 5
