import logging
import os
import subprocess
import sys
import webbrowser
from typing import Optional

import typer
from rich.console import Console

import database
from config import settings
from errors import LibraryError, ValidationFailedError
from library import Library
from ui_helpers import (
    print_books,
    print_error,
    print_fines,
    print_record,
    print_stats_result,
    print_transactions,
    set_output_mode,
)

APP_NAME = "Library CLI"

console = Console()
logger = logging.getLogger(__name__)

# Global options shared by every command
_state = {"db_file": None}


def _is_test_env() -> bool:
    return ("PYTEST_CURRENT_TEST" in os.environ) or (os.environ.get("LIB_CLI_TEST_MODE") == "1")


def get_library() -> Library:
    """Library bound to the --db option, or the configured database."""
    return Library(db_file=_state["db_file"])


def _fail(exc: Exception) -> None:
    print_error(str(exc))
    if isinstance(exc, ValidationFailedError):
        for message in exc.errors:
            print(f"  - {message}")
    raise typer.Exit(code=1)


# --- Typer CLI application ---
app = typer.Typer(help=APP_NAME)

@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    ),
    db: Optional[str] = typer.Option(
        None,
        "--db",
        help="SQLite database file (default: LIBRARY_DB_FILE or library.db)",
    ),
):
    """Global options for the CLI (output mode, database file)."""
    logging.basicConfig(level=settings.log_level)
    if output:
        try:
            set_output_mode(output)
        except ValueError as e:
            raise typer.BadParameter(str(e), param_hint="--output")
    _state["db_file"] = db


@app.command("init-db")
def cli_init_db():
    """Create the database schema (safe to run repeatedly)."""
    db_file = _state["db_file"] or os.environ.get("LIBRARY_DB_FILE") or settings.db_file
    database.initialize_database(db_file)
    print(f"Database initialized at {db_file}")


@app.command("books")
def cli_books(available: bool = typer.Option(False, "--available", help="Only books with a free copy")):
    """List the catalogue."""
    lib = get_library()
    books = lib.list_available_books() if available else lib.list_books()
    print_books(books)


@app.command("add-book")
def cli_add_book(
    isbn: str,
    title: str,
    author: str,
    category: Optional[str] = typer.Option(None, "--category", "-c"),
    copies: int = typer.Option(1, "--copies", min=1, help="Number of copies owned"),
):
    """Register a book in the catalogue."""
    try:
        book = get_library().register_book(isbn, title, author, category=category, total_copies=copies)
    except (LibraryError, ValueError) as e:
        _fail(e)
    print_record(f"Added book #{book.id}: {book}", book.to_dict())


@app.command("add-member")
def cli_add_member(name: str, email: str, membership_number: str):
    """Register a library member."""
    try:
        member = get_library().register_member(name, email, membership_number)
    except (LibraryError, ValueError) as e:
        _fail(e)
    print_record(f"Added member #{member.id}: {member.name} ({member.membership_number})", member.to_dict())


@app.command("borrow")
def cli_borrow(member_id: int, book_id: int):
    """Lend a book to a member."""
    try:
        transaction = get_library().borrow_book(member_id, book_id)
    except LibraryError as e:
        _fail(e)
    print_record(
        f"Transaction #{transaction.id}: book {book_id} lent to member {member_id}, "
        f"due {transaction.due_date.date().isoformat()}",
        transaction.to_dict(),
    )


@app.command("return")
def cli_return(transaction_id: int):
    """Return a borrowed book; a fine is issued when it is late."""
    try:
        result = get_library().return_book(transaction_id)
    except LibraryError as e:
        _fail(e)
    message = f"Transaction #{transaction_id} returned"
    if result.fine:
        message += f" {result.overdue_days} day(s) late, fine #{result.fine.id}: {result.fine.amount:.2f}"
    print_record(message, result.to_dict())


@app.command("pay-fine")
def cli_pay_fine(fine_id: int):
    """Mark a fine as paid."""
    try:
        fine = get_library().pay_fine(fine_id)
    except LibraryError as e:
        _fail(e)
    print_record(f"Fine #{fine.id} paid ({fine.amount:.2f})", fine.to_dict())


@app.command("fines")
def cli_fines(member_id: Optional[int] = typer.Option(None, "--member", help="Only fines of this member")):
    """List fines, optionally for one member."""
    lib = get_library()
    try:
        fines = lib.list_fines() if member_id is None else lib.member_fines(member_id)
    except LibraryError as e:
        _fail(e)
    print_fines(fines)


@app.command("overdue")
def cli_overdue():
    """List loans past their due date."""
    print_transactions(get_library().list_overdue(), empty_message="No overdue loans.")


@app.command("sweep")
def cli_sweep():
    """Mark past-due loans as overdue and apply suspensions."""
    count = get_library().sweep_overdue()
    print_record(f"Updated {count} transactions to overdue status", {"count": count})


@app.command("stats")
def cli_stats():
    """Show library statistics."""
    print_stats_result(get_library().get_statistics())


@app.command("serve")
def cli_serve(
    timeout: int = typer.Option(0, "--timeout", help="Seconds to run before shutting down (0 = no timeout)"),
    open_browser: bool = typer.Option(True, "--browser/--no-browser", help="Open the API docs in a browser"),
):
    """Start the HTTP API with uvicorn."""
    host = settings.api_host
    port = int(settings.api_port)
    url = f"http://{host}:{port}/docs"
    print(f"Starting API on {url}")

    env = dict(os.environ)
    if _state["db_file"]:
        env["LIBRARY_DB_FILE"] = _state["db_file"]
    if open_browser and not _is_test_env():
        webbrowser.open(url)

    args = [
        sys.executable,
        "-m", "uvicorn",
        "api:app",
        "--host", host,
        "--port", str(port),
    ]
    if timeout and timeout > 0:
        proc = subprocess.Popen(args, env=env)
        try:
            proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            proc.terminate()
            try:
                proc.wait(timeout=5)
            except subprocess.TimeoutExpired:
                proc.kill()
    else:
        if settings.debug:
            args.append("--reload")
        try:
            subprocess.run(args, env=env)
        except FileNotFoundError:
            console.print("[bold red]Error:[/] could not start uvicorn. Make sure it is installed.")
            raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
