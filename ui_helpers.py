import os
import json
from typing import List, Any, Dict
from rich.console import Console
from rich.table import Table
from rich.panel import Panel

# Environment variable to control CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "LIB_CLI_OUTPUT"
OUTPUT_MODES = {"plain", "json", "rich"}

_console = Console()

def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode not in OUTPUT_MODES:
        raise ValueError(f"Unknown output mode '{mode}'. Use one of: plain, json, rich")
    os.environ[OUTPUT_MODE_ENV] = mode

def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, ensure_ascii=False, default=str))


def print_books(books: List[Any]) -> None:
    """Print books in the current output mode.
    - plain: '#id ISBN - Title by Author (available/total, status)' lines
    - json: list of book dicts
    - rich: table
    """
    mode = get_output_mode()
    if mode == "json":
        _print_json([b.to_dict() for b in books])
        return
    if not books:
        print("No books in library.")
        return

    if mode == "rich":
        table = Table(title="📚 Books", show_lines=True, header_style="bold cyan")
        table.add_column("ID", justify="right")
        table.add_column("ISBN", style="magenta", no_wrap=True)
        table.add_column("Title", style="white")
        table.add_column("Author", style="white")
        table.add_column("Copies", justify="right")
        table.add_column("Status")
        for b in books:
            table.add_row(
                str(b.id), b.isbn, b.title, b.author,
                f"{b.available_copies}/{b.total_copies}", b.status.value,
            )
        _console.print(table)
    else:
        for b in books:
            print(f"#{b.id} {b} ({b.available_copies}/{b.total_copies}, {b.status.value})")


def print_transactions(transactions: List[Any], empty_message: str = "No transactions.") -> None:
    mode = get_output_mode()
    if mode == "json":
        _print_json([t.to_dict() for t in transactions])
        return
    if not transactions:
        print(empty_message)
        return

    if mode == "rich":
        table = Table(title="🔁 Transactions", header_style="bold cyan")
        table.add_column("ID", justify="right")
        table.add_column("Member", justify="right")
        table.add_column("Book")
        table.add_column("Due")
        table.add_column("Status")
        for t in transactions:
            title = t.book.title if t.book else str(t.book_id)
            table.add_row(str(t.id), str(t.member_id), title, t.due_date.date().isoformat(), t.status.value)
        _console.print(table)
    else:
        for t in transactions:
            title = t.book.title if t.book else f"book {t.book_id}"
            print(f"#{t.id} member {t.member_id} - {title} due {t.due_date.date().isoformat()} [{t.status.value}]")


def print_fines(fines: List[Any]) -> None:
    mode = get_output_mode()
    if mode == "json":
        _print_json([f.to_dict() for f in fines])
        return
    if not fines:
        print("No fines.")
        return

    for f in fines:
        state = "paid" if f.is_paid else "unpaid"
        if mode == "rich":
            colour = "green" if f.is_paid else "red"
            _console.print(f"#{f.id} member {f.member_id}: [bold]{f.amount:.2f}[/] [{colour}]{state}[/]")
        else:
            print(f"#{f.id} member {f.member_id}: {f.amount:.2f} ({state})")


def print_record(message: str, record: Dict[str, Any]) -> None:
    """Print the outcome of a single write: a message, or the record itself in json mode."""
    mode = get_output_mode()
    if mode == "json":
        _print_json(record)
    elif mode == "rich":
        _console.print(f"[bold green]✓[/] {message}")
    else:
        print(message)


def print_stats_result(stats: Dict[str, Any]) -> None:
    """Print statistics in the current output mode.
    - plain: one 'Label: value' line per metric
    - json: JSON object
    - rich: Panel with the main metrics
    """
    mode = get_output_mode()

    if not stats:
        print("No statistics available.")
        return

    labels = {
        "total_books": "Total Books",
        "available_books": "Available Books",
        "total_members": "Total Members",
        "suspended_members": "Suspended Members",
        "active_loans": "Active Loans",
        "overdue_loans": "Overdue Loans",
        "unpaid_fines_total": "Unpaid Fines",
    }

    if mode == "json":
        _print_json(stats)
    elif mode == "rich":
        content = "\n".join(f"[bold]{label}:[/] {stats.get(key, 0)}" for key, label in labels.items())
        _console.print(Panel.fit(content, title="📊 Stats", border_style="blue"))
    else:
        for key, label in labels.items():
            print(f"{label}: {stats.get(key, 0)}")


def print_error(message: str) -> None:
    if get_output_mode() == "rich":
        _console.print(f"[bold red]Error:[/] {message}")
    else:
        print(f"Error: {message}")
