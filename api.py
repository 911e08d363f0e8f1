import logging
from typing import List, Optional, Any
from datetime import datetime, timezone
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field

from library import Library
from config import settings
from errors import (
    ConflictError,
    InvalidOperationError,
    InvalidStateTransitionError,
    LibraryError,
    NotFoundError,
    ValidationFailedError,
)
from models import BookPatch, BookStatus, MemberPatch

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

library = Library()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("%s %s using database %s", settings.app_name, settings.app_version, library.db_file)
    yield


app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)

# Compress responses larger than 1KB
app.add_middleware(GZipMiddleware, minimum_size=1000)

# --- CORS ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    response = await call_next(request)
    logger.info("%s %s -> %s", request.method, request.url.path, response.status_code)
    return response


# --- Error mapping ---
_STATUS_CODES = (
    (NotFoundError, 404),
    (ValidationFailedError, 400),
    (ConflictError, 409),
    (InvalidStateTransitionError, 409),
    (InvalidOperationError, 400),
)


@app.exception_handler(LibraryError)
async def library_error_handler(request: Request, exc: LibraryError):
    status_code = next((code for kind, code in _STATUS_CODES if isinstance(exc, kind)), 400)
    content: dict = {"success": False, "message": str(exc)}
    if isinstance(exc, ValidationFailedError):
        content["errors"] = exc.errors
    return JSONResponse(status_code=status_code, content=content)


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return JSONResponse(status_code=400, content={"success": False, "message": str(exc)})


def _ok(data: Any = None, message: Optional[str] = None, **extra: Any) -> dict:
    payload: dict = {"success": True}
    if message:
        payload["message"] = message
    if data is not None:
        payload["data"] = data
    payload.update(extra)
    return payload


def _ok_list(items: List[Any]) -> dict:
    return _ok([item.to_dict() for item in items], count=len(items))


# --- Models ---
class BookCreateModel(BaseModel):
    isbn: str
    title: str
    author: str
    category: Optional[str] = None
    total_copies: int = Field(default=1, ge=1, description="Number of copies owned")
    available_copies: Optional[int] = Field(default=None, ge=0, description="Defaults to total_copies")

class BookUpdateModel(BaseModel):
    isbn: Optional[str] = None
    title: Optional[str] = None
    author: Optional[str] = None
    category: Optional[str] = None
    total_copies: Optional[int] = Field(default=None, ge=1)

class BookStatusModel(BaseModel):
    status: BookStatus

class MemberCreateModel(BaseModel):
    name: str
    email: EmailStr
    membership_number: str

class MemberUpdateModel(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    membership_number: Optional[str] = None

class BorrowModel(BaseModel):
    member_id: int = Field(ge=1)
    book_id: int = Field(ge=1)


# --- Health ---
@app.get("/health")
def health():
    """Liveness check with a quick database round trip."""
    try:
        db_ok = library.ping()
    except Exception:
        logger.exception("Database health check failed")
        db_ok = False
    return {
        "success": True,
        "status": "healthy" if db_ok else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "db": db_ok,
    }


@app.get("/api/stats")
def get_stats():
    return _ok(library.get_statistics())


# --- Books ---
@app.post("/api/books", status_code=201)
def create_book(payload: BookCreateModel):
    book = library.register_book(
        isbn=payload.isbn,
        title=payload.title,
        author=payload.author,
        category=payload.category,
        total_copies=payload.total_copies,
        available_copies=payload.available_copies,
    )
    return _ok(book.to_dict())

@app.get("/api/books")
def list_books():
    return _ok_list(library.list_books())

@app.get("/api/books/available")
def list_available_books():
    return _ok_list(library.list_available_books())

@app.get("/api/books/{book_id}")
def get_book(book_id: int):
    book = library.find_book(book_id)
    if not book:
        raise NotFoundError("Book", book_id)
    return _ok(book.to_dict())

@app.put("/api/books/{book_id}")
def update_book(book_id: int, update: BookUpdateModel):
    book = library.update_book(book_id, BookPatch(**update.model_dump()))
    if not book:
        raise NotFoundError("Book", book_id)
    return _ok(book.to_dict())

@app.patch("/api/books/{book_id}/status")
def update_book_status(book_id: int, payload: BookStatusModel):
    return _ok(library.set_book_status(book_id, payload.status).to_dict())

@app.delete("/api/books/{book_id}")
def delete_book(book_id: int):
    if not library.remove_book(book_id):
        raise NotFoundError("Book", book_id)
    return _ok(message="Book deleted successfully")


# --- Members ---
@app.post("/api/members", status_code=201)
def create_member(payload: MemberCreateModel):
    member = library.register_member(payload.name, payload.email, payload.membership_number)
    return _ok(member.to_dict())

@app.get("/api/members")
def list_members():
    return _ok_list(library.list_members())

@app.get("/api/members/{member_id}")
def get_member(member_id: int):
    member = library.find_member(member_id)
    if not member:
        raise NotFoundError("Member", member_id)
    return _ok(member.to_dict())

@app.get("/api/members/{member_id}/books")
def get_member_books(member_id: int):
    return _ok_list(library.member_loans(member_id))

@app.put("/api/members/{member_id}")
def update_member(member_id: int, update: MemberUpdateModel):
    member = library.update_member(member_id, MemberPatch(**update.model_dump()))
    if not member:
        raise NotFoundError("Member", member_id)
    return _ok(member.to_dict())

@app.post("/api/members/{member_id}/suspend")
def suspend_member(member_id: int):
    return _ok(library.suspend_member(member_id).to_dict(), message="Member suspended")

@app.post("/api/members/{member_id}/activate")
def activate_member(member_id: int):
    return _ok(library.activate_member(member_id).to_dict(), message="Member activated")

@app.delete("/api/members/{member_id}")
def delete_member(member_id: int):
    if not library.remove_member(member_id):
        raise NotFoundError("Member", member_id)
    return _ok(message="Member deleted successfully")


# --- Transactions ---
@app.post("/api/transactions/borrow", status_code=201)
def borrow_book(payload: BorrowModel):
    transaction = library.borrow_book(payload.member_id, payload.book_id)
    return _ok(transaction.to_dict(), message="Book borrowed successfully")

@app.post("/api/transactions/{transaction_id}/return")
def return_book(transaction_id: int):
    result = library.return_book(transaction_id)
    return _ok(result.to_dict(), message="Book returned successfully")

@app.get("/api/transactions/overdue")
def list_overdue_transactions():
    return _ok_list(library.list_overdue())

@app.post("/api/transactions/update-overdue")
def update_overdue_statuses():
    count = library.sweep_overdue()
    return _ok(message=f"Updated {count} transactions to overdue status", count=count)

@app.get("/api/transactions/{transaction_id}")
def get_transaction(transaction_id: int):
    transaction = library.find_transaction(transaction_id)
    if not transaction:
        raise NotFoundError("Transaction", transaction_id)
    return _ok(transaction.to_dict())


# --- Fines ---
@app.get("/api/fines")
def list_fines():
    return _ok_list(library.list_fines())

@app.post("/api/fines/{fine_id}/pay")
def pay_fine(fine_id: int):
    return _ok(library.pay_fine(fine_id).to_dict(), message="Fine paid successfully")

@app.get("/api/fines/member/{member_id}")
def get_member_fines(member_id: int):
    return _ok_list(library.member_fines(member_id))

@app.get("/api/fines/member/{member_id}/unpaid")
def get_member_unpaid_fines(member_id: int):
    return _ok_list(library.member_fines(member_id, unpaid_only=True))


@app.get("/")
def read_root():
    return {"name": settings.app_name, "version": settings.app_version, "docs": "/docs"}
