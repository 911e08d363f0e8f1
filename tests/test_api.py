import os
import importlib
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from models import utcnow


@pytest.fixture
def client(tmp_path, request):
    # Create a unique per-test DB and ensure api picks it up at import time
    db_file = str(tmp_path / f"api_test_{request.node.name}.db")
    os.environ["LIBRARY_DB_FILE"] = db_file

    import api as api_module
    # Reload api so its global Library() instance uses the test-specific DB
    importlib.reload(api_module)

    test_client = TestClient(api_module.app)
    try:
        yield test_client
    finally:
        os.environ.pop("LIBRARY_DB_FILE", None)


def _create_book(client, isbn="9780262033848", copies=1):
    response = client.post("/api/books", json={
        "isbn": isbn, "title": "Introduction to Algorithms", "author": "Cormen", "total_copies": copies,
    })
    assert response.status_code == 201
    return response.json()["data"]


def _create_member(client, number="M-0001", email="ada@example.com"):
    response = client.post("/api/members", json={
        "name": "Ada Lovelace", "email": email, "membership_number": number,
    })
    assert response.status_code == 201
    return response.json()["data"]


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_books_crud(client):
    assert client.get("/api/books").json() == {"success": True, "data": [], "count": 0}

    book = _create_book(client, copies=2)
    assert book["available_copies"] == 2
    assert book["status"] == "available"

    response = client.get(f"/api/books/{book['id']}")
    assert response.json()["data"]["isbn"] == "9780262033848"

    response = client.put(f"/api/books/{book['id']}", json={"title": "CLRS"})
    assert response.status_code == 200
    assert response.json()["data"]["title"] == "CLRS"

    assert client.delete(f"/api/books/{book['id']}").status_code == 200
    assert client.get(f"/api/books/{book['id']}").status_code == 404


def test_book_errors(client):
    _create_book(client)
    duplicate = client.post("/api/books", json={"isbn": "9780262033848", "title": "T", "author": "A"})
    assert duplicate.status_code == 409

    missing_title = client.post("/api/books", json={"isbn": "9780262033849", "author": "A"})
    assert missing_title.status_code == 422

    bad_isbn = client.post("/api/books", json={"isbn": "123", "title": "T", "author": "A"})
    assert bad_isbn.status_code == 400
    assert bad_isbn.json()["success"] is False

    empty_update = client.put("/api/books/1", json={})
    assert empty_update.status_code == 400

    assert client.put("/api/books/999", json={"title": "X"}).status_code == 404


def test_book_status_endpoint(client):
    book = _create_book(client)
    response = client.patch(f"/api/books/{book['id']}/status", json={"status": "maintenance"})
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "maintenance"

    conflict = client.patch(f"/api/books/{book['id']}/status", json={"status": "reserved"})
    assert conflict.status_code == 409

    unknown = client.patch(f"/api/books/{book['id']}/status", json={"status": "lost"})
    assert unknown.status_code == 422


def test_available_books(client):
    book = _create_book(client)
    member = _create_member(client)
    assert client.get("/api/books/available").json()["count"] == 1

    client.post("/api/transactions/borrow", json={"member_id": member["id"], "book_id": book["id"]})
    assert client.get("/api/books/available").json()["count"] == 0


def test_members_crud(client):
    member = _create_member(client)
    assert member["status"] == "active"

    response = client.put(f"/api/members/{member['id']}", json={"name": "Ada King"})
    assert response.json()["data"]["name"] == "Ada King"

    duplicate = client.post("/api/members", json={
        "name": "Other", "email": "ada@example.com", "membership_number": "M-0002",
    })
    assert duplicate.status_code == 409

    assert client.get("/api/members").json()["count"] == 1
    assert client.delete(f"/api/members/{member['id']}").status_code == 200
    assert client.get(f"/api/members/{member['id']}").status_code == 404


def test_suspend_and_activate(client):
    member = _create_member(client)
    response = client.post(f"/api/members/{member['id']}/suspend")
    assert response.json()["data"]["status"] == "suspended"
    assert client.post(f"/api/members/{member['id']}/suspend").status_code == 409

    response = client.post(f"/api/members/{member['id']}/activate")
    assert response.json()["data"]["status"] == "active"
    assert client.post("/api/members/999/activate").status_code == 404


def test_borrow_and_return(client):
    book = _create_book(client)
    member = _create_member(client)

    response = client.post("/api/transactions/borrow", json={"member_id": member["id"], "book_id": book["id"]})
    assert response.status_code == 201
    transaction = response.json()["data"]
    assert transaction["status"] == "active"
    assert transaction["book"]["available_copies"] == 0
    assert transaction["book"]["status"] == "borrowed"

    loans = client.get(f"/api/members/{member['id']}/books").json()
    assert loans["count"] == 1

    response = client.post(f"/api/transactions/{transaction['id']}/return")
    assert response.status_code == 200
    result = response.json()["data"]
    assert result["transaction"]["status"] == "returned"
    assert result["fine"] is None
    assert result["overdue_days"] == 0

    again = client.post(f"/api/transactions/{transaction['id']}/return")
    assert again.status_code == 400
    assert again.json()["message"] == "Book already returned"


def test_borrow_validation_errors(client):
    book = _create_book(client)
    response = client.post("/api/transactions/borrow", json={"member_id": 99, "book_id": book["id"]})
    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert "Member is not active or does not exist" in body["errors"]

    invalid = client.post("/api/transactions/borrow", json={"member_id": 0, "book_id": book["id"]})
    assert invalid.status_code == 422


def test_return_unknown_transaction(client):
    response = client.post("/api/transactions/999/return")
    assert response.status_code == 404
    assert response.json()["message"] == "Transaction not found"


def test_overdue_sweep_and_fines(client):
    import api as api_module

    book = _create_book(client)
    member = _create_member(client)
    # backdate the loan through the library the app is serving
    loan = api_module.library.borrow_book(member["id"], book["id"], now=utcnow() - timedelta(days=20))

    overdue = client.get("/api/transactions/overdue").json()
    assert [t["id"] for t in overdue["data"]] == [loan.id]

    sweep = client.post("/api/transactions/update-overdue").json()
    assert sweep["count"] == 1
    assert client.post("/api/transactions/update-overdue").json()["count"] == 0

    result = client.post(f"/api/transactions/{loan.id}/return").json()["data"]
    assert result["overdue_days"] == 6
    fine = result["fine"]
    assert fine["amount"] == 3.0

    unpaid = client.get(f"/api/fines/member/{member['id']}/unpaid").json()
    assert unpaid["count"] == 1
    assert client.get("/api/fines").json()["count"] == 1

    paid = client.post(f"/api/fines/{fine['id']}/pay")
    assert paid.status_code == 200
    assert paid.json()["data"]["paid_at"] is not None
    assert client.post(f"/api/fines/{fine['id']}/pay").status_code == 400
    assert client.get(f"/api/fines/member/{member['id']}/unpaid").json()["count"] == 0
    assert client.get(f"/api/fines/member/{member['id']}").json()["count"] == 1


def test_member_fines_unknown_member(client):
    assert client.get("/api/fines/member/42").status_code == 404


def test_stats(client):
    _create_book(client)
    data = client.get("/api/stats").json()["data"]
    assert data["total_books"] == 1
    assert data["active_loans"] == 0


def test_get_transaction_with_details(client):
    book = _create_book(client)
    member = _create_member(client)
    borrowed = client.post("/api/transactions/borrow", json={"member_id": member["id"], "book_id": book["id"]})
    transaction_id = borrowed.json()["data"]["id"]

    response = client.get(f"/api/transactions/{transaction_id}")
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["book"]["isbn"] == book["isbn"]
    assert data["member"]["membership_number"] == member["membership_number"]

    assert client.get("/api/transactions/999").status_code == 404


def test_total_copies_lower_bound(client):
    book = _create_book(client)
    assert client.put(f"/api/books/{book['id']}", json={"total_copies": 0}).status_code == 422
    create = client.post("/api/books", json={
        "isbn": "9780262033849", "title": "T", "author": "A", "total_copies": 0,
    })
    assert create.status_code == 422


def test_member_email_is_validated(client):
    response = client.post("/api/members", json={
        "name": "Ada Lovelace", "email": "not-an-email", "membership_number": "M-0001",
    })
    assert response.status_code == 422
    assert client.get("/api/members").json()["count"] == 0
