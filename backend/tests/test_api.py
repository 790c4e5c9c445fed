"""
HTTP surface tests, run against the in-memory store
"""
import pytest
from fastapi.testclient import TestClient

from auth import create_access_token
from memory_store import MemoryLedgerStore
from server import app
from services import build_services


@pytest.fixture
def client():
    app.state.services = build_services(MemoryLedgerStore())
    with TestClient(app) as test_client:
        yield test_client
    app.state.services = None


@pytest.fixture
def auth_headers():
    token = create_access_token({"user_id": "user-1"})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def category(client, auth_headers):
    response = client.post("/api/categories", json={"name": "Feeding", "balance": 500}, headers=auth_headers)
    assert response.status_code == 201, response.text
    return response.json()


@pytest.fixture
def donor(client, auth_headers):
    response = client.post("/api/donors", json={"name": "Amina", "contact": "amina@example.org"}, headers=auth_headers)
    assert response.status_code == 201, response.text
    return response.json()


@pytest.fixture
def beneficiary(client, auth_headers):
    response = client.post(
        "/api/beneficiaries", json={"name": "Omar", "support_type": "EDUCATION"}, headers=auth_headers
    )
    assert response.status_code == 201, response.text
    return response.json()


class TestHealthAndAuth:

    def test_health(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_write_requires_token(self, client):
        response = client.post("/api/categories", json={"name": "General"})
        assert response.status_code in (401, 403)

    def test_bad_token_rejected(self, client):
        response = client.post(
            "/api/categories", json={"name": "General"},
            headers={"Authorization": "Bearer not-a-token"}
        )
        assert response.status_code == 401


class TestErrorMapping:

    def test_not_found(self, client):
        response = client.get("/api/payments/missing")
        assert response.status_code == 404
        assert response.json()["error_type"] == "NOT_FOUND"

    def test_insufficient_funds_is_conflict(self, client, auth_headers, category, beneficiary):
        response = client.post("/api/payments", json={
            "beneficiary_id": beneficiary["id"], "category_id": category["id"], "amount": 900,
            "date": "2024-06-01", "representative_id": "r1"
        }, headers=auth_headers)
        assert response.status_code == 409
        body = response.json()
        assert body["error_type"] == "INSUFFICIENT_FUNDS"
        assert body["details"]["balance"] == 500

    def test_invalid_field_is_unprocessable(self, client, auth_headers, category):
        response = client.patch(
            f"/api/categories/{category['id']}", json={"balance": 10}, headers=auth_headers
        )
        assert response.status_code == 422
        assert response.json()["error_type"] == "INVALID_FIELD"

    def test_invalid_amount_is_unprocessable(self, client, auth_headers, category, donor):
        response = client.post("/api/donations", json={
            "donor_id": donor["id"], "amount": -3, "category_id": category["id"], "date": "2024-06-01"
        }, headers=auth_headers)
        assert response.status_code == 422
        assert response.json()["error_type"] == "INVALID_AMOUNT"


def test_feeding_round_flow(client, auth_headers, category):
    response = client.post("/api/feeding-rounds", json={
        "date": "2024-06-07", "allocated_amount": 200, "unit_price": 2.5, "category_id": category["id"]
    }, headers=auth_headers)
    assert response.status_code == 201
    round_id = response.json()["id"]

    for status in ("IN_PROGRESS", "COMPLETED"):
        response = client.post(f"/api/feeding-rounds/{round_id}/status", json={"status": status}, headers=auth_headers)
        assert response.status_code == 200, response.text

    assert client.get(f"/api/categories/{category['id']}").json()["balance"] == 300

    response = client.post(f"/api/feeding-rounds/{round_id}/status", json={"status": "CANCELLED"}, headers=auth_headers)
    assert response.status_code == 409
    assert response.json()["error_type"] == "ROUND_ALREADY_COMPLETED"

    response = client.put(
        f"/api/feeding-rounds/{round_id}/drive-link",
        json={"drive_link": "https://drive.example/round"}, headers=auth_headers
    )
    assert response.json()["drive_link"] == "https://drive.example/round"

    response = client.delete(f"/api/feeding-rounds/{round_id}", headers=auth_headers)
    assert response.status_code == 409


def test_payment_delete_records_acting_user(client, auth_headers, category, beneficiary):
    payment = client.post("/api/payments", json={
        "beneficiary_id": beneficiary["id"], "category_id": category["id"], "amount": 100,
        "date": "2024-06-01", "representative_id": "r1"
    }, headers=auth_headers).json()
    assert payment["status"] == "COMPLETED"

    response = client.delete(f"/api/payments/{payment['id']}", headers=auth_headers)

    assert response.status_code == 200
    assert response.json()["deleted_by"] == "user-1"
    assert client.get(f"/api/categories/{category['id']}").json()["balance"] == 500


def test_recurring_payment_returns_installments(client, auth_headers, category, beneficiary):
    response = client.post("/api/payments", json={
        "beneficiary_id": beneficiary["id"], "category_id": category["id"], "amount": 100, "date": "2024-01-15",
        "representative_id": "r1", "payment_type": "RECURRING", "frequency": "monthly", "total_repetitions": 3
    }, headers=auth_headers)

    assert response.status_code == 201
    assert [p["date"] for p in response.json()] == ["2024-01-15", "2024-02-15", "2024-03-15"]


def test_donation_pagination(client, auth_headers, category, donor):
    for amount in (10, 20, 30):
        client.post("/api/donations", json={
            "donor_id": donor["id"], "amount": amount, "category_id": category["id"], "date": "2024-06-01"
        }, headers=auth_headers)

    first = client.get("/api/donations", params={"page_size": 2}).json()
    second = client.get("/api/donations", params={"page_size": 2, "after_id": first["next_after_id"]}).json()

    assert [d["amount"] for d in first["donations"]] == [30, 20]
    assert [d["amount"] for d in second["donations"]] == [10]


def test_transactions_and_validation(client, auth_headers, category, beneficiary):
    client.post("/api/payments", json={
        "beneficiary_id": beneficiary["id"], "category_id": category["id"], "amount": 100,
        "date": "2024-06-01", "representative_id": "r1"
    }, headers=auth_headers)

    debits = client.get("/api/transactions", params={"type": "DEBIT"}).json()["transactions"]
    assert [t["category"] for t in debits] == ["PAYMENT_COMPLETED"]

    report = client.get("/api/treasury/validate").json()
    assert report["is_valid"] is True
    assert report["categories_checked"] == 1


def test_registries(client, auth_headers, donor, beneficiary):
    assert [d["id"] for d in client.get("/api/donors").json()] == [donor["id"]]

    response = client.patch(f"/api/donors/{donor['id']}", json={"contact": "+1 555"}, headers=auth_headers)
    assert response.json()["contact"] == "+1 555"

    response = client.delete(f"/api/beneficiaries/{beneficiary['id']}", headers=auth_headers)
    assert response.json()["status"] == "INACTIVE"
    assert client.get("/api/beneficiaries", params={"status": "ACTIVE"}).json() == []

    response = client.post("/api/payments", json={
        "beneficiary_id": "nobody", "category_id": "missing", "amount": 10,
        "date": "2024-06-01", "representative_id": "r1"
    }, headers=auth_headers)
    assert response.status_code == 404
