"""
Reconciliation validator tests
"""
import pytest

from ledger.invariant_validator import TreasuryPaymentValidator
from ledger.store import COLLECTIONS
from models import PaymentCreate, PaymentRequestCreate, TreasuryCategory, Payment


def category(id, balance, funded_balance, name="Feeding"):
    return {"id": id, "name": name, "balance": balance, "funded_balance": funded_balance}


def payment(id, category_id, amount, status="COMPLETED", **extra):
    doc = {"id": id, "category_id": category_id, "amount": amount, "status": status, "date": "2024-02-01"}
    doc.update(extra)
    return doc


def request(id, category_id, amount, status="PENDING"):
    return {"id": id, "category_id": category_id, "amount": amount, "status": status, "start_date": "2024-06-20"}


def validate(payments, categories, requests=(), tolerance="0.01"):
    return TreasuryPaymentValidator(tolerance).validate(payments, categories, requests)


class TestValidate:

    def test_balanced_category(self):
        report = validate([payment("p1", "c1", 100)], [category("c1", 400, 500)])
        assert report["is_valid"] is True
        assert report["discrepancies"] == []
        assert report["categories_checked"] == 1
        assert report["unchecked_categories"] == []

    def test_corrupted_balance_reported(self):
        report = validate([payment("p1", "c1", 100)], [category("c1", 450, 500)])
        assert report["is_valid"] is False
        discrepancy = report["discrepancies"][0]
        assert discrepancy["category_id"] == "c1"
        assert discrepancy["category_name"] == "Feeding"
        assert discrepancy["expected_balance"] == 550
        assert discrepancy["actual_balance"] == 450
        assert discrepancy["difference"] == 50
        assert discrepancy["completed_payments"] == [{"id": "p1", "amount": 100, "date": "2024-02-01"}]
        assert discrepancy["reserved_requests"] == []

    def test_within_epsilon(self):
        report = validate([payment("p1", "c1", 100)], [category("c1", 400.01, 500)])
        assert report["is_valid"] is True

    def test_ignores_pending_cancelled_and_deleted(self):
        report = validate(
            [
                payment("p1", "c1", 100),
                payment("p2", "c1", 70, status="PENDING"),
                payment("p3", "c1", 30, status="CANCELLED"),
                payment("p4", "c1", 20, is_deleted=True),
            ],
            [category("c1", 400, 500)]
        )
        assert report["is_valid"] is True

    def test_pending_request_reservation_counts_as_outflow(self):
        report = validate(
            [payment("p1", "c1", 100)],
            [category("c1", 280, 500)],
            [request("r1", "c1", 120), request("r2", "c1", 75, status="CREATED")]
        )
        assert report["is_valid"] is True

    def test_drift_lists_reserved_requests(self):
        report = validate([], [category("c1", 300, 500)], [request("r1", "c1", 120)])
        assert report["is_valid"] is False
        discrepancy = report["discrepancies"][0]
        assert discrepancy["difference"] == -80
        assert discrepancy["reserved_requests"] == [{"id": "r1", "amount": 120, "start_date": "2024-06-20"}]

    def test_category_without_funding_level_is_not_clean(self):
        report = validate([payment("p1", "c1", 100)], [{"id": "c1", "name": "Feeding", "balance": 450}])
        assert report["is_valid"] is False
        assert report["categories_checked"] == 0
        assert report["unchecked_categories"] == ["c1"]

    def test_orphaned_payments_listed(self):
        report = validate([payment("p1", "gone", 10)], [category("c1", 0, 0)])
        assert report["orphaned_payments"] == ["p1"]

    def test_accepts_models(self):
        report = TreasuryPaymentValidator().validate(
            [Payment(id="p1", beneficiary_id="b", category_id="c1", amount=100, date="2024-02-01",
                     representative_id="r", status="COMPLETED")],
            [TreasuryCategory(id="c1", name="Feeding", balance=400, funded_balance=500)]
        )
        assert report["is_valid"] is True

    def test_custom_tolerance(self):
        report = validate([payment("p1", "c1", 100)], [category("c1", 401, 500)], tolerance="5")
        assert report["is_valid"] is True


@pytest.mark.asyncio
async def test_reconciliation_scenario(services, store, feeding):
    await services.payments.create_payment(PaymentCreate(
        beneficiary_id="b1",
        category_id=feeding["id"],
        amount=100,
        date="2024-02-01",
        representative_id="r1"
    ))
    assert (await services.treasury.get_category(feeding["id"]))["balance"] == 400

    report = await services.treasury.validate_treasury_payments()
    assert report["is_valid"] is True

    # Corrupt the balance behind the ledger's back
    await store.update(COLLECTIONS["TREASURY"], feeding["id"], {"balance": 450})

    report = await services.treasury.validate_treasury_payments()
    assert report["is_valid"] is False
    assert report["discrepancies"][0]["difference"] == 50


@pytest.mark.asyncio
async def test_reconciles_while_request_is_pending(services, feeding, balance_of):
    request_doc = await services.payment_requests.create_request(PaymentRequestCreate(
        beneficiary_id="b1", category_id=feeding["id"], amount=100, start_date="2024-06-20"
    ))
    await services.payment_requests.update_request_status(request_doc["id"], "PENDING")
    assert await balance_of(feeding["id"]) == 400

    report = await services.treasury.validate_treasury_payments()
    assert report["is_valid"] is True
    assert report["discrepancies"] == []


@pytest.mark.asyncio
async def test_snapshot_without_funding_level_is_not_clean(services):
    report = await services.treasury.validate_treasury_payments(
        [payment("p1", "c1", 100)],
        [{"id": "c1", "name": "Feeding", "balance": 450}]
    )
    assert report["is_valid"] is False
    assert report["unchecked_categories"] == ["c1"]
