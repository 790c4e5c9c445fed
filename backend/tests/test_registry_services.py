"""
Donor and beneficiary registry tests
"""
import pytest

from ledger.errors import NotFoundError, InvalidFieldError
from ledger.store import COLLECTIONS
from models import DonorCreate, BeneficiaryCreate, PaymentCreate, PaymentRequestCreate


class TestDonors:

    @pytest.mark.asyncio
    async def test_create_and_get(self, services):
        donor = await services.donors.create_donor(DonorCreate(name="Amina", contact="amina@example.org"))

        fetched = await services.donors.get_donor(donor["id"])
        assert fetched["name"] == "Amina"
        assert fetched["contact"] == "amina@example.org"

    @pytest.mark.asyncio
    async def test_list_ordered_by_name(self, services):
        await services.donors.create_donor(DonorCreate(name="Zaid"))
        await services.donors.create_donor(DonorCreate(name="Amina"))

        names = [d["name"] for d in await services.donors.list_donors()]
        assert names.index("Amina") < names.index("Zaid")

    @pytest.mark.asyncio
    async def test_update(self, services):
        donor = await services.donors.create_donor(DonorCreate(name="Amina"))

        updated = await services.donors.update_donor(donor["id"], {"contact": "+44 20 0000"})

        assert updated["contact"] == "+44 20 0000"
        assert (await services.donors.get_donor(donor["id"]))["contact"] == "+44 20 0000"

    @pytest.mark.asyncio
    async def test_update_rejects_unknown_fields(self, services):
        donor = await services.donors.create_donor(DonorCreate(name="Amina"))
        with pytest.raises(InvalidFieldError):
            await services.donors.update_donor(donor["id"], {"id": "other"})

    @pytest.mark.asyncio
    async def test_delete(self, services):
        donor = await services.donors.create_donor(DonorCreate(name="Amina"))

        await services.donors.delete_donor(donor["id"])

        with pytest.raises(NotFoundError):
            await services.donors.get_donor(donor["id"])

    @pytest.mark.asyncio
    async def test_delete_missing(self, services):
        with pytest.raises(NotFoundError):
            await services.donors.delete_donor("missing")


class TestBeneficiaries:

    @pytest.mark.asyncio
    async def test_created_active(self, services):
        beneficiary = await services.beneficiaries.create_beneficiary(
            BeneficiaryCreate(name="Omar", phone="555-0101", support_type="MEDICAL")
        )
        assert beneficiary["status"] == "ACTIVE"
        assert beneficiary["support_type"] == "MEDICAL"

    @pytest.mark.asyncio
    async def test_delete_only_deactivates(self, services):
        beneficiary = await services.beneficiaries.create_beneficiary(BeneficiaryCreate(name="Omar"))

        deactivated = await services.beneficiaries.deactivate_beneficiary(beneficiary["id"])

        assert deactivated["status"] == "INACTIVE"
        assert (await services.beneficiaries.get_beneficiary(beneficiary["id"]))["status"] == "INACTIVE"

    @pytest.mark.asyncio
    async def test_list_by_status(self, services):
        beneficiary = await services.beneficiaries.create_beneficiary(BeneficiaryCreate(name="Omar"))
        await services.beneficiaries.deactivate_beneficiary(beneficiary["id"])

        inactive = await services.beneficiaries.list_beneficiaries(status="INACTIVE")
        active = await services.beneficiaries.list_beneficiaries(status="ACTIVE")

        assert [b["id"] for b in inactive] == [beneficiary["id"]]
        assert beneficiary["id"] not in [b["id"] for b in active]

    @pytest.mark.asyncio
    async def test_update_support_type(self, services):
        beneficiary = await services.beneficiaries.create_beneficiary(BeneficiaryCreate(name="Omar"))

        updated = await services.beneficiaries.update_beneficiary(beneficiary["id"], {"support_type": "HOUSING"})

        assert updated["support_type"] == "HOUSING"

    @pytest.mark.asyncio
    async def test_status_not_patchable(self, services):
        beneficiary = await services.beneficiaries.create_beneficiary(BeneficiaryCreate(name="Omar"))
        with pytest.raises(InvalidFieldError):
            await services.beneficiaries.update_beneficiary(beneficiary["id"], {"status": "ACTIVE"})


class TestReferencesMustExist:

    @pytest.mark.asyncio
    async def test_donation_needs_registered_donor(self, services, store, feeding, balance_of):
        with pytest.raises(NotFoundError) as exc:
            await services.donations.create_donation("stranger", 100, "Appeal", feeding["id"], "2024-06-01")

        assert exc.value.entity == "Donor"
        assert store.collection(COLLECTIONS["DONATIONS"]) == {}
        assert await balance_of(feeding["id"]) == 500

    @pytest.mark.asyncio
    async def test_donation_cannot_move_to_unknown_donor(self, services, feeding):
        donation = await services.donations.create_donation("d1", 100, "Appeal", feeding["id"], "2024-06-01")

        with pytest.raises(NotFoundError):
            await services.donations.update_donation(donation["id"], {"donor_id": "stranger"})
        assert (await services.donations.get_donation(donation["id"]))["donor_id"] == "d1"

    @pytest.mark.asyncio
    async def test_payment_needs_registered_beneficiary(self, services, store, feeding, balance_of):
        with pytest.raises(NotFoundError) as exc:
            await services.payments.create_payment(PaymentCreate(
                beneficiary_id="stranger", category_id=feeding["id"], amount=100,
                date="2024-06-01", representative_id="r1"
            ))

        assert exc.value.entity == "Beneficiary"
        assert store.collection(COLLECTIONS["PAYMENTS"]) == {}
        assert await balance_of(feeding["id"]) == 500

    @pytest.mark.asyncio
    async def test_recurring_payment_needs_registered_beneficiary(self, services, store, feeding):
        with pytest.raises(NotFoundError):
            await services.payments.create_payment(PaymentCreate(
                beneficiary_id="stranger", category_id=feeding["id"], amount=100, date="2024-06-01",
                representative_id="r1", payment_type="RECURRING", frequency="monthly", total_repetitions=2
            ))
        assert store.collection(COLLECTIONS["PAYMENTS"]) == {}

    @pytest.mark.asyncio
    async def test_payment_request_needs_registered_beneficiary(self, services, store, feeding):
        with pytest.raises(NotFoundError):
            await services.payment_requests.create_request(PaymentRequestCreate(
                beneficiary_id="stranger", category_id=feeding["id"], amount=100, start_date="2024-06-20"
            ))
        assert store.collection(COLLECTIONS["PAYMENT_REQUESTS"]) == {}

    @pytest.mark.asyncio
    async def test_deactivated_beneficiary_keeps_existing_payments(self, services, feeding):
        payment = await services.payments.create_payment(PaymentCreate(
            beneficiary_id="b1", category_id=feeding["id"], amount=100, date="2024-06-01", representative_id="r1"
        ))

        await services.beneficiaries.deactivate_beneficiary("b1")

        assert (await services.payments.get_payment(payment["id"]))["beneficiary_id"] == "b1"
