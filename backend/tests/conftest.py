from datetime import date

import pytest
import pytest_asyncio

from ledger.store import COLLECTIONS
from memory_store import MemoryLedgerStore
from models import Donor, Beneficiary
from services import build_services

TODAY = date(2024, 6, 15)

# Registry records the service tests refer to by id
DONOR_IDS = ["donor-1", "d1"]
BENEFICIARY_IDS = ["beneficiary-1", "beneficiary-7", "b1", "b2", "b3", "b4", "b5"]


@pytest.fixture
def store():
    """In-memory store with the donors and beneficiaries above registered"""
    memory_store = MemoryLedgerStore()
    donors = memory_store.collection(COLLECTIONS["DONORS"])
    for donor_id in DONOR_IDS:
        donors[donor_id] = Donor(id=donor_id, name=f"Donor {donor_id}").to_document()
    beneficiaries = memory_store.collection(COLLECTIONS["BENEFICIARIES"])
    for beneficiary_id in BENEFICIARY_IDS:
        beneficiaries[beneficiary_id] = Beneficiary(id=beneficiary_id, name=f"Beneficiary {beneficiary_id}").to_document()
    return memory_store


@pytest.fixture
def services(store):
    return build_services(store, today=lambda: TODAY)


@pytest_asyncio.fixture
async def feeding(services):
    """Category "Feeding" holding 500"""
    return await services.treasury.create_category(name="Feeding", balance=500)


@pytest_asyncio.fixture
async def general(services):
    """Category "General" holding 1000"""
    return await services.treasury.create_category(name="General", balance=1000)


@pytest.fixture
def balance_of(services):
    """Current balance of a category"""
    async def _balance_of(category_id):
        category = await services.treasury.get_category(category_id)
        return category["balance"]
    return _balance_of
