"""
DONOR REGISTRY

Donors are referenced by donations through donor_id; a donation can only be
posted for a registered donor.
"""

from datetime import datetime
from typing import Dict, Any, List
import logging

from ledger.errors import NotFoundError, InvalidFieldError
from ledger.store import LedgerStore, LedgerTransaction, COLLECTIONS
from models import Donor, DonorCreate

logger = logging.getLogger(__name__)

UPDATABLE_DONOR_FIELDS = {"name", "contact"}


class DonorService:

    def __init__(self, store: LedgerStore, logger: logging.Logger = None):
        self.store = store
        self.collection = COLLECTIONS["DONORS"]
        self.logger = logger or logging.getLogger(__name__)

    async def get_donor_for_update(self, txn: LedgerTransaction, donor_id: str) -> Dict[str, Any]:
        """Read a donor inside a transaction or raise NotFoundError"""
        donor = await txn.get(self.collection, donor_id)
        if not donor:
            raise NotFoundError("Donor", donor_id)
        return donor

    async def create_donor(self, donor: DonorCreate) -> Dict[str, Any]:
        created = await self.store.insert(self.collection, Donor(**donor.model_dump()).to_document())
        self.logger.info(f"[DONOR] Created {created['id']} ({created['name']})")
        return created

    async def get_donor(self, donor_id: str) -> Dict[str, Any]:
        donor = await self.store.get(self.collection, donor_id)
        if not donor:
            raise NotFoundError("Donor", donor_id)
        return donor

    async def list_donors(self) -> List[Dict[str, Any]]:
        return await self.store.find(self.collection, order_by="name")

    async def update_donor(self, donor_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        forbidden = set(patch) - UPDATABLE_DONOR_FIELDS
        if forbidden:
            raise InvalidFieldError("donor", list(forbidden))

        donor = await self.get_donor(donor_id)
        update_data = dict(patch)
        update_data["updated_at"] = datetime.utcnow()
        await self.store.update(self.collection, donor_id, update_data)

        donor.update(update_data)
        return donor

    async def delete_donor(self, donor_id: str) -> None:
        """Remove a donor. Donations already posted keep their donor_id."""
        await self.get_donor(donor_id)
        await self.store.delete(self.collection, donor_id)
        self.logger.info(f"[DONOR] Deleted {donor_id}")
