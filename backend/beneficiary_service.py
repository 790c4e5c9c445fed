"""
BENEFICIARY REGISTRY

Payments and payment requests name a registered beneficiary. Deleting a
beneficiary only marks it INACTIVE, so existing payments keep a valid
reference.
"""

from datetime import datetime
from typing import Optional, Dict, Any, List, Union
import logging

from ledger.errors import NotFoundError, InvalidFieldError
from ledger.store import LedgerStore, LedgerTransaction, COLLECTIONS
from models import Beneficiary, BeneficiaryCreate, BeneficiaryStatus, SupportType

logger = logging.getLogger(__name__)

UPDATABLE_BENEFICIARY_FIELDS = {"name", "email", "phone", "address", "support_type"}


class BeneficiaryService:

    def __init__(self, store: LedgerStore, logger: logging.Logger = None):
        self.store = store
        self.collection = COLLECTIONS["BENEFICIARIES"]
        self.logger = logger or logging.getLogger(__name__)

    async def get_beneficiary_for_update(self, txn: LedgerTransaction, beneficiary_id: str) -> Dict[str, Any]:
        """Read a beneficiary inside a transaction or raise NotFoundError"""
        beneficiary = await txn.get(self.collection, beneficiary_id)
        if not beneficiary:
            raise NotFoundError("Beneficiary", beneficiary_id)
        return beneficiary

    async def create_beneficiary(self, beneficiary: BeneficiaryCreate) -> Dict[str, Any]:
        doc = Beneficiary(**beneficiary.model_dump(), status=BeneficiaryStatus.ACTIVE).to_document()
        created = await self.store.insert(self.collection, doc)
        self.logger.info(f"[BENEFICIARY] Created {created['id']} ({created['name']}, {created['support_type']})")
        return created

    async def get_beneficiary(self, beneficiary_id: str) -> Dict[str, Any]:
        beneficiary = await self.store.get(self.collection, beneficiary_id)
        if not beneficiary:
            raise NotFoundError("Beneficiary", beneficiary_id)
        return beneficiary

    async def list_beneficiaries(
        self,
        status: Optional[Union[BeneficiaryStatus, str]] = None
    ) -> List[Dict[str, Any]]:
        filters = {"status": BeneficiaryStatus(status).value} if status else None
        return await self.store.find(self.collection, filters=filters, order_by="name")

    async def update_beneficiary(self, beneficiary_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        forbidden = set(patch) - UPDATABLE_BENEFICIARY_FIELDS
        if forbidden:
            raise InvalidFieldError("beneficiary", list(forbidden))

        update_data = dict(patch)
        if update_data.get("support_type"):
            update_data["support_type"] = SupportType(update_data["support_type"]).value

        beneficiary = await self.get_beneficiary(beneficiary_id)
        update_data["updated_at"] = datetime.utcnow()
        await self.store.update(self.collection, beneficiary_id, update_data)

        beneficiary.update(update_data)
        return beneficiary

    async def deactivate_beneficiary(self, beneficiary_id: str) -> Dict[str, Any]:
        beneficiary = await self.get_beneficiary(beneficiary_id)
        update_data = {"status": BeneficiaryStatus.INACTIVE.value, "updated_at": datetime.utcnow()}
        await self.store.update(self.collection, beneficiary_id, update_data)

        beneficiary.update(update_data)
        self.logger.info(f"[BENEFICIARY] Deactivated {beneficiary_id}")
        return beneficiary
