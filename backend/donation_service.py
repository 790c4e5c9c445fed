from datetime import datetime
from typing import Optional, Dict, Any
import logging

from audit_service import AuditService
from donor_service import DonorService
from treasury_service import TreasuryService
from ledger.errors import NotFoundError, InvalidFieldError
from ledger.financial_precision import to_decimal, to_float, validate_positive
from ledger.store import LedgerStore, LedgerTransaction, COLLECTIONS
from models import Donation, TransactionType

logger = logging.getLogger(__name__)

UPDATABLE_DONATION_FIELDS = {"donor_id", "amount", "purpose", "category_id", "date"}


class DonationService:
    """
    Donation Poster.

    A donation and the credit it causes are written in one store transaction.
    Changing or deleting a donation first takes its amount back out of the
    original category, which fails when that money was already spent.
    """

    def __init__(self, store: LedgerStore, treasury: TreasuryService, audit_service: AuditService,
                 donors: DonorService, logger: logging.Logger = None):
        self.store = store
        self.treasury = treasury
        self.donors = donors
        self.audit = audit_service
        self.collection = COLLECTIONS["DONATIONS"]
        self.logger = logger or logging.getLogger(__name__)

    async def _get_for_update(self, txn: LedgerTransaction, donation_id: str) -> Dict[str, Any]:
        donation = await txn.get(self.collection, donation_id)
        if not donation:
            raise NotFoundError("Donation", donation_id)
        return donation

    async def create_donation(
        self,
        donor_id: str,
        amount,
        purpose: str,
        category_id: str,
        date: str
    ) -> Dict[str, Any]:
        amount = validate_positive(amount, "amount")

        donation = Donation(
            donor_id=donor_id,
            amount=to_float(amount),
            purpose=purpose,
            category_id=category_id,
            date=date
        ).to_document()

        async def _create(txn: LedgerTransaction):
            await self.donors.get_donor_for_update(txn, donor_id)
            await self.treasury.apply_balance_delta(txn, category_id, amount)
            return await txn.insert(self.collection, donation)

        created = await self.store.run_transaction(_create)

        self.logger.info(f"[TRANSACTION] Donation {created['id']} credited {to_float(amount)} to {category_id}")

        await self.audit.record_transaction(
            type=TransactionType.CREDIT,
            amount=amount,
            description=f"Donation from {donor_id}: {purpose}",
            category="DONATION",
            reference=created["id"],
            category_id=category_id
        )
        return created

    async def update_donation(self, donation_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        """
        Patch a donation. When amount or category changes the old amount is
        debited from the old category and the new amount credited to the new
        one, together with the document write.
        """
        forbidden = set(patch) - UPDATABLE_DONATION_FIELDS
        if forbidden:
            raise InvalidFieldError("donation", list(forbidden))

        update_data = dict(patch)
        if "amount" in update_data:
            update_data["amount"] = to_float(validate_positive(update_data["amount"], "amount"))

        async def _update(txn: LedgerTransaction):
            donation = await self._get_for_update(txn, donation_id)
            if update_data.get("donor_id") and update_data["donor_id"] != donation["donor_id"]:
                await self.donors.get_donor_for_update(txn, update_data["donor_id"])

            old_amount = to_decimal(donation["amount"])
            old_category = donation["category_id"]
            new_amount = to_decimal(update_data.get("amount", donation["amount"]))
            new_category = update_data.get("category_id", old_category)

            moved = new_amount != old_amount or new_category != old_category
            if moved:
                await self.treasury.apply_balance_delta(txn, old_category, -old_amount)
                await self.treasury.apply_balance_delta(txn, new_category, new_amount)

            update_data["updated_at"] = datetime.utcnow()
            await txn.update(self.collection, donation_id, update_data)

            previous = dict(donation)
            donation.update(update_data)
            return previous, donation, moved

        previous, donation, moved = await self.store.run_transaction(_update)

        if moved:
            self.logger.info(
                f"[TRANSACTION] Donation {donation_id} moved: "
                f"{previous['amount']}@{previous['category_id']} -> {donation['amount']}@{donation['category_id']}"
            )
            await self.audit.record_transaction(
                type=TransactionType.DEBIT,
                amount=previous["amount"],
                description=f"Donation {donation_id} adjusted (reversal)",
                category="DONATION_ADJUSTMENT",
                reference=donation_id,
                category_id=previous["category_id"]
            )
            await self.audit.record_transaction(
                type=TransactionType.CREDIT,
                amount=donation["amount"],
                description=f"Donation {donation_id} adjusted",
                category="DONATION_ADJUSTMENT",
                reference=donation_id,
                category_id=donation["category_id"]
            )
        return donation

    async def delete_donation(self, donation_id: str) -> None:
        """Remove a donation and take its amount back out of the category"""
        async def _delete(txn: LedgerTransaction):
            donation = await self._get_for_update(txn, donation_id)
            await self.treasury.apply_balance_delta(txn, donation["category_id"], -to_decimal(donation["amount"]))
            await txn.delete(self.collection, donation_id)
            return donation

        donation = await self.store.run_transaction(_delete)

        self.logger.info(f"[TRANSACTION] Donation {donation_id} deleted, debited {donation['amount']}")

        await self.audit.record_transaction(
            type=TransactionType.DEBIT,
            amount=donation["amount"],
            description=f"Donation {donation_id} deleted",
            category="DONATION_DELETED",
            reference=donation_id,
            category_id=donation["category_id"]
        )

    async def get_donation(self, donation_id: str) -> Dict[str, Any]:
        donation = await self.store.get(self.collection, donation_id)
        if not donation:
            raise NotFoundError("Donation", donation_id)
        return donation

    async def list_donations(
        self,
        page_size: int = 10,
        start_after: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        donations = await self.store.find(
            self.collection,
            order_by="created_at",
            descending=True,
            limit=page_size,
            start_after=start_after
        )
        return {
            "donations": donations,
            "last_doc": donations[-1] if donations else None
        }
