from datetime import datetime
from typing import Optional, Dict, Any, Union
import logging

from audit_service import AuditService
from treasury_service import TreasuryService
from ledger.errors import (
    NotFoundError, InvalidFieldError, CannotModifyCompletedError,
    RoundAlreadyCompletedError, ValidationRequiredError
)
from ledger.financial_precision import to_decimal, to_float, validate_positive
from ledger.state_machine import StateMachine
from ledger.store import LedgerStore, LedgerTransaction, COLLECTIONS
from models import FeedingRound, FeedingRoundCreate, FeedingRoundStatus, TransactionType

logger = logging.getLogger(__name__)

UPDATABLE_ROUND_FIELDS = {
    "date", "unit_price", "description", "observations", "special_circumstances", "drive_link"
}
# Fields of a completed round that may still change
COMPLETED_ROUND_FIELDS = {"drive_link"}


class FeedingRoundService:
    """
    Feeding Round Lifecycle Manager.

    Funds are taken when a round starts (PENDING -> IN_PROGRESS), not when it
    is created. A round started and then cancelled or deleted gives its
    allocation back. COMPLETED is final: the status can no longer change and
    only the photo link can still be edited.

    Status changes write their STATUS_UPDATE and DEBIT/CREDIT audit records
    in the same transaction as the status itself.
    """

    def __init__(self, store: LedgerStore, treasury: TreasuryService, audit_service: AuditService,
                 logger: logging.Logger = None):
        self.store = store
        self.treasury = treasury
        self.audit = audit_service
        self.collection = COLLECTIONS["FEEDING_ROUNDS"]
        self.logger = logger or logging.getLogger(__name__)

        self.machine = (
            StateMachine("feeding_round")
            .register(FeedingRoundStatus.PENDING.value, FeedingRoundStatus.IN_PROGRESS.value,
                      self._reserve_allocation, description="Debit allocated amount")
            .register(FeedingRoundStatus.IN_PROGRESS.value, FeedingRoundStatus.COMPLETED.value,
                      self._keep_allocation)
            .register(FeedingRoundStatus.PENDING.value, FeedingRoundStatus.CANCELLED.value,
                      self._keep_allocation)
            .register(FeedingRoundStatus.IN_PROGRESS.value, FeedingRoundStatus.CANCELLED.value,
                      self._release_allocation, description="Credit allocated amount back")
        )

    async def _reserve_allocation(self, round_doc: Dict[str, Any], context: Dict[str, Any], txn) -> None:
        await self.treasury.apply_balance_delta(
            txn, round_doc["category_id"], -to_decimal(round_doc["allocated_amount"])
        )
        await self.audit.record_transaction(
            type=TransactionType.DEBIT,
            amount=round_doc["allocated_amount"],
            description=f"Feeding round {round_doc['id']} started",
            category="FEEDING_ROUND_STARTED",
            reference=round_doc["id"],
            category_id=round_doc["category_id"],
            txn=txn
        )

    async def _release_allocation(self, round_doc: Dict[str, Any], context: Dict[str, Any], txn) -> None:
        await self.treasury.apply_balance_delta(
            txn, round_doc["category_id"], to_decimal(round_doc["allocated_amount"])
        )
        await self.audit.record_transaction(
            type=TransactionType.CREDIT,
            amount=round_doc["allocated_amount"],
            description=f"Feeding round {round_doc['id']} cancelled",
            category="FEEDING_ROUND_CANCELLED",
            reference=round_doc["id"],
            category_id=round_doc["category_id"],
            txn=txn
        )

    async def _keep_allocation(self, round_doc: Dict[str, Any], context: Dict[str, Any], txn) -> None:
        return None

    async def _get_for_update(self, txn: LedgerTransaction, round_id: str) -> Dict[str, Any]:
        round_doc = await txn.get(self.collection, round_id)
        if not round_doc:
            raise NotFoundError("Feeding round", round_id)
        return round_doc

    async def create_round(self, request: FeedingRoundCreate) -> Dict[str, Any]:
        allocated_amount = validate_positive(request.allocated_amount, "allocated_amount")
        unit_price = validate_positive(request.unit_price, "unit_price")

        round_doc = FeedingRound(
            **request.model_dump(exclude={"allocated_amount", "unit_price"}),
            allocated_amount=to_float(allocated_amount),
            unit_price=to_float(unit_price),
            status=FeedingRoundStatus.PENDING
        ).to_document()

        async def _create(txn: LedgerTransaction):
            await self.treasury.get_category_for_update(txn, request.category_id)
            return await txn.insert(self.collection, round_doc)

        created = await self.store.run_transaction(_create)
        self.logger.info(f"[FEEDING_ROUND] Created {created['id']} allocating {created['allocated_amount']}")
        return created

    async def update_round_status(self, round_id: str, new_status: Union[FeedingRoundStatus, str]) -> Dict[str, Any]:
        new_status = FeedingRoundStatus(new_status).value

        async def _update(txn: LedgerTransaction):
            round_doc = await self._get_for_update(txn, round_id)
            current = round_doc["status"]

            if current == new_status:
                return round_doc, None
            if current == FeedingRoundStatus.COMPLETED.value:
                raise RoundAlreadyCompletedError(round_id, to_state=new_status)

            result = await self.machine.transition(round_doc, new_status, txn=txn)
            await txn.update(self.collection, round_id, result["updates"])
            await self.audit.record_transaction(
                type=TransactionType.STATUS_UPDATE,
                amount=round_doc["allocated_amount"],
                description=f"Feeding round {round_id}: {current} -> {new_status}",
                category="FEEDING_ROUND_STATUS_UPDATE",
                reference=round_id,
                category_id=round_doc["category_id"],
                txn=txn
            )
            round_doc.update(result["updates"])
            return round_doc, result

        round_doc, result = await self.store.run_transaction(_update)

        if result:
            self.logger.info(
                f"[FEEDING_ROUND] {round_id}: {result['from_state']} -> {result['to_state']}"
            )
        return round_doc

    async def update_round(self, round_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        """
        Patch descriptive fields. allocated_amount, category_id and status
        have dedicated operations and are refused here. A completed round
        only takes drive_link, whatever else the patch names.
        """
        async def _update(txn: LedgerTransaction):
            round_doc = await self._get_for_update(txn, round_id)
            if round_doc["status"] == FeedingRoundStatus.COMPLETED.value:
                locked = set(patch) - COMPLETED_ROUND_FIELDS
                if locked:
                    raise CannotModifyCompletedError(
                        f"Feeding round {round_id} is completed; only drive_link can change",
                        details={"round_id": round_id, "fields": sorted(locked)}
                    )

            forbidden = set(patch) - UPDATABLE_ROUND_FIELDS
            if forbidden:
                raise InvalidFieldError("feeding round", list(forbidden))

            update_data = dict(patch)
            if "unit_price" in update_data:
                update_data["unit_price"] = to_float(validate_positive(update_data["unit_price"], "unit_price"))

            update_data["updated_at"] = datetime.utcnow()
            await txn.update(self.collection, round_id, update_data)
            round_doc.update(update_data)
            return round_doc

        return await self.store.run_transaction(_update)

    async def delete_round(self, round_id: str) -> None:
        async def _delete(txn: LedgerTransaction):
            round_doc = await self._get_for_update(txn, round_id)
            status = round_doc["status"]

            if status == FeedingRoundStatus.COMPLETED.value:
                raise RoundAlreadyCompletedError(round_id)

            if status == FeedingRoundStatus.IN_PROGRESS.value:
                await self.treasury.apply_balance_delta(
                    txn, round_doc["category_id"], to_decimal(round_doc["allocated_amount"])
                )
            await txn.delete(self.collection, round_id)
            return round_doc

        round_doc = await self.store.run_transaction(_delete)

        self.logger.info(f"[FEEDING_ROUND] Deleted {round_id} (was {round_doc['status']})")

        if round_doc["status"] == FeedingRoundStatus.IN_PROGRESS.value:
            await self.audit.record_transaction(
                type=TransactionType.CREDIT,
                amount=round_doc["allocated_amount"],
                description=f"Feeding round {round_id} deleted",
                category="FEEDING_ROUND_DELETED",
                reference=round_id,
                category_id=round_doc["category_id"]
            )

    # Photo links are editable in every status

    async def attach_photo_link(self, round_id: str, drive_link: str) -> Dict[str, Any]:
        if not drive_link or not drive_link.strip():
            raise ValidationRequiredError(
                "drive_link cannot be empty",
                details={"field": "drive_link"}
            )
        round_doc = await self.get_round(round_id)
        update_data = {"drive_link": drive_link.strip(), "updated_at": datetime.utcnow()}
        await self.store.update(self.collection, round_id, update_data)
        round_doc.update(update_data)
        return round_doc

    async def remove_photo_link(self, round_id: str) -> Dict[str, Any]:
        round_doc = await self.get_round(round_id)
        now = datetime.utcnow()
        await self.store.update(self.collection, round_id, {"updated_at": now}, unset=["drive_link"])
        round_doc.pop("drive_link", None)
        round_doc["updated_at"] = now
        return round_doc

    async def get_round(self, round_id: str) -> Dict[str, Any]:
        round_doc = await self.store.get(self.collection, round_id)
        if not round_doc:
            raise NotFoundError("Feeding round", round_id)
        return round_doc

    async def list_rounds(
        self,
        page_size: int = 10,
        start_after: Optional[Dict[str, Any]] = None,
        status: Optional[Union[FeedingRoundStatus, str]] = None
    ) -> Dict[str, Any]:
        """Newest first; pass the returned last_doc as start_after for the next page"""
        filters = {"status": FeedingRoundStatus(status).value} if status else None
        rounds = await self.store.find(
            self.collection,
            filters=filters,
            order_by="created_at",
            descending=True,
            limit=page_size,
            start_after=start_after
        )
        return {
            "rounds": rounds,
            "last_doc": rounds[-1] if rounds else None
        }
