"""
PAYMENT REQUESTS

A request is a planned payment that goes through approval:

    CREATED -> PENDING     reserve the amount (payment movement on the category)
    PENDING -> COMPLETED   create the COMPLETED payment, no second debit

A request can only be moved to PENDING for the current month or later.
"""

from datetime import datetime, date
from typing import Optional, Dict, Any, List, Union, Callable, Tuple
import logging

from audit_service import AuditService
from beneficiary_service import BeneficiaryService
from treasury_service import TreasuryService
from ledger.errors import NotFoundError, InvalidFieldError, CannotModifyCompletedError
from ledger.financial_precision import to_decimal, to_float, validate_positive
from ledger.recurrence import parse_date
from ledger.state_machine import StateMachine
from ledger.store import LedgerStore, LedgerTransaction, COLLECTIONS
from models import (
    Payment, PaymentRequest, PaymentRequestCreate, PaymentRequestStatus,
    PaymentStatus, PaymentType, Frequency, TransactionType
)

logger = logging.getLogger(__name__)

UPDATABLE_REQUEST_FIELDS = {
    "beneficiary_id", "amount", "start_date", "payment_type", "frequency", "notes", "description"
}

# Payments created from an approved request carry this representative
SYSTEM_REPRESENTATIVE = "SYSTEM"


class PaymentRequestService:

    def __init__(self, store: LedgerStore, treasury: TreasuryService, audit_service: AuditService,
                 beneficiaries: BeneficiaryService, logger: logging.Logger = None,
                 today: Callable[[], date] = date.today):
        self.store = store
        self.treasury = treasury
        self.beneficiaries = beneficiaries
        self.audit = audit_service
        self.collection = COLLECTIONS["PAYMENT_REQUESTS"]
        self.logger = logger or logging.getLogger(__name__)
        self.today = today

        self.machine = (
            StateMachine("payment_request")
            .register(PaymentRequestStatus.CREATED.value, PaymentRequestStatus.PENDING.value,
                      self._reserve_amount, guard=self._not_in_past_month,
                      description="Reserve amount in treasury")
            .register(PaymentRequestStatus.PENDING.value, PaymentRequestStatus.COMPLETED.value,
                      self._create_payment, description="Create completed payment")
        )

    async def _not_in_past_month(self, request_doc: Dict[str, Any], context: Dict[str, Any]) -> Tuple[bool, str]:
        today = self.today()
        first_of_month = today.replace(day=1)
        if parse_date(request_doc["start_date"]) < first_of_month:
            return False, "Cannot set PENDING status for past months"
        return True, ""

    async def _reserve_amount(self, request_doc: Dict[str, Any], context: Dict[str, Any], txn) -> None:
        await self.treasury.apply_balance_delta(
            txn, request_doc["category_id"], -to_decimal(request_doc["amount"]), payment_movement=True
        )

    async def _create_payment(self, request_doc: Dict[str, Any], context: Dict[str, Any], txn) -> Dict[str, Any]:
        payment = Payment(
            beneficiary_id=request_doc["beneficiary_id"],
            category_id=request_doc["category_id"],
            amount=request_doc["amount"],
            date=request_doc["start_date"],
            payment_type=request_doc.get("payment_type") or PaymentType.ONE_TIME,
            frequency=request_doc.get("frequency"),
            status=PaymentStatus.COMPLETED,
            representative_id=SYSTEM_REPRESENTATIVE,
            notes=request_doc.get("notes"),
            description=request_doc.get("description"),
            payment_request_id=request_doc["id"]
        ).to_document()

        created = await txn.insert(COLLECTIONS["PAYMENTS"], payment)
        return {"payment_id": created["id"]}

    async def _get_for_update(self, txn: LedgerTransaction, request_id: str) -> Dict[str, Any]:
        request_doc = await txn.get(self.collection, request_id)
        if not request_doc:
            raise NotFoundError("Payment request", request_id)
        return request_doc

    async def create_request(self, request: PaymentRequestCreate) -> Dict[str, Any]:
        amount = validate_positive(request.amount, "amount")
        parse_date(request.start_date)

        request_doc = PaymentRequest(
            **request.model_dump(exclude={"amount"}),
            amount=to_float(amount),
            status=PaymentRequestStatus.CREATED
        ).to_document()

        async def _create(txn: LedgerTransaction):
            await self.beneficiaries.get_beneficiary_for_update(txn, request.beneficiary_id)
            await self.treasury.get_category_for_update(txn, request.category_id)
            return await txn.insert(self.collection, request_doc)

        created = await self.store.run_transaction(_create)
        self.logger.info(f"[PAYMENT_REQUEST] Created {created['id']} for {created['amount']}")
        return created

    async def update_request_status(self, request_id: str, new_status: Union[PaymentRequestStatus, str]) -> Dict[str, Any]:
        new_status = PaymentRequestStatus(new_status).value

        async def _update(txn: LedgerTransaction):
            request_doc = await self._get_for_update(txn, request_id)
            result = await self.machine.transition(request_doc, new_status, txn=txn)
            await txn.update(self.collection, request_id, result["updates"])
            request_doc.update(result["updates"])
            return request_doc, result

        request_doc, result = await self.store.run_transaction(_update)

        self.logger.info(
            f"[PAYMENT_REQUEST] {request_id}: {result['from_state']} -> {result['to_state']}"
        )

        if new_status == PaymentRequestStatus.PENDING.value:
            await self.audit.record_transaction(
                type=TransactionType.DEBIT,
                amount=request_doc["amount"],
                description=f"Funds reserved for payment request {request_id}",
                category="PAYMENT_REQUEST_RESERVED",
                reference=request_id,
                category_id=request_doc["category_id"]
            )
        else:
            await self.audit.record_transaction(
                type=TransactionType.STATUS_UPDATE,
                amount=request_doc["amount"],
                description=f"Payment request {request_id} completed as payment {request_doc.get('payment_id')}",
                category="PAYMENT_REQUEST_COMPLETED",
                reference=request_id,
                category_id=request_doc["category_id"]
            )
        return request_doc

    async def bulk_update_status(self, ids: List[str], new_status: Union[PaymentRequestStatus, str]) -> List[Dict[str, Any]]:
        """
        Move several requests one after another, each in its own transaction.
        Stops at the first failure; requests already moved stay moved.
        """
        return [await self.update_request_status(request_id, new_status) for request_id in ids]

    async def update_request(self, request_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        forbidden = set(patch) - UPDATABLE_REQUEST_FIELDS
        if forbidden:
            raise InvalidFieldError("payment request", list(forbidden))

        update_data = dict(patch)
        if "amount" in update_data:
            update_data["amount"] = to_float(validate_positive(update_data["amount"], "amount"))
        if update_data.get("start_date"):
            parse_date(update_data["start_date"])
        if update_data.get("payment_type"):
            update_data["payment_type"] = PaymentType(update_data["payment_type"]).value
        if update_data.get("frequency"):
            update_data["frequency"] = Frequency(update_data["frequency"]).value

        async def _update(txn: LedgerTransaction):
            request_doc = await self._get_for_update(txn, request_id)
            if request_doc["status"] != PaymentRequestStatus.CREATED.value:
                raise CannotModifyCompletedError(
                    f"Payment request {request_id} is {request_doc['status']}; only CREATED requests can be edited",
                    details={"request_id": request_id, "status": request_doc["status"]}
                )
            if update_data.get("beneficiary_id") and update_data["beneficiary_id"] != request_doc["beneficiary_id"]:
                await self.beneficiaries.get_beneficiary_for_update(txn, update_data["beneficiary_id"])
            update_data["updated_at"] = datetime.utcnow()
            await txn.update(self.collection, request_id, update_data)
            request_doc.update(update_data)
            return request_doc

        return await self.store.run_transaction(_update)

    async def get_request(self, request_id: str) -> Dict[str, Any]:
        request_doc = await self.store.get(self.collection, request_id)
        if not request_doc:
            raise NotFoundError("Payment request", request_id)
        return request_doc

    async def list_requests(self, status: Optional[Union[PaymentRequestStatus, str]] = None) -> List[Dict[str, Any]]:
        filters = {"status": PaymentRequestStatus(status).value} if status else None
        return await self.store.find(
            self.collection,
            filters=filters,
            order_by="start_date",
            descending=True
        )
