"""
PAYMENT LIFECYCLE

Payments move through a small state machine:

    PENDING   -> COMPLETED   debit category
    COMPLETED -> CANCELLED   credit category back
    PENDING   -> CANCELLED   no balance change

CANCELLED is terminal. Soft delete forces CANCELLED and credits back when the
payment was COMPLETED. cancel_payment() credits back whatever the prior status
was, unlike update_payment_status(CANCELLED) which only credits a COMPLETED
payment. Both are kept so callers can pick the rule they need.

Every balance move is a payment movement: it changes balance but leaves the
category's funded_balance alone, which is what reconciliation relies on.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional, Dict, Any, List, Union
import logging

from audit_service import AuditService
from beneficiary_service import BeneficiaryService
from treasury_service import TreasuryService
from ledger.errors import (
    NotFoundError, InsufficientFundsError, InvalidFieldError,
    AlreadyDeletedError, AlreadyCancelledError, CannotDeleteCancelledError
)
from ledger.financial_precision import to_decimal, to_float, safe_multiply, validate_positive
from ledger.recurrence import installment_dates, installment_description
from ledger.state_machine import StateMachine
from ledger.store import LedgerStore, LedgerTransaction, COLLECTIONS
from models import (
    Payment, PaymentCreate, PaymentStatus, PaymentType, Frequency, TransactionType
)

logger = logging.getLogger(__name__)

UPDATABLE_PAYMENT_FIELDS = {
    "beneficiary_id", "category_id", "amount", "date", "payment_type",
    "representative_id", "notes", "description"
}


class PaymentService:
    """Payment Lifecycle Manager"""

    def __init__(self, store: LedgerStore, treasury: TreasuryService, audit_service: AuditService,
                 beneficiaries: BeneficiaryService, logger: logging.Logger = None):
        self.store = store
        self.treasury = treasury
        self.beneficiaries = beneficiaries
        self.audit = audit_service
        self.collection = COLLECTIONS["PAYMENTS"]
        self.logger = logger or logging.getLogger(__name__)
        self.machine = self._build_state_machine()

    # =========================================================================
    # STATE MACHINE
    # =========================================================================

    def _build_state_machine(self) -> StateMachine:
        return (
            StateMachine("payment")
            .register(PaymentStatus.PENDING.value, PaymentStatus.COMPLETED.value,
                      self._debit_on_complete, description="Debit category")
            .register(PaymentStatus.COMPLETED.value, PaymentStatus.CANCELLED.value,
                      self._credit_on_cancel, description="Credit category back")
            .register(PaymentStatus.PENDING.value, PaymentStatus.CANCELLED.value,
                      self._no_balance_change, description="Nothing was debited")
        )

    async def _debit_on_complete(self, payment: Dict[str, Any], context: Dict[str, Any], txn) -> None:
        await self.treasury.apply_balance_delta(
            txn, payment["category_id"], -to_decimal(payment["amount"]), payment_movement=True
        )

    async def _credit_on_cancel(self, payment: Dict[str, Any], context: Dict[str, Any], txn) -> None:
        await self.treasury.apply_balance_delta(
            txn, payment["category_id"], to_decimal(payment["amount"]), payment_movement=True
        )

    async def _no_balance_change(self, payment: Dict[str, Any], context: Dict[str, Any], txn) -> None:
        return None

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _get_for_update(self, txn: LedgerTransaction, payment_id: str) -> Dict[str, Any]:
        payment = await txn.get(self.collection, payment_id)
        if not payment:
            raise NotFoundError("Payment", payment_id)
        return payment

    @staticmethod
    def _ensure_not_deleted(payment: Dict[str, Any]) -> None:
        if payment.get("is_deleted"):
            raise AlreadyDeletedError(
                f"Payment {payment['id']} is already deleted",
                details={"payment_id": payment["id"]}
            )

    async def _record(self, type: TransactionType, payment: Dict[str, Any], tag: str, description: str,
                      amount=None, category_id: Optional[str] = None):
        await self.audit.record_transaction(
            type=type,
            amount=payment["amount"] if amount is None else amount,
            description=description,
            category=tag,
            reference=payment["id"],
            category_id=category_id or payment["category_id"]
        )

    # =========================================================================
    # CREATE
    # =========================================================================

    async def create_payment(self, request: PaymentCreate) -> Union[Dict[str, Any], List[Dict[str, Any]]]:
        """
        Create a payment.

        Non-recurring payments are debited and stored COMPLETED when
        complete_immediately is set, otherwise stored PENDING untouched.
        RECURRING payments expand into total_repetitions PENDING installments
        and return a list; see _create_recurring.
        """
        amount = validate_positive(request.amount, "amount")

        if request.payment_type == PaymentType.RECURRING:
            return await self._create_recurring(request, amount)

        status = PaymentStatus.COMPLETED if request.complete_immediately else PaymentStatus.PENDING
        payment = Payment(
            **request.model_dump(exclude={"amount", "complete_immediately"}),
            amount=to_float(amount),
            status=status
        ).to_document()

        async def _create(txn: LedgerTransaction):
            await self.beneficiaries.get_beneficiary_for_update(txn, request.beneficiary_id)
            if status == PaymentStatus.COMPLETED:
                await self.treasury.apply_balance_delta(
                    txn, request.category_id, -amount, payment_movement=True
                )
            else:
                await self.treasury.get_category_for_update(txn, request.category_id)
            return await txn.insert(self.collection, payment)

        created = await self.store.run_transaction(_create)

        self.logger.info(f"[TRANSACTION] Payment created: {created['id']} {created['amount']} {created['status']}")

        if status == PaymentStatus.COMPLETED:
            await self._record(
                TransactionType.DEBIT, created, "PAYMENT_COMPLETED",
                f"Payment to {created['beneficiary_id']}"
            )
        return created

    async def _create_recurring(self, request: PaymentCreate, amount: Decimal) -> List[Dict[str, Any]]:
        """
        Installments are always PENDING and each one is debited when it is
        completed. With complete_immediately the category must cover the whole
        series (amount x N) at creation time, but nothing is reserved.
        """
        frequency = Frequency(request.frequency).value if request.frequency else None
        total = request.total_repetitions
        dates = installment_dates(request.date, frequency, total)

        base = request.model_dump(exclude={"amount", "date", "description", "complete_immediately",
                                           "frequency", "total_repetitions"})
        installments = [
            Payment(
                **base,
                amount=to_float(amount),
                date=installment_date,
                description=installment_description(request.description, number, total),
                frequency=frequency,
                total_repetitions=total,
                repetition_number=number,
                status=PaymentStatus.PENDING
            ).to_document()
            for number, installment_date in enumerate(dates, start=1)
        ]

        async def _create(txn: LedgerTransaction):
            await self.beneficiaries.get_beneficiary_for_update(txn, request.beneficiary_id)
            category = await self.treasury.get_category_for_update(txn, request.category_id)
            if request.complete_immediately:
                total_amount = safe_multiply(amount, total)
                balance = to_decimal(category.get("balance"))
                if balance < total_amount:
                    raise InsufficientFundsError(
                        category_id=request.category_id,
                        balance=to_float(balance),
                        requested=to_float(total_amount)
                    )
            return [await txn.insert(self.collection, doc) for doc in installments]

        created = await self.store.run_transaction(_create)

        self.logger.info(
            f"[TRANSACTION] Recurring payment created: {total} {frequency} installments of {to_float(amount)}"
        )
        return created

    # =========================================================================
    # STATUS
    # =========================================================================

    async def update_payment_status(self, payment_id: str, new_status: Union[PaymentStatus, str]) -> Dict[str, Any]:
        """Drive the state machine. Requesting the current status changes nothing."""
        new_status = PaymentStatus(new_status).value

        async def _update(txn: LedgerTransaction):
            payment = await self._get_for_update(txn, payment_id)
            self._ensure_not_deleted(payment)

            if payment["status"] == new_status:
                return payment, None

            result = await self.machine.transition(payment, new_status, txn=txn)
            await txn.update(self.collection, payment_id, result["updates"])
            payment.update(result["updates"])
            return payment, result

        payment, result = await self.store.run_transaction(_update)

        if result is None:
            self.logger.debug(f"[TRANSACTION] Payment {payment_id} already {new_status}")
            return payment

        from_state, to_state = result["from_state"], result["to_state"]
        self.logger.info(f"[TRANSACTION] Payment {payment_id}: {from_state} -> {to_state}")

        await self._record(
            TransactionType.STATUS_UPDATE, payment, "PAYMENT_STATUS_UPDATE",
            f"Payment {payment_id}: {from_state} -> {to_state}"
        )
        if to_state == PaymentStatus.COMPLETED.value:
            await self._record(
                TransactionType.DEBIT, payment, "PAYMENT_COMPLETED",
                f"Payment to {payment['beneficiary_id']}"
            )
        elif from_state == PaymentStatus.COMPLETED.value:
            await self._record(
                TransactionType.CREDIT, payment, "PAYMENT_CANCELLED",
                f"Payment {payment_id} cancelled"
            )
        return payment

    async def cancel_payment(self, payment_id: str) -> Dict[str, Any]:
        """Cancel from any live status, crediting the amount back regardless of it."""
        async def _cancel(txn: LedgerTransaction):
            payment = await self._get_for_update(txn, payment_id)
            self._ensure_not_deleted(payment)
            if payment["status"] == PaymentStatus.CANCELLED.value:
                raise AlreadyCancelledError(
                    f"Payment {payment_id} is already cancelled",
                    details={"payment_id": payment_id}
                )

            await self.treasury.apply_balance_delta(
                txn, payment["category_id"], to_decimal(payment["amount"]), payment_movement=True
            )
            update_data = {
                "status": PaymentStatus.CANCELLED.value,
                "updated_at": datetime.utcnow()
            }
            await txn.update(self.collection, payment_id, update_data)
            payment.update(update_data)
            return payment

        payment = await self.store.run_transaction(_cancel)

        self.logger.info(f"[TRANSACTION] Payment cancelled: {payment_id}, refunded {payment['amount']}")

        await self._record(
            TransactionType.CREDIT, payment, "PAYMENT_CANCELLED",
            f"Payment {payment_id} cancelled"
        )
        return payment

    async def delete_payment(self, payment_id: str, acting_user_id: str) -> Dict[str, Any]:
        """Soft delete. COMPLETED payments are credited back first."""
        async def _delete(txn: LedgerTransaction):
            payment = await self._get_for_update(txn, payment_id)
            self._ensure_not_deleted(payment)
            if payment["status"] == PaymentStatus.CANCELLED.value:
                raise CannotDeleteCancelledError(
                    f"Cannot delete cancelled payment {payment_id}",
                    details={"payment_id": payment_id}
                )

            refunded = payment["status"] == PaymentStatus.COMPLETED.value
            if refunded:
                await self.treasury.apply_balance_delta(
                    txn, payment["category_id"], to_decimal(payment["amount"]), payment_movement=True
                )

            now = datetime.utcnow()
            update_data = {
                "is_deleted": True,
                "deleted_at": now,
                "deleted_by": acting_user_id,
                "status": PaymentStatus.CANCELLED.value,
                "updated_at": now
            }
            await txn.update(self.collection, payment_id, update_data)
            payment.update(update_data)
            return payment, refunded

        payment, refunded = await self.store.run_transaction(_delete)

        self.logger.info(f"[TRANSACTION] Payment deleted: {payment_id} by {acting_user_id}")

        if refunded:
            await self._record(
                TransactionType.CREDIT, payment, "PAYMENT_DELETED",
                f"Payment {payment_id} deleted by {acting_user_id}"
            )
        return payment

    # =========================================================================
    # UPDATE
    # =========================================================================

    async def update_payment(self, payment_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        """
        Patch descriptive fields, amount or category.

        Only a COMPLETED payment carries a debit, so only then does an amount
        or category change move money: the old amount goes back to the old
        category and the new amount is taken from the new one.
        """
        forbidden = set(patch) - UPDATABLE_PAYMENT_FIELDS
        if forbidden:
            raise InvalidFieldError("payment", list(forbidden))

        update_data = dict(patch)
        if "amount" in update_data:
            update_data["amount"] = to_float(validate_positive(update_data["amount"], "amount"))
        if "payment_type" in update_data and update_data["payment_type"] is not None:
            update_data["payment_type"] = PaymentType(update_data["payment_type"]).value

        async def _update(txn: LedgerTransaction):
            payment = await self._get_for_update(txn, payment_id)
            self._ensure_not_deleted(payment)
            if update_data.get("beneficiary_id") and update_data["beneficiary_id"] != payment["beneficiary_id"]:
                await self.beneficiaries.get_beneficiary_for_update(txn, update_data["beneficiary_id"])

            old_amount = to_decimal(payment["amount"])
            old_category = payment["category_id"]
            new_amount = to_decimal(update_data.get("amount", payment["amount"]))
            new_category = update_data.get("category_id", old_category)
            changed = new_amount != old_amount or new_category != old_category

            moved = changed and payment["status"] == PaymentStatus.COMPLETED.value
            if moved:
                await self.treasury.apply_balance_delta(txn, old_category, old_amount, payment_movement=True)
                await self.treasury.apply_balance_delta(txn, new_category, -new_amount, payment_movement=True)
            elif new_category != old_category:
                await self.treasury.get_category_for_update(txn, new_category)

            update_data["updated_at"] = datetime.utcnow()
            await txn.update(self.collection, payment_id, update_data)

            previous = dict(payment)
            payment.update(update_data)
            return previous, payment, moved

        previous, payment, moved = await self.store.run_transaction(_update)

        if moved:
            self.logger.info(
                f"[TRANSACTION] Payment {payment_id} moved: "
                f"{previous['amount']}@{previous['category_id']} -> {payment['amount']}@{payment['category_id']}"
            )
            await self._record(
                TransactionType.CREDIT, previous, "PAYMENT_ADJUSTMENT",
                f"Payment {payment_id} adjusted (reversal)"
            )
            await self._record(
                TransactionType.DEBIT, payment, "PAYMENT_ADJUSTMENT",
                f"Payment {payment_id} adjusted"
            )
        return payment

    # =========================================================================
    # READ
    # =========================================================================

    async def get_payment(self, payment_id: str) -> Dict[str, Any]:
        payment = await self.store.get(self.collection, payment_id)
        if not payment:
            raise NotFoundError("Payment", payment_id)
        return payment

    async def list_payments(
        self,
        page_size: int = 10,
        start_after: Optional[Dict[str, Any]] = None,
        status: Optional[Union[PaymentStatus, str]] = None,
        include_deleted: bool = False
    ) -> Dict[str, Any]:
        filters: Dict[str, Any] = {}
        if status:
            filters["status"] = PaymentStatus(status).value
        if not include_deleted:
            filters["is_deleted"] = False

        payments = await self.store.find(
            self.collection,
            filters=filters,
            order_by="created_at",
            descending=True,
            limit=page_size,
            start_after=start_after
        )
        return {
            "payments": payments,
            "last_doc": payments[-1] if payments else None
        }
