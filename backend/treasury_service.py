"""
TREASURY SERVICE

Treasury categories and the Balance Mutator.

RULES:
- balance is only ever changed by apply_balance_delta, inside a store
  transaction shared with the document write that caused it
- a category balance never goes below zero (InsufficientFundsError)
- payment movements change balance only; every other movement changes
  balance and funded_balance together, which keeps the reconciliation
  baseline (funded_balance) independent of payments
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional, Dict, Any, List, Union
import logging

from audit_service import AuditService
from ledger.errors import (
    NotFoundError, InsufficientFundsError, InvalidFieldError,
    DuplicateCategoryError, CategoryNotEmptyError
)
from ledger.financial_precision import (
    to_decimal, to_float, safe_add, validate_non_negative, BALANCE_EPSILON
)
from ledger.invariant_validator import TreasuryPaymentValidator
from ledger.store import LedgerStore, LedgerTransaction, COLLECTIONS
from models import TreasuryCategory, TransactionType

logger = logging.getLogger(__name__)

# Fields a category patch may touch
UPDATABLE_CATEGORY_FIELDS = {"name", "description"}


class TreasuryService:
    """Category operations, balance mutation and reconciliation entry point"""

    def __init__(
        self,
        store: LedgerStore,
        audit_service: AuditService,
        logger: logging.Logger = None,
        tolerance: Union[Decimal, float, str] = BALANCE_EPSILON
    ):
        self.store = store
        self.audit = audit_service
        self.collection = COLLECTIONS["TREASURY"]
        self.logger = logger or logging.getLogger(__name__)
        self.validator = TreasuryPaymentValidator(tolerance, logger=self.logger)

    # =========================================================================
    # BALANCE MUTATOR
    # =========================================================================

    async def get_category_for_update(self, txn: LedgerTransaction, category_id: str) -> Dict[str, Any]:
        """Read a category inside a transaction or raise NotFoundError"""
        category = await txn.get(self.collection, category_id)
        if not category:
            raise NotFoundError("Treasury category", category_id)
        return category

    async def apply_balance_delta(
        self,
        txn: LedgerTransaction,
        category_id: str,
        delta,
        payment_movement: bool = False
    ) -> Dict[str, Any]:
        """
        Adjust one category balance by a signed delta inside txn.

        Raises:
            NotFoundError: category missing
            InsufficientFundsError: new balance would be negative

        Returns the category document as written.
        """
        category = await self.get_category_for_update(txn, category_id)

        delta = to_decimal(delta)
        current_balance = to_decimal(category.get("balance"))
        new_balance = safe_add(current_balance, delta)

        if new_balance < Decimal('0'):
            raise InsufficientFundsError(
                category_id=category_id,
                balance=to_float(current_balance),
                requested=to_float(abs(delta))
            )

        update_data = {
            "balance": to_float(new_balance),
            "updated_at": datetime.utcnow()
        }
        if not payment_movement:
            funded_balance = category.get("funded_balance", category.get("balance"))
            update_data["funded_balance"] = to_float(safe_add(funded_balance, delta))

        await txn.update(self.collection, category_id, update_data)

        self.logger.debug(
            f"[BALANCE] {category_id}: {to_float(current_balance)} -> {update_data['balance']}"
            f"{' (payment)' if payment_movement else ''}"
        )

        category.update(update_data)
        return category

    async def adjust_balance(self, category_id: str, amount, is_deduction: bool = False) -> Dict[str, Any]:
        """
        Manual balance adjustment.

        With is_deduction the amount is always taken as a debit (-abs(amount)).
        """
        delta = to_decimal(amount)
        if is_deduction:
            delta = -abs(delta)

        async def _adjust(txn: LedgerTransaction):
            return await self.apply_balance_delta(txn, category_id, delta)

        category = await self.store.run_transaction(_adjust)

        self.logger.info(f"[TRANSACTION] Balance adjusted: {category_id} by {to_float(delta)}")

        if delta != 0:
            await self.audit.record_transaction(
                type=TransactionType.DEBIT if delta < 0 else TransactionType.CREDIT,
                amount=abs(delta),
                description=f"Manual balance adjustment for {category.get('name')}",
                category="BALANCE_ADJUSTMENT",
                reference=category_id,
                category_id=category_id
            )
        return category

    # =========================================================================
    # CATEGORY OPERATIONS
    # =========================================================================

    async def _ensure_unique_name(self, name: str, exclude_id: Optional[str] = None) -> None:
        existing = await self.store.find(self.collection, filters={"name": name})
        if any(doc["id"] != exclude_id for doc in existing):
            raise DuplicateCategoryError(
                f"Treasury category already exists: {name}",
                details={"name": name}
            )

    async def create_category(self, name: str, balance=0, description: Optional[str] = None) -> Dict[str, Any]:
        """Create a category. funded_balance starts equal to the opening balance."""
        opening_balance = validate_non_negative(balance, "balance")
        await self._ensure_unique_name(name)

        category = TreasuryCategory(
            name=name,
            balance=to_float(opening_balance),
            funded_balance=to_float(opening_balance),
            description=description
        ).to_document()

        created = await self.store.insert(self.collection, category)
        self.logger.info(f"[TREASURY] Category created: {created['id']} ({name})")

        if opening_balance > 0:
            await self.audit.record_transaction(
                type=TransactionType.CREDIT,
                amount=opening_balance,
                description=f"Opening balance for {name}",
                category="OPENING_BALANCE",
                reference=created["id"],
                category_id=created["id"]
            )
        return created

    async def get_category(self, category_id: str) -> Dict[str, Any]:
        category = await self.store.get(self.collection, category_id)
        if not category:
            raise NotFoundError("Treasury category", category_id)
        return category

    async def list_categories(self) -> List[Dict[str, Any]]:
        return await self.store.find(self.collection, order_by="name")

    async def update_category(self, category_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        """Rename or re-describe a category. Balances are never patched."""
        forbidden = set(patch) - UPDATABLE_CATEGORY_FIELDS
        if forbidden:
            raise InvalidFieldError("treasury category", list(forbidden))

        category = await self.get_category(category_id)

        if patch.get("name") and patch["name"] != category["name"]:
            await self._ensure_unique_name(patch["name"], exclude_id=category_id)

        update_data = dict(patch)
        update_data["updated_at"] = datetime.utcnow()
        await self.store.update(self.collection, category_id, update_data)

        category.update(update_data)
        return category

    async def delete_category(self, category_id: str) -> None:
        """Delete a category that holds no funds"""
        async def _delete(txn: LedgerTransaction):
            category = await self.get_category_for_update(txn, category_id)
            if to_decimal(category.get("balance")) != Decimal('0'):
                raise CategoryNotEmptyError(
                    f"Treasury category {category_id} still holds {category.get('balance')}",
                    details={"category_id": category_id, "balance": category.get("balance")}
                )
            await txn.delete(self.collection, category_id)

        await self.store.run_transaction(_delete)
        self.logger.info(f"[TREASURY] Category deleted: {category_id}")

    # =========================================================================
    # RECONCILIATION
    # =========================================================================

    async def validate_treasury_payments(
        self,
        payments: Optional[List[Dict[str, Any]]] = None,
        categories: Optional[List[Dict[str, Any]]] = None,
        requests: Optional[List[Dict[str, Any]]] = None
    ) -> Dict[str, Any]:
        """
        Run the reconciliation check on the given snapshot, or on the
        current store contents when none is given.
        """
        if categories is None:
            categories = await self.list_categories()
        if payments is None:
            payments = await self.store.find(COLLECTIONS["PAYMENTS"], filters={"status": "COMPLETED"})
        if requests is None:
            requests = await self.store.find(COLLECTIONS["PAYMENT_REQUESTS"], filters={"status": "PENDING"})
        return self.validator.validate(payments, categories, requests)
