from typing import Optional, Dict, Any, List
import logging

from ledger.store import LedgerStore, LedgerTransaction, COLLECTIONS
from ledger.financial_precision import to_float
from models import LedgerTransactionRecord, TransactionType

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 10


class AuditService:
    """
    Transaction Recorder: append-only audit trail of balance events.

    Records written after the primary transaction commits are best effort:
    a failure is logged and swallowed, never surfaced to the caller. Records
    written through a store transaction (txn=...) commit or abort with it.
    The trail is advisory and is never used to rebuild balances.
    """

    def __init__(self, store: LedgerStore, logger: logging.Logger = None):
        self.store = store
        self.collection = COLLECTIONS["TRANSACTIONS"]
        self.logger = logger or logging.getLogger(__name__)

    @staticmethod
    def build_record(
        type: TransactionType,
        amount,
        description: str,
        category: str,
        reference: str,
        category_id: Optional[str] = None
    ) -> Dict[str, Any]:
        return LedgerTransactionRecord(
            type=type,
            amount=to_float(amount),
            description=description,
            category=category,
            reference=reference,
            category_id=category_id
        ).to_document()

    async def record_transaction(
        self,
        type: TransactionType,
        amount,
        description: str,
        category: str,
        reference: str,
        category_id: Optional[str] = None,
        txn: Optional[LedgerTransaction] = None
    ) -> Optional[str]:
        """
        Append an audit record (INSERT ONLY).

        Returns the new record id, or None when a best-effort write failed.
        """
        record = self.build_record(type, amount, description, category, reference, category_id)

        if txn is not None:
            created = await txn.insert(self.collection, record)
            return created["id"]

        try:
            created = await self.store.insert(self.collection, record)
            self.logger.info(
                f"[AUDIT] {record['type']} {record['amount']} {category} ref:{reference}"
            )
            return created["id"]
        except Exception as e:
            # Don't fail the main operation if audit logging fails
            self.logger.error(f"[AUDIT] Failed to record {category} for {reference}: {str(e)}")
            return None

    async def get_transactions(
        self,
        page_size: int = DEFAULT_PAGE_SIZE,
        start_after: Optional[Dict[str, Any]] = None,
        type: Optional[TransactionType] = None
    ) -> Dict[str, Any]:
        """Retrieve audit records newest first (READ ONLY)"""
        filters = {}
        if type:
            filters["type"] = TransactionType(type).value

        transactions = await self.store.find(
            self.collection,
            filters=filters,
            order_by="created_at",
            descending=True,
            limit=page_size,
            start_after=start_after
        )
        return {
            "transactions": transactions,
            "last_doc": transactions[-1] if transactions else None
        }

    async def get_transaction(self, transaction_id: str) -> Optional[Dict[str, Any]]:
        return await self.store.get(self.collection, transaction_id)

    async def get_transactions_for_reference(self, reference: str) -> List[Dict[str, Any]]:
        """All audit records for one source entity, oldest first"""
        return await self.store.find(
            self.collection,
            filters={"reference": reference},
            order_by="created_at"
        )
