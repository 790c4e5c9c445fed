"""
TREASURY RECONCILIATION VALIDATOR

Cross-checks payment outflows against category balances:

    expected_balance = balance + SUM(COMPLETED payments) + SUM(PENDING requests)

expected_balance is what the category would hold with every completed
payment and every open payment request reservation reversed. It must match
the category's stored pre-payment funding level (funded_balance) within 0.01.
A mismatch means a payment debit never landed or landed twice.

A PENDING payment request has already debited its amount but has no payment
yet; once it completes, the COMPLETED payment takes its place in the sum.

This is a heuristic check, not a ledger replay: donations and feeding rounds
move balance and funded_balance together, so they cancel out here.

Categories without a funded_balance cannot be checked; they are listed as
unchecked and make the report invalid.

Reports discrepancies. Does NOT auto-correct.
"""

from decimal import Decimal
from datetime import datetime
from typing import Dict, Any, List, Iterable, Union
import logging

from pydantic import BaseModel

from ledger.financial_precision import (
    to_decimal, to_float, safe_add, safe_subtract, amounts_match, BALANCE_EPSILON
)

logger = logging.getLogger(__name__)

Record = Union[Dict[str, Any], BaseModel]


def _as_dict(record: Record) -> Dict[str, Any]:
    if isinstance(record, BaseModel):
        return record.model_dump()
    return record


def _group_by_category(records: Iterable[Dict[str, Any]]) -> Dict[str, List[Dict[str, Any]]]:
    grouped: Dict[str, List[Dict[str, Any]]] = {}
    for record in records:
        grouped.setdefault(record["category_id"], []).append(record)
    return grouped


class TreasuryPaymentValidator:
    """
    Recomputes pre-payment balances from completed payments and open
    payment request reservations.

    Used on demand by operators; reads a snapshot, never writes.
    """

    def __init__(self, tolerance: Union[Decimal, float, str] = BALANCE_EPSILON, logger: logging.Logger = None):
        self.tolerance = to_decimal(tolerance)
        self.logger = logger or logging.getLogger(__name__)

    @staticmethod
    def group_completed_payments(payments: Iterable[Record]) -> Dict[str, List[Dict[str, Any]]]:
        """Group COMPLETED, non-deleted payments by category id"""
        return _group_by_category(
            p for p in map(_as_dict, payments)
            if p.get("status") == "COMPLETED" and not p.get("is_deleted")
        )

    @staticmethod
    def group_reserved_requests(requests: Iterable[Record]) -> Dict[str, List[Dict[str, Any]]]:
        """Group PENDING payment requests (amount reserved, no payment yet) by category id"""
        return _group_by_category(r for r in map(_as_dict, requests) if r.get("status") == "PENDING")

    def validate(
        self,
        payments: Iterable[Record],
        categories: Iterable[Record],
        requests: Iterable[Record] = ()
    ) -> Dict[str, Any]:
        """
        Validate every category against its completed payments and reserved
        payment requests.

        Returns:
            {
              "is_valid": bool,
              "discrepancies": [{category_id, category_name, expected_balance,
                                 actual_balance, funded_balance, difference,
                                 completed_payments, reserved_requests}],
              "categories_checked": int,
              "unchecked_categories": [category ids without funded_balance],
              "orphaned_payments": [payment ids whose category is unknown],
              "validated_at": datetime
            }
        """
        grouped = self.group_completed_payments(payments)
        reserved = self.group_reserved_requests(requests)
        categories = [_as_dict(c) for c in categories]

        result = {
            "is_valid": True,
            "discrepancies": [],
            "categories_checked": 0,
            "unchecked_categories": [],
            "orphaned_payments": [],
            "validated_at": datetime.utcnow()
        }

        known_ids = set()
        for category in categories:
            category_id = category["id"]
            known_ids.add(category_id)

            funded_balance = category.get("funded_balance")
            if funded_balance is None:
                result["is_valid"] = False
                result["unchecked_categories"].append(category_id)
                self.logger.warning(
                    f"[RECONCILIATION] Category {category_id} has no funded_balance; cannot be checked"
                )
                continue

            result["categories_checked"] += 1
            category_payments = grouped.get(category_id, [])
            category_requests = reserved.get(category_id, [])
            total_paid = safe_add(*[p["amount"] for p in category_payments])
            total_reserved = safe_add(*[r["amount"] for r in category_requests])
            balance = to_decimal(category.get("balance"))
            expected_balance = safe_add(balance, total_paid, total_reserved)

            if not amounts_match(expected_balance, funded_balance, self.tolerance):
                difference = safe_subtract(expected_balance, funded_balance)
                result["is_valid"] = False
                result["discrepancies"].append({
                    "category_id": category_id,
                    "category_name": category.get("name"),
                    "expected_balance": to_float(expected_balance),
                    "actual_balance": to_float(balance),
                    "funded_balance": to_float(funded_balance),
                    "difference": to_float(difference),
                    "completed_payments": [
                        {"id": p["id"], "amount": p["amount"], "date": p.get("date")}
                        for p in category_payments
                    ],
                    "reserved_requests": [
                        {"id": r["id"], "amount": r["amount"], "start_date": r.get("start_date")}
                        for r in category_requests
                    ]
                })
                self.logger.warning(
                    f"[RECONCILIATION] Drift in category {category_id} ({category.get('name')}): "
                    f"expected {to_float(expected_balance)}, funded {to_float(funded_balance)}"
                )

        for category_id, category_payments in grouped.items():
            if category_id not in known_ids:
                result["orphaned_payments"].extend(p["id"] for p in category_payments)

        if result["orphaned_payments"]:
            self.logger.warning(
                f"[RECONCILIATION] {len(result['orphaned_payments'])} completed payments "
                f"reference unknown categories"
            )

        self.logger.info(
            f"[RECONCILIATION] Checked {result['categories_checked']} categories, "
            f"{len(result['discrepancies'])} discrepancies, "
            f"{len(result['unchecked_categories'])} unchecked"
        )
        return result
