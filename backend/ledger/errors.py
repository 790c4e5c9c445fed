"""
Ledger error kinds.

Every error raised by the ledger services derives from LedgerError and
carries a stable ``error_type`` string, the way InvariantViolationError
carries its violation type. Raised inside a store transaction callback they
abort the whole transaction.
"""

from typing import Optional, List


class LedgerError(Exception):
    """Base class for ledger rule violations"""
    error_type = "LEDGER_ERROR"

    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        return {
            "error_type": self.error_type,
            "message": self.message,
            "details": self.details
        }


class NotFoundError(LedgerError):
    """Category, donation, payment, request or round is missing"""
    error_type = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(
            f"{entity} not found: {entity_id}",
            details={"entity": entity, "entity_id": entity_id}
        )


class InsufficientFundsError(LedgerError):
    """The mutation would drive a category balance below zero"""
    error_type = "INSUFFICIENT_FUNDS"

    def __init__(self, category_id: str, balance: float, requested: float):
        self.category_id = category_id
        self.balance = balance
        self.requested = requested
        super().__init__(
            f"Insufficient funds in category {category_id}: "
            f"balance {balance:.2f}, requested {requested:.2f}",
            details={
                "category_id": category_id,
                "balance": balance,
                "requested": requested
            }
        )


class InvalidAmountError(LedgerError):
    error_type = "INVALID_AMOUNT"


class InvalidTransitionError(LedgerError):
    """Raised when attempting an invalid state transition."""
    error_type = "INVALID_TRANSITION"

    def __init__(
        self,
        entity: str,
        from_state: str,
        to_state: str,
        allowed: Optional[List[str]] = None,
        message: Optional[str] = None
    ):
        self.entity = entity
        self.from_state = from_state
        self.to_state = to_state
        self.allowed = allowed or []

        if message is None:
            allowed_str = f" Allowed transitions from '{from_state}': {self.allowed}" if self.allowed else ""
            message = f"Invalid transition for {entity}: '{from_state}' -> '{to_state}'.{allowed_str}"
        super().__init__(
            message,
            details={"entity": entity, "from_state": from_state, "to_state": to_state, "allowed": self.allowed}
        )


class RoundAlreadyCompletedError(InvalidTransitionError):
    """A completed feeding round cannot change status or be deleted."""
    error_type = "ROUND_ALREADY_COMPLETED"

    def __init__(self, round_id: str, to_state: str = "DELETED"):
        self.round_id = round_id
        super().__init__(
            "feeding_round", "COMPLETED", to_state,
            message=f"Feeding round {round_id} is already completed"
        )


class AlreadyDeletedError(LedgerError):
    error_type = "ALREADY_DELETED"


class AlreadyCancelledError(LedgerError):
    error_type = "ALREADY_CANCELLED"


class CannotDeleteCancelledError(LedgerError):
    error_type = "CANNOT_DELETE_CANCELLED"


class CannotModifyCompletedError(LedgerError):
    error_type = "CANNOT_MODIFY_COMPLETED"


class ValidationRequiredError(LedgerError):
    """Recurring payments need a frequency and a repetition count"""
    error_type = "VALIDATION_REQUIRED"


class InvalidFieldError(LedgerError):
    """A patch touched fields that only dedicated operations may change"""
    error_type = "INVALID_FIELD"

    def __init__(self, entity: str, fields: List[str]):
        self.entity = entity
        self.fields = sorted(fields)
        super().__init__(
            f"Cannot change {', '.join(self.fields)} on {entity} through update",
            details={"entity": entity, "fields": self.fields}
        )


class DuplicateCategoryError(LedgerError):
    error_type = "DUPLICATE_CATEGORY"


class CategoryNotEmptyError(LedgerError):
    error_type = "CATEGORY_NOT_EMPTY"
