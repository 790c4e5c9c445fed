"""
Treasury ledger core: money arithmetic, store interface, state machines
and reconciliation.
"""
from .errors import (
    LedgerError,
    NotFoundError,
    InsufficientFundsError,
    InvalidAmountError,
    InvalidTransitionError,
    RoundAlreadyCompletedError,
    AlreadyDeletedError,
    AlreadyCancelledError,
    CannotDeleteCancelledError,
    CannotModifyCompletedError,
    ValidationRequiredError,
    InvalidFieldError,
    DuplicateCategoryError,
    CategoryNotEmptyError
)

from .financial_precision import (
    to_decimal,
    round_financial,
    to_float,
    validate_positive,
    validate_non_negative,
    safe_add,
    safe_subtract,
    safe_multiply,
    amounts_match,
    BALANCE_EPSILON
)

from .store import (
    LedgerStore,
    LedgerTransaction,
    MongoLedgerStore,
    COLLECTIONS
)

from .state_machine import (
    StateMachine,
    GuardConditionError
)

from .invariant_validator import (
    TreasuryPaymentValidator
)

__all__ = [
    # Errors
    'LedgerError',
    'NotFoundError',
    'InsufficientFundsError',
    'InvalidAmountError',
    'InvalidTransitionError',
    'RoundAlreadyCompletedError',
    'AlreadyDeletedError',
    'AlreadyCancelledError',
    'CannotDeleteCancelledError',
    'CannotModifyCompletedError',
    'ValidationRequiredError',
    'InvalidFieldError',
    'DuplicateCategoryError',
    'CategoryNotEmptyError',
    # Financial Precision
    'to_decimal',
    'round_financial',
    'to_float',
    'validate_positive',
    'validate_non_negative',
    'safe_add',
    'safe_subtract',
    'safe_multiply',
    'amounts_match',
    'BALANCE_EPSILON',
    # Store
    'LedgerStore',
    'LedgerTransaction',
    'MongoLedgerStore',
    'COLLECTIONS',
    # State Machine
    'StateMachine',
    'GuardConditionError',
    # Reconciliation
    'TreasuryPaymentValidator',
]
