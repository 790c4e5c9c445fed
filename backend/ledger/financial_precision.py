"""
DECIMAL PRECISION & MONEY UTILITIES

This module provides:
1. Decimal precision lock (2-decimal places)
2. Safe ledger arithmetic
3. Amount validation (positive / non-negative)
4. Rounding at the storage boundary only
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Union, Optional
import logging

from ledger.errors import InvalidAmountError

logger = logging.getLogger(__name__)

# Precision configuration
DECIMAL_PLACES = 2
QUANTIZE_PATTERN = Decimal('0.01')

# Tolerance used when comparing stored balances (1 cent)
BALANCE_EPSILON = Decimal('0.01')

Numeric = Union[float, int, str, Decimal]


def to_decimal(value: Optional[Numeric]) -> Decimal:
    """
    Convert any numeric value to Decimal.
    Does NOT round - preserves full precision for intermediate calculations.
    Missing values (None) count as zero, the way absent balances do.
    """
    if value is None:
        return Decimal('0')
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise InvalidAmountError(f"Cannot use boolean {value} as an amount")
    if isinstance(value, (int, float)):
        # Convert via string to avoid float precision issues
        return Decimal(str(value))
    if isinstance(value, str):
        try:
            return Decimal(value)
        except InvalidOperation:
            raise InvalidAmountError(f"Not a valid amount: {value!r}")
    raise InvalidAmountError(f"Cannot convert {type(value)} to Decimal")


def round_financial(value: Numeric) -> Decimal:
    """
    Round a value to 2 decimal places (half up).
    This should be called ONLY at calculation boundaries.
    """
    return to_decimal(value).quantize(QUANTIZE_PATTERN, rounding=ROUND_HALF_UP)


def to_float(value: Numeric) -> float:
    """
    Convert Decimal back to float for document storage.
    Rounds to 2 decimal places first.
    """
    return float(round_financial(value))


def validate_positive(value: Numeric, field_name: str) -> Decimal:
    """
    Validate that an amount is strictly positive (> 0).
    Raises InvalidAmountError if validation fails.
    """
    decimal_value = to_decimal(value)
    if decimal_value <= Decimal('0'):
        raise InvalidAmountError(
            f"'{field_name}' must be greater than 0: {value}",
            details={"field": field_name, "value": str(value)}
        )
    return decimal_value


def validate_non_negative(value: Numeric, field_name: str) -> Decimal:
    """
    Validate that an amount is not negative.
    Raises InvalidAmountError if validation fails.
    """
    decimal_value = to_decimal(value)
    if decimal_value < Decimal('0'):
        raise InvalidAmountError(
            f"'{field_name}' cannot be negative: {value}",
            details={"field": field_name, "value": str(value)}
        )
    return decimal_value


def safe_add(*values: Numeric) -> Decimal:
    """Safe addition of multiple values"""
    result = Decimal('0')
    for v in values:
        result += to_decimal(v)
    return result


def safe_subtract(a: Numeric, b: Numeric) -> Decimal:
    """Safe subtraction preserving precision"""
    return to_decimal(a) - to_decimal(b)


def safe_multiply(a: Numeric, b: Numeric) -> Decimal:
    """Safe multiplication preserving precision"""
    return to_decimal(a) * to_decimal(b)


def amounts_match(a: Numeric, b: Numeric, tolerance: Numeric = BALANCE_EPSILON) -> bool:
    """True when two amounts differ by no more than the tolerance."""
    return abs(safe_subtract(a, b)) <= to_decimal(tolerance)
