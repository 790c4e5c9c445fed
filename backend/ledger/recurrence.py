"""
Installment schedule for recurring payments.

Dates are offset from the base date by i periods (i = 0 .. N-1). Month-based
offsets clamp to the last day of shorter months (Jan 31 + 1 month = Feb 29
in a leap year).
"""

from datetime import date, datetime
from dateutil.relativedelta import relativedelta
from typing import List, Union

from ledger.errors import ValidationRequiredError

FREQUENCY_OFFSETS = {
    "weekly": lambda i: relativedelta(weeks=i),
    "monthly": lambda i: relativedelta(months=i),
    "quarterly": lambda i: relativedelta(months=3 * i),
    "yearly": lambda i: relativedelta(years=i),
}


def parse_date(value: Union[str, date, datetime]) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(value[:10])
    except (TypeError, ValueError):
        raise ValidationRequiredError(
            f"Invalid date: {value!r} (expected YYYY-MM-DD)",
            details={"field": "date", "value": str(value)}
        )


def installment_dates(base_date: Union[str, date], frequency: str, total_repetitions: int) -> List[str]:
    """
    ISO dates of every installment, first one on the base date.

    installment_dates("2024-01-15", "monthly", 3)
        -> ["2024-01-15", "2024-02-15", "2024-03-15"]
    """
    if frequency not in FREQUENCY_OFFSETS:
        raise ValidationRequiredError(
            f"Recurring payments need a frequency out of {sorted(FREQUENCY_OFFSETS)}",
            details={"field": "frequency", "value": frequency}
        )
    if not total_repetitions or total_repetitions < 1:
        raise ValidationRequiredError(
            "Recurring payments need total_repetitions >= 1",
            details={"field": "total_repetitions", "value": total_repetitions}
        )

    start = parse_date(base_date)
    offset = FREQUENCY_OFFSETS[frequency]
    return [(start + offset(i)).isoformat() for i in range(total_repetitions)]


def installment_description(description: str, number: int, total: int) -> str:
    suffix = f"(Payment {number}/{total})"
    if description:
        return f"{description} {suffix}"
    return suffix
