"""
Display formatting helpers.

Pure functions: no state, no I/O. Amounts use Indian digit grouping
(12,34,567.00) with the rupee sign; dates use the short month form
("Jan 5, 2025").
"""

import re
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional, Union

RUPEE = "₹"
_TWO_PLACES = Decimal("0.01")
_NON_DIGITS = re.compile(r"\D")

DateLike = Union[date, datetime, str, None]


def _group_indian(digits: str) -> str:
    """Group an integer digit string as lakh/crore: 1234567 -> 12,34,567."""
    if len(digits) <= 3:
        return digits
    head, tail = digits[:-3], digits[-3:]
    groups = []
    while len(head) > 2:
        groups.insert(0, head[-2:])
        head = head[:-2]
    if head:
        groups.insert(0, head)
    return ",".join(groups + [tail])


def format_rupee(amount: Any) -> Any:
    """
    Format an amount as Indian rupees with exactly two decimals.

    >>> format_rupee(1234.5)
    '₹1,234.50'
    >>> format_rupee(-1234567)
    '-₹12,34,567.00'

    Anything that isn't a finite number is returned unchanged.
    """
    if isinstance(amount, bool) or amount is None:
        return amount
    try:
        if isinstance(amount, Decimal):
            value = amount
        elif isinstance(amount, float):
            value = Decimal(amount)
        else:
            value = Decimal(str(amount).strip())
    except (InvalidOperation, ValueError, TypeError):
        return amount
    if not value.is_finite():
        return amount

    value = value.quantize(_TWO_PLACES, rounding=ROUND_HALF_UP)
    sign = "-" if value < 0 else ""
    whole, fraction = f"{abs(value):.2f}".split(".")
    return f"{sign}{RUPEE}{_group_indian(whole)}.{fraction}"


def _coerce_datetime(value: DateLike) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        return None


def format_date_only(value: DateLike) -> str:
    """'Jan 5, 2025'. Empty string when there is no usable date."""
    moment = _coerce_datetime(value)
    if moment is None:
        return ""
    return f"{moment:%b} {moment.day}, {moment.year}"


def format_timestamp(value: DateLike) -> str:
    """'Jan 5, 2025, 03:07 PM'. Empty string when there is no usable date."""
    moment = _coerce_datetime(value)
    if moment is None:
        return ""
    hour = moment.hour % 12 or 12
    meridiem = "AM" if moment.hour < 12 else "PM"
    return f"{moment:%b} {moment.day}, {moment.year}, {hour:02d}:{moment:%M} {meridiem}"


def normalize_phone(raw: Optional[str], country_code: str = "91") -> str:
    """
    Normalize a phone number to international form.

    Non-digits are stripped. A number that already starts with the country
    code and has at least 10 digits gets a '+'; anything else is treated as
    a local number and gets '+<country_code>'. No further validation.

    >>> normalize_phone("98765 43210")
    '+919876543210'
    >>> normalize_phone("+91-98765-43210")
    '+919876543210'
    """
    if not raw:
        return ""
    digits = _NON_DIGITS.sub("", raw)
    if digits.startswith(country_code) and len(digits) >= 10:
        return f"+{digits}"
    return f"+{country_code}{digits}"
