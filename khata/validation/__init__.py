"""Input validation package."""

from khata.validation.validator import (
    LedgerInputValidator,
    LedgerValidationError,
    parse_amount,
    parse_entry_date,
)

__all__ = [
    "LedgerInputValidator",
    "LedgerValidationError",
    "parse_amount",
    "parse_entry_date",
]
