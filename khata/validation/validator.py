"""
Ledger Input Validation

User input is checked before any store call. A submission with an
error-level issue never reaches the store or the sync engine; warnings are
reported but do not block.

Contact form:
- Name is required (after trimming)
- Phone is free text; an odd digit count is only a warning

Transaction form:
- Amount must parse to a number greater than zero
- Direction must be credit or debit
- Date is required and must be a real calendar date
- Unusually large amounts are flagged as a warning

IMPORTANT: Validation NEVER silently fixes values beyond trimming
whitespace and stripping currency formatting from the amount.
"""

import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Optional, Union

from khata.config import get_settings
from khata.models.ledger import (
    ContactDraft,
    Direction,
    TransactionChanges,
    TransactionDraft,
    ValidationIssue,
    ValidationResult,
)

_AMOUNT_NOISE = re.compile(r"[^0-9.\-]")
_PLAIN_NUMBER = re.compile(r"^\d*\.?\d*$")


class LedgerValidationError(ValueError):
    """Raised when a form submission is rejected."""

    def __init__(self, result: ValidationResult):
        self.result = result
        super().__init__(result.first_error or "Invalid input")


def parse_amount(raw: Union[Decimal, int, float, str, None]) -> Optional[Decimal]:
    """
    Parse an amount typed into a form.

    Currency symbols, grouping commas and spaces are ignored
    ("₹1,234.50" -> Decimal("1234.50")). Returns None when the input is
    not a plain non-negative number.
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, Decimal):
        value = raw
    elif isinstance(raw, (int, float)):
        value = Decimal(str(raw))
    else:
        cleaned = _AMOUNT_NOISE.sub("", raw)
        if not cleaned or not _PLAIN_NUMBER.match(cleaned) or cleaned == ".":
            return None
        try:
            value = Decimal(cleaned)
        except InvalidOperation:
            return None
    if not value.is_finite():
        return None
    return value


def parse_entry_date(raw: Union[datetime, date, str, None]) -> Optional[date]:
    """Parse an entry date (date, datetime or ISO 'YYYY-MM-DD' text)."""
    if raw is None:
        return None
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    text = raw.strip()
    if not text:
        return None
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None


class LedgerInputValidator:
    """Validates contact and transaction form input."""

    def __init__(self, max_amount: Optional[float] = None):
        self._max_amount = Decimal(str(
            max_amount if max_amount is not None else get_settings().ledger.max_amount
        ))

    def validate_contact(self, draft: ContactDraft) -> ValidationResult:
        issues = []
        name = (draft.name or "").strip()

        if not name:
            issues.append(ValidationIssue(
                field="name",
                issue_type="missing",
                message="Name cannot be empty.",
                severity="error",
                suggested_fix="Enter the customer's name",
            ))
        elif len(name) > 200:
            issues.append(ValidationIssue(
                field="name",
                issue_type="too_long",
                message="Name is too long (200 characters at most).",
                severity="error",
            ))

        phone = (draft.phone or "").strip()
        if phone:
            digit_count = sum(1 for c in phone if c.isdigit())
            if digit_count == 0:
                issues.append(ValidationIssue(
                    field="phone",
                    issue_type="invalid_format",
                    message="Phone number has no digits.",
                    severity="error",
                    suggested_fix="Enter a mobile number or leave it blank",
                ))
            elif digit_count not in (10, 12):
                issues.append(ValidationIssue(
                    field="phone",
                    issue_type="suspicious_value",
                    message=f"Phone number has {digit_count} digits; mobile numbers usually have 10.",
                    severity="warning",
                    suggested_fix="Please verify the number",
                ))

        if draft.address and len(draft.address.strip()) > 500:
            issues.append(ValidationIssue(
                field="address",
                issue_type="too_long",
                message="Address is too long (500 characters at most).",
                severity="error",
            ))

        return self._result(issues)

    def validate_transaction(
        self,
        draft: TransactionDraft,
    ) -> tuple[ValidationResult, Optional[TransactionChanges]]:
        """
        Validate transaction input.

        Returns:
            (result, changes). `changes` holds the parsed, store-ready fields
            and is None whenever the result has errors.
        """
        issues = []

        amount = parse_amount(draft.amount)
        if amount is None or amount <= 0:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="invalid_value",
                message="Please enter a valid positive amount.",
                severity="error",
                suggested_fix="Enter an amount greater than zero, e.g. 500 or 1250.50",
            ))
        elif amount > self._max_amount:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="suspicious_value",
                message=f"Amount (₹{amount:,.2f}) seems unusually high",
                severity="warning",
                suggested_fix="Please verify this amount is correct",
            ))

        direction: Optional[Direction] = None
        raw_direction = draft.direction
        if isinstance(raw_direction, str) and not isinstance(raw_direction, Direction):
            raw_direction = raw_direction.strip().lower()
        try:
            direction = Direction(raw_direction)
        except ValueError:
            issues.append(ValidationIssue(
                field="direction",
                issue_type="invalid_value",
                message="Choose either 'You Gave' (credit) or 'You Got' (debit).",
                severity="error",
            ))

        entry_date = parse_entry_date(draft.effective_date)
        if entry_date is None:
            issues.append(ValidationIssue(
                field="effective_date",
                issue_type="missing",
                message="Please choose a valid date for this entry.",
                severity="error",
                suggested_fix="Use the YYYY-MM-DD format",
            ))

        description = (draft.description or "").strip()
        if len(description) > 500:
            issues.append(ValidationIssue(
                field="description",
                issue_type="too_long",
                message="Description is too long (500 characters at most).",
                severity="error",
            ))

        result = self._result(issues)
        if not result.is_valid:
            return result, None

        changes = TransactionChanges(
            amount=amount,
            direction=direction,
            description=description or None,
            effective_date=entry_date,
        )
        return result, changes

    def _result(self, issues: list[ValidationIssue]) -> ValidationResult:
        return ValidationResult(
            is_valid=not any(issue.severity == "error" for issue in issues),
            issues=issues,
            warnings=[issue.message for issue in issues if issue.severity == "warning"],
        )

    def get_user_friendly_summary(
        self,
        result: ValidationResult,
    ) -> str:
        """
        Generate a user-friendly summary of validation results.
        """
        if result.is_valid and not result.warnings:
            return "✅ All checks passed!"

        lines = []

        if result.has_errors:
            lines.append("❌ Please fix the following:")
            for issue in result.issues:
                if issue.severity == "error":
                    lines.append(f"   • {issue.message}")
                    if issue.suggested_fix:
                        lines.append(f"     💡 {issue.suggested_fix}")

        if result.warnings:
            if lines:
                lines.append("")
            lines.append("⚠️ Please verify the following:")
            for warning in result.warnings:
                lines.append(f"   • {warning}")

        return "\n".join(lines)
