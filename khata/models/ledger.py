"""
Core Data Models for Khata Ledger

These models define the strict schemas for all data flowing through the system.
They are designed to:
1. Enforce type safety at runtime
2. Provide clear validation error messages
3. Be serializable for storage and logging

DESIGN DECISION: A contact's balance is a cache. The authoritative balance
is always the signed sum over that contact's transactions (see LedgerView).
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, Union
from uuid import uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
)


def new_record_id() -> str:
    """Opaque identifier for a new record."""
    return uuid4().hex


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class ContactType(str, Enum):
    """Kind of counterparty. Only customers are created in this version."""
    CUSTOMER = "customer"
    SUPPLIER = "supplier"


class Direction(str, Enum):
    """
    Direction of a transaction.

    The amount is always stored positive; the direction carries the sign.
    """
    CREDIT = "credit"  # नाम - You Gave, balance goes up
    DEBIT = "debit"    # जमा - You Got, balance goes down

    @property
    def label(self) -> str:
        """Bilingual label shown next to an entry."""
        if self is Direction.CREDIT:
            return "नाम (You Gave)"
        return "जमा (You Got)"

    @property
    def emoji(self) -> str:
        return "🔴" if self is Direction.CREDIT else "🟢"

    def signed(self, amount: Decimal) -> Decimal:
        """Apply this direction's sign to a positive amount."""
        return amount if self is Direction.CREDIT else -amount


class BalanceStatus(str, Enum):
    """Who owes whom, derived from the sign of a balance."""
    THEY_OWE_YOU = "they_owe_you"  # balance > 0
    YOU_OWE = "you_owe"            # balance < 0
    SETTLED = "settled"            # balance == 0

    @classmethod
    def from_balance(cls, balance: Decimal) -> "BalanceStatus":
        if balance > 0:
            return cls.THEY_OWE_YOU
        if balance < 0:
            return cls.YOU_OWE
        return cls.SETTLED

    @property
    def label(self) -> str:
        """Short ledger label (बाकी / जमा / Settled)."""
        return {
            BalanceStatus.THEY_OWE_YOU: "बाकी",
            BalanceStatus.YOU_OWE: "जमा",
            BalanceStatus.SETTLED: "Settled",
        }[self]

    @property
    def description(self) -> str:
        return {
            BalanceStatus.THEY_OWE_YOU: "They Owe You",
            BalanceStatus.YOU_OWE: "You Owe",
            BalanceStatus.SETTLED: "Settled",
        }[self]


# =============================================================================
# CORE LEDGER MODELS
# =============================================================================

class Contact(BaseModel):
    """
    A ledger counterparty.

    Contacts are never deleted. The only field that changes after creation
    is the cached balance, and only through the balance write-back.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(
        default_factory=new_record_id,
        min_length=1,
        description="Opaque contact identifier"
    )
    name: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Display name (required)"
    )
    phone: Optional[str] = Field(
        default=None,
        max_length=50,
        description="Phone number as entered"
    )
    address: Optional[str] = Field(
        default=None,
        max_length=500,
        description="Postal address as entered"
    )
    contact_type: ContactType = Field(
        default=ContactType.CUSTOMER,
        description="Kind of counterparty"
    )
    balance: Decimal = Field(
        default=Decimal("0"),
        description="Cached balance; may be stale"
    )
    created_at: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the contact was added"
    )

    @property
    def balance_status(self) -> BalanceStatus:
        return BalanceStatus.from_balance(self.balance)


class Transaction(BaseModel):
    """
    A single monetary movement against exactly one contact.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(
        default_factory=new_record_id,
        min_length=1,
        description="Opaque transaction identifier"
    )
    contact_id: str = Field(
        ...,
        min_length=1,
        description="Owning contact; immutable after creation"
    )
    amount: Decimal = Field(
        ...,
        gt=0,
        description="Positive amount in INR"
    )
    direction: Direction = Field(
        ...,
        description="credit (You Gave) or debit (You Got)"
    )
    description: Optional[str] = Field(
        default=None,
        max_length=500,
        description="Free-text note"
    )
    effective_date: date = Field(
        ...,
        description="User-chosen date of the entry"
    )
    created_at: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the entry was recorded"
    )
    updated_at: Optional[datetime] = Field(
        default=None,
        description="Last edit; absent until the first edit"
    )

    @property
    def signed_amount(self) -> Decimal:
        return self.direction.signed(self.amount)


class TransactionChanges(BaseModel):
    """
    Replacement fields for an edit.

    The contact id is deliberately absent: a transaction cannot move
    between contacts.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    amount: Decimal = Field(..., gt=0)
    direction: Direction
    description: Optional[str] = Field(default=None, max_length=500)
    effective_date: date


# =============================================================================
# RAW USER INPUT (validated before anything is stored)
# =============================================================================

class ContactDraft(BaseModel):
    """Contact form input as typed by the user."""

    name: str = ""
    phone: Optional[str] = None
    address: Optional[str] = None


class TransactionDraft(BaseModel):
    """
    Transaction form input as typed by the user.

    Amount and date may arrive as text; the validator parses them.
    """

    amount: Union[Decimal, int, float, str, None] = None
    direction: Union[Direction, str, None] = Direction.CREDIT
    effective_date: Union[datetime, date, str, None] = None
    description: Optional[str] = None


# =============================================================================
# DERIVED VIEW
# =============================================================================

class LedgerView(BaseModel):
    """
    What the presentation layer sees for one contact.

    Built fresh from the full transaction snapshot every time.
    """

    contact_id: str
    balance: Decimal = Decimal("0")
    transactions: list[Transaction] = Field(default_factory=list)
    computed_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def status(self) -> BalanceStatus:
        return BalanceStatus.from_balance(self.balance)

    @property
    def total_credit(self) -> Decimal:
        return sum(
            (t.amount for t in self.transactions if t.direction is Direction.CREDIT),
            Decimal("0"),
        )

    @property
    def total_debit(self) -> Decimal:
        return sum(
            (t.amount for t in self.transactions if t.direction is Direction.DEBIT),
            Decimal("0"),
        )

    @property
    def is_empty(self) -> bool:
        return not self.transactions


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_format', 'suspicious_value')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )
    suggested_fix: Optional[str] = Field(
        default=None,
        description="Suggested fix if available"
    )


class ValidationResult(BaseModel):
    """Outcome of validating one form submission."""

    validated_at: datetime = Field(
        default_factory=datetime.utcnow
    )
    is_valid: bool = Field(
        ...,
        description="True when no error-level issue was found"
    )
    issues: list[ValidationIssue] = Field(
        default_factory=list,
        description="All validation issues found"
    )
    warnings: list[str] = Field(
        default_factory=list,
        description="Non-blocking warnings"
    )

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")

    @property
    def first_error(self) -> Optional[str]:
        for issue in self.issues:
            if issue.severity == "error":
                return issue.message
        return None
