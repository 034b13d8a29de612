"""
Data Models Package

This package contains all Pydantic models used in Khata Ledger.
All data flowing through the system must conform to these schemas.
"""

from khata.models.ledger import (
    BalanceStatus,
    Contact,
    ContactDraft,
    ContactType,
    Direction,
    LedgerView,
    Transaction,
    TransactionChanges,
    TransactionDraft,
    ValidationIssue,
    ValidationResult,
    new_record_id,
)
from khata.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "BalanceStatus",
    "Contact",
    "ContactDraft",
    "ContactType",
    "Direction",
    "LedgerView",
    "Transaction",
    "TransactionChanges",
    "TransactionDraft",
    "ValidationIssue",
    "ValidationResult",
    "new_record_id",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
