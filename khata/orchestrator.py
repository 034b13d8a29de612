"""
Main Orchestrator for Khata Ledger

This module ties together all the components and defines the user-facing
flows:
1. Contacts (add → list)
2. Transactions (add → edit → delete)
3. Live ledger view (LedgerSyncEngine, see khata.sync)

DESIGN DECISION: The orchestrator enforces the boundaries:
- Input is validated before any store call
- Flows never write a contact's balance; the sync engine re-derives it
  from the transactions and writes the cache
- Every user action is audited
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Union
from uuid import UUID

import structlog

from khata.audit import AuditLogger, create_correlation_id
from khata.models.ledger import (
    Contact,
    ContactDraft,
    ContactType,
    Direction,
    Transaction,
    TransactionDraft,
    ValidationIssue,
    ValidationResult,
)
from khata.services.storage import (
    ConnectionError,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStorage,
    InMemoryLedgerStorage,
    StorageError,
)
from khata.sync import LedgerSession, LedgerSyncEngine
from khata.validation import LedgerInputValidator, LedgerValidationError


logger = structlog.get_logger(__name__)

AmountInput = Union[Decimal, int, float, str, None]
DateInput = Union[datetime, date, str, None]


class _Flow:
    """Shared plumbing for the user-facing flows."""

    def __init__(
        self,
        session: LedgerSession,
        validator: Optional[LedgerInputValidator] = None,
    ):
        self._session = session
        self._validator = validator or LedgerInputValidator(
            max_amount=session.settings.max_amount
        )

    @property
    def _store(self):
        return self._session.store

    @property
    def _audit(self) -> AuditLogger:
        return self._session.audit_logger

    async def _reject(
        self,
        form: str,
        result: ValidationResult,
        correlation_id: UUID,
    ) -> None:
        issues = [
            {"field": i.field, "type": i.issue_type, "message": i.message}
            for i in result.issues
        ]
        await self._audit.log_validation_failed(
            form=form,
            issues=issues,
            correlation_id=correlation_id,
        )
        raise LedgerValidationError(result)

    async def _storage_failed(
        self,
        operation: str,
        error: StorageError,
        correlation_id: UUID,
    ) -> None:
        if isinstance(error, ConnectionError):
            await self._audit.log_external_service_error(
                service=type(self._store).__name__,
                error_message=str(error),
                correlation_id=correlation_id,
            )
            return
        await self._audit.log_error(
            error_type=type(error).__name__,
            error_message=str(error),
            details={"operation": operation, "user_id": self._session.user_id},
            correlation_id=correlation_id,
        )


class ContactFlow(_Flow):
    """
    Orchestrates contact management.

    Contacts are created with a zero balance and never deleted.
    """

    async def add_contact(
        self,
        name: str,
        phone: Optional[str] = None,
        address: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Contact:
        """
        Validate and store a new customer.

        Raises:
            LedgerValidationError: If the name is empty (nothing is stored)
            StorageError: If the store rejects the insert
        """
        correlation_id = correlation_id or create_correlation_id()

        draft = ContactDraft(name=name or "", phone=phone, address=address)
        result = self._validator.validate_contact(draft)
        if not result.is_valid:
            await self._reject("contact", result, correlation_id)

        contact = Contact(
            name=draft.name.strip(),
            phone=(draft.phone or "").strip() or None,
            address=(draft.address or "").strip() or None,
            contact_type=ContactType.CUSTOMER,
            balance=Decimal("0"),
        )

        try:
            await self._store.add_contact(contact)
        except StorageError as e:
            await self._storage_failed("add_contact", e, correlation_id)
            raise

        await self._audit.log_contact_added(
            contact_id=contact.id,
            name=contact.name,
            correlation_id=correlation_id,
        )
        return contact

    async def get_contact(self, contact_id: str) -> Optional[Contact]:
        return await self._store.get_contact(contact_id)

    async def list_contacts(self, query: Optional[str] = None) -> list[Contact]:
        """
        Customers sorted by name (case-insensitive), with their cached balances.

        Args:
            query: Optional search text. A customer matches when the text
                appears in the name or address (case-insensitive) or in
                the phone number. Blank text lists everyone.
        """
        contacts = await self._store.list_contacts(ContactType.CUSTOMER)
        needle = (query or "").strip().lower()
        if needle:
            contacts = [c for c in contacts if _matches(c, needle)]
        return sorted(contacts, key=lambda c: (c.name.casefold(), c.created_at))


def _matches(contact: Contact, needle: str) -> bool:
    return (
        needle in contact.name.lower()
        or (contact.phone is not None and needle in contact.phone)
        or (contact.address is not None and needle in contact.address.lower())
    )


class TransactionFlow(_Flow):
    """
    Orchestrates transaction entry.

    Flow:
    1. Validate → reject with a descriptive message on bad input
    2. Store → insert, replace or delete the transaction
    3. Audit → record the user action

    The contact's balance is not touched here. Any open LedgerWatch sees the
    change through its subscription and re-derives the balance.
    """

    def _validate(
        self,
        amount: AmountInput,
        direction: Union[Direction, str, None],
        effective_date: DateInput,
        description: Optional[str],
    ):
        draft = TransactionDraft(
            amount=amount,
            direction=direction,
            effective_date=effective_date,
            description=description,
        )
        return self._validator.validate_transaction(draft)

    async def add_transaction(
        self,
        contact_id: str,
        amount: AmountInput,
        direction: Union[Direction, str, None],
        effective_date: DateInput,
        description: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """
        Record a new entry for a contact.

        Raises:
            LedgerValidationError: On a non-positive amount, unknown
                direction or missing date (nothing is stored)
            StorageError: If the store rejects the insert
        """
        correlation_id = correlation_id or create_correlation_id()

        result, changes = self._validate(amount, direction, effective_date, description)
        if not contact_id or not contact_id.strip():
            result.issues.append(self._missing_contact_issue())
            result.is_valid = False
        if not result.is_valid:
            await self._reject("transaction", result, correlation_id)

        transaction = Transaction(contact_id=contact_id, **changes.model_dump())

        try:
            await self._store.add_transaction(transaction)
        except StorageError as e:
            await self._storage_failed("add_transaction", e, correlation_id)
            raise

        await self._audit.log_transaction_added(
            transaction_id=transaction.id,
            contact_id=contact_id,
            direction=transaction.direction.value,
            amount=str(transaction.amount),
            correlation_id=correlation_id,
        )
        return transaction

    async def edit_transaction(
        self,
        transaction_id: str,
        amount: AmountInput,
        direction: Union[Direction, str, None],
        effective_date: DateInput,
        description: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """
        Replace amount, direction, date and description of an entry.

        The entry stays with its contact and gains an updated_at stamp.

        Raises:
            LedgerValidationError: On invalid input (nothing is stored)
            NotFoundError: If the transaction doesn't exist
        """
        correlation_id = correlation_id or create_correlation_id()

        result, changes = self._validate(amount, direction, effective_date, description)
        if not result.is_valid:
            await self._reject("transaction", result, correlation_id)

        try:
            updated = await self._store.update_transaction(transaction_id, changes)
        except StorageError as e:
            await self._storage_failed("edit_transaction", e, correlation_id)
            raise

        await self._audit.log_transaction_updated(
            transaction_id=transaction_id,
            contact_id=updated.contact_id,
            changes=changes.model_dump(mode="json"),
            correlation_id=correlation_id,
        )
        return updated

    async def delete_transaction(
        self,
        transaction_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> bool:
        """
        Permanently delete an entry.

        Returns:
            True if an entry was deleted, False if it was already gone
        """
        correlation_id = correlation_id or create_correlation_id()

        try:
            existing = await self._store.get_transaction(transaction_id)
            deleted = await self._store.delete_transaction(transaction_id)
        except StorageError as e:
            await self._storage_failed("delete_transaction", e, correlation_id)
            raise

        if deleted:
            await self._audit.log_transaction_deleted(
                transaction_id=transaction_id,
                contact_id=existing.contact_id if existing else None,
                correlation_id=correlation_id,
            )
        return deleted

    @staticmethod
    def _missing_contact_issue() -> ValidationIssue:
        return ValidationIssue(
            field="contact_id",
            issue_type="missing",
            message="Choose a customer for this entry.",
            severity="error",
        )


def create_app_components(
    use_storage: bool = True,
) -> tuple[LedgerSession, ContactFlow, TransactionFlow, LedgerSyncEngine]:
    """
    Factory function to create all application components.

    Args:
        use_storage: Whether to connect to Google Sheets.
                    Set to False (or leave Sheets unconfigured) to run on
                    in-memory storage.

    Returns:
        (session, contact_flow, transaction_flow, sync_engine)
    """
    store = None
    audit_logger = None

    if use_storage:
        try:
            sheets_client = GoogleSheetsClient()
            store = GoogleSheetsLedgerStorage(sheets_client)
            audit_logger = AuditLogger(GoogleSheetsAuditStorage(sheets_client))
        except Exception as e:
            # Storage not configured - continue without it
            logger.warning("storage_not_configured", error=str(e))
            store = None

    if store is None:
        store = InMemoryLedgerStorage()
        audit_logger = AuditLogger()  # Local-only logging

    session = LedgerSession(store=store, audit_logger=audit_logger)

    return (
        session,
        ContactFlow(session),
        TransactionFlow(session),
        LedgerSyncEngine(session),
    )
