"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for the document store.
This allows us to:
1. Use Google Sheets today and swap in another backend later
2. Use in-memory storage for testing
3. Keep the ledger logic decoupled from the storage implementation

The interface mirrors what the ledger needs from a document store:
insert, replace, delete, one-shot queries, and a live subscription on a
contact's transactions.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from khata.models.ledger import (
    Contact,
    ContactType,
    Transaction,
    TransactionChanges,
)
from khata.models.audit import AuditEvent

if TYPE_CHECKING:
    from khata.services.storage.feed import SnapshotFeed


class LedgerStorageInterface(ABC):
    """
    Abstract interface for contact and transaction storage.

    Any storage implementation (Google Sheets, Firestore, SQL, ...)
    must implement these methods.
    """

    # -------------------------------------------------------------------------
    # Contacts
    # -------------------------------------------------------------------------

    @abstractmethod
    async def add_contact(self, contact: Contact) -> str:
        """
        Insert a new contact.

        Returns:
            The id of the stored contact

        Raises:
            StorageError: If the insert fails
        """
        pass

    @abstractmethod
    async def get_contact(self, contact_id: str) -> Optional[Contact]:
        """Retrieve a contact by id, or None if it does not exist."""
        pass

    @abstractmethod
    async def list_contacts(
        self,
        contact_type: Optional[ContactType] = ContactType.CUSTOMER,
    ) -> list[Contact]:
        """
        One-shot query of contacts.

        Args:
            contact_type: Only return contacts of this type (None for all)
        """
        pass

    @abstractmethod
    async def update_contact_balance(
        self,
        contact_id: str,
        balance: Decimal,
    ) -> bool:
        """
        Overwrite the cached balance on a contact.

        Raises:
            NotFoundError: If the contact doesn't exist
            StorageError: If the write fails
        """
        pass

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    @abstractmethod
    async def add_transaction(self, transaction: Transaction) -> str:
        """
        Insert a new transaction.

        Returns:
            The id of the stored transaction
        """
        pass

    @abstractmethod
    async def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        """Retrieve a transaction by id, or None if it does not exist."""
        pass

    @abstractmethod
    async def update_transaction(
        self,
        transaction_id: str,
        changes: TransactionChanges,
    ) -> Transaction:
        """
        Replace the editable fields of a transaction and stamp updated_at.

        Returns:
            The transaction as stored after the edit

        Raises:
            NotFoundError: If the transaction doesn't exist
        """
        pass

    @abstractmethod
    async def delete_transaction(self, transaction_id: str) -> bool:
        """
        Hard-delete a transaction.

        Returns:
            True if a transaction was deleted, False if none matched
        """
        pass

    @abstractmethod
    async def list_transactions(self, contact_id: str) -> list[Transaction]:
        """One-shot query of every transaction belonging to a contact."""
        pass

    @abstractmethod
    async def watch_transactions(self, contact_id: str) -> "SnapshotFeed":
        """
        Subscribe to the live set of a contact's transactions.

        The returned feed yields the full matching set on subscription and
        again after every change. Closing the feed cancels the subscription.
        A backend failure ends the feed with SubscriptionError.
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        """Get all events for a specific entity, in chronological order."""
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get the most recent audit events (newest first)."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass


class SubscriptionError(StorageError):
    """A live subscription ended because of a backend failure."""
    pass
