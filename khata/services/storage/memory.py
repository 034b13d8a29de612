"""
In-Memory Storage Implementation

Process-local implementation of the storage interfaces. Used by the test
suite and as the fallback when Google Sheets is not configured.

Subscriptions are push-based: every transaction insert, edit or delete
publishes the new full snapshot to each open feed for the affected contact.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from khata.models.audit import AuditEvent
from khata.models.ledger import (
    Contact,
    ContactType,
    Transaction,
    TransactionChanges,
)
from khata.services.storage.feed import SnapshotFeed
from khata.services.storage.interface import (
    AuditStorageInterface,
    LedgerStorageInterface,
    NotFoundError,
    StorageError,
)


class InMemoryLedgerStorage(LedgerStorageInterface):
    """
    Dictionary-backed ledger storage.

    Records are copied on the way in and on the way out, so callers never
    share mutable state with the store.

    Fault injection (for tests):
        fail_balance_writes: raised by update_contact_balance when set
        fail_subscriptions: raised by watch_transactions when set
    """

    def __init__(self):
        self._contacts: dict[str, Contact] = {}
        self._transactions: dict[str, Transaction] = {}
        self._feeds: dict[str, list[SnapshotFeed]] = {}
        self.fail_balance_writes: Optional[Exception] = None
        self.fail_subscriptions: Optional[Exception] = None
        self.balance_write_count = 0

    # -------------------------------------------------------------------------
    # Contacts
    # -------------------------------------------------------------------------

    async def add_contact(self, contact: Contact) -> str:
        if contact.id in self._contacts:
            raise StorageError(f"Contact already exists: {contact.id}")
        self._contacts[contact.id] = contact.model_copy(deep=True)
        return contact.id

    async def get_contact(self, contact_id: str) -> Optional[Contact]:
        contact = self._contacts.get(contact_id)
        return contact.model_copy(deep=True) if contact else None

    async def list_contacts(
        self,
        contact_type: Optional[ContactType] = ContactType.CUSTOMER,
    ) -> list[Contact]:
        return [
            c.model_copy(deep=True)
            for c in self._contacts.values()
            if contact_type is None or c.contact_type == contact_type
        ]

    async def update_contact_balance(
        self,
        contact_id: str,
        balance: Decimal,
    ) -> bool:
        self.balance_write_count += 1
        if self.fail_balance_writes is not None:
            raise self.fail_balance_writes
        contact = self._contacts.get(contact_id)
        if contact is None:
            raise NotFoundError(f"Contact not found: {contact_id}")
        self._contacts[contact_id] = contact.model_copy(update={"balance": balance})
        return True

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    async def add_transaction(self, transaction: Transaction) -> str:
        if transaction.id in self._transactions:
            raise StorageError(f"Transaction already exists: {transaction.id}")
        self._transactions[transaction.id] = transaction.model_copy(deep=True)
        self._publish(transaction.contact_id)
        return transaction.id

    async def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        transaction = self._transactions.get(transaction_id)
        return transaction.model_copy(deep=True) if transaction else None

    async def update_transaction(
        self,
        transaction_id: str,
        changes: TransactionChanges,
    ) -> Transaction:
        existing = self._transactions.get(transaction_id)
        if existing is None:
            raise NotFoundError(f"Transaction not found: {transaction_id}")

        updated = existing.model_copy(
            update={
                **changes.model_dump(),
                "updated_at": datetime.utcnow(),
            }
        )
        self._transactions[transaction_id] = updated
        self._publish(updated.contact_id)
        return updated.model_copy(deep=True)

    async def delete_transaction(self, transaction_id: str) -> bool:
        removed = self._transactions.pop(transaction_id, None)
        if removed is None:
            return False
        self._publish(removed.contact_id)
        return True

    async def list_transactions(self, contact_id: str) -> list[Transaction]:
        return [
            t.model_copy(deep=True)
            for t in self._transactions.values()
            if t.contact_id == contact_id
        ]

    async def watch_transactions(self, contact_id: str) -> SnapshotFeed:
        if self.fail_subscriptions is not None:
            raise self.fail_subscriptions

        feed = SnapshotFeed(contact_id, on_close=self._unregister)
        self._feeds.setdefault(contact_id, []).append(feed)
        feed.publish(await self.list_transactions(contact_id))
        return feed

    # -------------------------------------------------------------------------
    # Subscription plumbing
    # -------------------------------------------------------------------------

    def open_feed_count(self, contact_id: Optional[str] = None) -> int:
        """Number of live feeds (optionally for one contact)."""
        if contact_id is not None:
            return len(self._feeds.get(contact_id, []))
        return sum(len(feeds) for feeds in self._feeds.values())

    def break_feeds(self, error: Exception, contact_id: Optional[str] = None) -> None:
        """Fail open feeds, simulating a lost connection or revoked access."""
        targets = (
            list(self._feeds.get(contact_id, []))
            if contact_id is not None
            else [f for feeds in self._feeds.values() for f in feeds]
        )
        for feed in targets:
            feed.fail(error)

    def _publish(self, contact_id: str) -> None:
        feeds = self._feeds.get(contact_id)
        if not feeds:
            return
        snapshot = [t for t in self._transactions.values() if t.contact_id == contact_id]
        for feed in list(feeds):
            feed.publish(snapshot)

    def _unregister(self, feed: SnapshotFeed) -> None:
        feeds = self._feeds.get(feed.contact_id, [])
        if feed in feeds:
            feeds.remove(feed)
        if not feeds:
            self._feeds.pop(feed.contact_id, None)


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only list of audit events."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    @property
    def events(self) -> list[AuditEvent]:
        return list(self._events)

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        events = [
            e for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = sorted(self._events, key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
