"""
Tests for the storage implementations.

The Google Sheets store runs against an in-process stand-in for the
worksheet API, so no credentials or network are needed.
"""

import asyncio
from datetime import date
from decimal import Decimal

import pytest

from khata.models.audit import AuditEvent, AuditEventType
from khata.models.ledger import Contact, ContactType, Direction, TransactionChanges
from khata.services.storage import (
    GoogleSheetsAuditStorage,
    GoogleSheetsLedgerStorage,
    InMemoryAuditStorage,
    NotFoundError,
    StorageError,
    SubscriptionError,
)
from khata.services.storage.google_sheets import (
    AUDIT_COLUMNS,
    CONTACT_COLUMNS,
    TRANSACTION_COLUMNS,
)


class FakeWorksheet:
    """Just enough of gspread.Worksheet for the store."""

    def __init__(self, header):
        self.rows = [list(header)]

    def get_all_values(self):
        return [list(r) for r in self.rows]

    def append_row(self, values, value_input_option=None):
        self.rows.append([str(v) for v in values])

    def update_cell(self, row, col, value):
        target = self.rows[row - 1]
        while len(target) < col:
            target.append("")
        target[col - 1] = str(value)

    def delete_rows(self, index):
        del self.rows[index - 1]


class FakeSheetsClient:
    """Stands in for GoogleSheetsClient."""

    def __init__(self):
        self.contacts = FakeWorksheet(CONTACT_COLUMNS)
        self.transactions = FakeWorksheet(TRANSACTION_COLUMNS)
        self.audit = FakeWorksheet(AUDIT_COLUMNS)
        self.broken = False

    def _sheet(self, sheet):
        if self.broken:
            raise RuntimeError("API quota exceeded")
        return sheet

    def get_contacts_sheet(self):
        return self._sheet(self.contacts)

    def get_transactions_sheet(self):
        return self._sheet(self.transactions)

    def get_audit_sheet(self):
        return self._sheet(self.audit)


@pytest.fixture
def sheets_client():
    return FakeSheetsClient()


@pytest.fixture
def sheets_store(sheets_client):
    return GoogleSheetsLedgerStorage(sheets_client, poll_interval_seconds=0.01)


class TestInMemoryLedgerStorage:
    """Tests for the in-memory store."""

    @pytest.mark.asyncio
    async def test_contact_round_trip(self, store, ramesh):
        """Test add and get of a contact."""
        await store.add_contact(ramesh)
        loaded = await store.get_contact(ramesh.id)
        assert loaded == ramesh
        assert loaded is not ramesh

    @pytest.mark.asyncio
    async def test_duplicate_contact_rejected(self, store, ramesh):
        await store.add_contact(ramesh)
        with pytest.raises(StorageError):
            await store.add_contact(ramesh)

    @pytest.mark.asyncio
    async def test_list_contacts_filters_type(self, store):
        """Test that the default listing holds customers only."""
        await store.add_contact(Contact(name="Customer"))
        await store.add_contact(Contact(name="Supplier", contact_type=ContactType.SUPPLIER))

        customers = await store.list_contacts()
        everyone = await store.list_contacts(contact_type=None)

        assert [c.name for c in customers] == ["Customer"]
        assert len(everyone) == 2

    @pytest.mark.asyncio
    async def test_update_balance(self, store, ramesh):
        await store.add_contact(ramesh)
        assert await store.update_contact_balance(ramesh.id, Decimal("-40")) is True
        assert (await store.get_contact(ramesh.id)).balance == Decimal("-40")

    @pytest.mark.asyncio
    async def test_update_balance_unknown_contact(self, store):
        with pytest.raises(NotFoundError):
            await store.update_contact_balance("missing", Decimal("1"))

    @pytest.mark.asyncio
    async def test_update_transaction_keeps_contact(self, store, make_transaction):
        """Test that an edit replaces fields and stamps updated_at."""
        tx = make_transaction("100", Direction.CREDIT)
        await store.add_transaction(tx)

        updated = await store.update_transaction(tx.id, TransactionChanges(
            amount=Decimal("150"),
            direction=Direction.DEBIT,
            description="returned",
            effective_date=date(2025, 2, 1),
        ))

        assert updated.contact_id == tx.contact_id
        assert updated.created_at == tx.created_at
        assert updated.amount == Decimal("150")
        assert updated.direction is Direction.DEBIT
        assert updated.updated_at is not None

    @pytest.mark.asyncio
    async def test_update_missing_transaction(self, store):
        with pytest.raises(NotFoundError):
            await store.update_transaction("missing", TransactionChanges(
                amount=Decimal("1"),
                direction=Direction.CREDIT,
                effective_date=date(2025, 1, 1),
            ))

    @pytest.mark.asyncio
    async def test_delete_transaction(self, store, make_transaction):
        tx = make_transaction()
        await store.add_transaction(tx)

        assert await store.delete_transaction(tx.id) is True
        assert await store.delete_transaction(tx.id) is False
        assert await store.get_transaction(tx.id) is None

    @pytest.mark.asyncio
    async def test_watch_pushes_snapshots(self, store, make_transaction):
        """Test that a feed gets the initial set and every change."""
        feed = await store.watch_transactions("c-ramesh")
        assert await asyncio.wait_for(feed.__anext__(), 1) == []

        tx = make_transaction("10")
        await store.add_transaction(tx)
        snapshot = await asyncio.wait_for(feed.__anext__(), 1)
        assert [t.id for t in snapshot] == [tx.id]

        await store.delete_transaction(tx.id)
        assert await asyncio.wait_for(feed.__anext__(), 1) == []

        feed.close()
        assert store.open_feed_count() == 0


class TestInMemoryAuditStorage:
    """Tests for the in-memory audit log."""

    @pytest.mark.asyncio
    async def test_append_and_query(self):
        storage = InMemoryAuditStorage()
        event = AuditEvent(
            event_type=AuditEventType.CONTACT_ADDED,
            entity_type="contact",
            entity_id="c1",
            description="Contact added: A",
        )
        await storage.append_event(event)

        assert await storage.get_events_by_entity("contact", "c1") == [event]
        assert await storage.get_events_by_entity("contact", "c2") == []
        assert await storage.get_recent_events(limit=10) == [event]


class TestGoogleSheetsLedgerStorage:
    """Tests for the Sheets store against a fake worksheet."""

    @pytest.mark.asyncio
    async def test_contact_rows(self, sheets_store, sheets_client, ramesh):
        """Test that a contact survives the trip through a sheet row."""
        await sheets_store.add_contact(ramesh)

        assert sheets_client.contacts.rows[1][0] == ramesh.id
        loaded = await sheets_store.get_contact(ramesh.id)
        assert loaded.name == ramesh.name
        assert loaded.phone == ramesh.phone
        assert loaded.address is None
        assert loaded.balance == Decimal("0")
        assert loaded.created_at == ramesh.created_at

    @pytest.mark.asyncio
    async def test_balance_cell_updated(self, sheets_store, sheets_client, ramesh):
        await sheets_store.add_contact(ramesh)
        await sheets_store.update_contact_balance(ramesh.id, Decimal("300.50"))

        balance_col = CONTACT_COLUMNS.index("balance")
        assert sheets_client.contacts.rows[1][balance_col] == "300.50"
        assert (await sheets_store.get_contact(ramesh.id)).balance == Decimal("300.50")

    @pytest.mark.asyncio
    async def test_balance_unknown_contact(self, sheets_store):
        """Test that a missing contact is NotFoundError, not retried."""
        with pytest.raises(NotFoundError):
            await sheets_store.update_contact_balance("missing", Decimal("1"))

    @pytest.mark.asyncio
    async def test_transactions_filtered_by_contact(self, sheets_store, make_transaction):
        mine = make_transaction("500", description="gold ring")
        theirs = make_transaction("20", contact_id="c-other")
        await sheets_store.add_transaction(mine)
        await sheets_store.add_transaction(theirs)

        listed = await sheets_store.list_transactions("c-ramesh")

        assert len(listed) == 1
        assert listed[0].id == mine.id
        assert listed[0].amount == Decimal("500")
        assert listed[0].description == "gold ring"
        assert listed[0].effective_date == mine.effective_date

    @pytest.mark.asyncio
    async def test_malformed_rows_skipped(self, sheets_store, sheets_client, make_transaction):
        """Test that a hand-edited bad row doesn't break the listing."""
        good = make_transaction("10")
        await sheets_store.add_transaction(good)
        sheets_client.transactions.rows.append(["bad", "c-ramesh", "lots", "credit", "", "someday", "", ""])

        listed = await sheets_store.list_transactions("c-ramesh")

        assert [t.id for t in listed] == [good.id]

    @pytest.mark.asyncio
    async def test_update_and_delete(self, sheets_store, make_transaction):
        tx = make_transaction("100", Direction.CREDIT)
        await sheets_store.add_transaction(tx)

        updated = await sheets_store.update_transaction(tx.id, TransactionChanges(
            amount=Decimal("80"),
            direction=Direction.DEBIT,
            effective_date=date(2025, 1, 9),
        ))
        reloaded = await sheets_store.get_transaction(tx.id)

        assert updated.contact_id == "c-ramesh"
        assert reloaded.direction is Direction.DEBIT
        assert reloaded.amount == Decimal("80")
        assert reloaded.updated_at is not None

        assert await sheets_store.delete_transaction(tx.id) is True
        assert await sheets_store.delete_transaction(tx.id) is False

    @pytest.mark.asyncio
    async def test_update_missing_transaction(self, sheets_store):
        with pytest.raises(NotFoundError):
            await sheets_store.update_transaction("missing", TransactionChanges(
                amount=Decimal("1"),
                direction=Direction.CREDIT,
                effective_date=date(2025, 1, 1),
            ))

    @pytest.mark.asyncio
    async def test_watch_polls_for_changes(self, sheets_store, make_transaction):
        """Test that the polling feed sees rows added after subscribing."""
        feed = await sheets_store.watch_transactions("c-ramesh")
        assert await asyncio.wait_for(feed.__anext__(), 1) == []

        await sheets_store.add_transaction(make_transaction("45"))
        snapshot = await asyncio.wait_for(feed.__anext__(), 1)

        assert len(snapshot) == 1
        feed.close()

    @pytest.mark.asyncio
    async def test_watch_fails_when_sheet_unreachable(self, sheets_store, sheets_client):
        """Test that an unreadable sheet refuses the subscription."""
        sheets_client.broken = True
        with pytest.raises(SubscriptionError):
            await sheets_store.watch_transactions("c-ramesh")

    @pytest.mark.asyncio
    async def test_feed_fails_when_sheet_breaks(self, sheets_store, sheets_client):
        """Test that a later API error ends the feed."""
        feed = await sheets_store.watch_transactions("c-ramesh")
        await asyncio.wait_for(feed.__anext__(), 1)

        sheets_client.broken = True
        with pytest.raises(SubscriptionError):
            await asyncio.wait_for(feed.__anext__(), 1)


class TestGoogleSheetsAuditStorage:
    """Tests for the Sheets audit log."""

    @pytest.mark.asyncio
    async def test_append_and_read_back(self, sheets_client):
        storage = GoogleSheetsAuditStorage(sheets_client)
        event = AuditEvent(
            event_type=AuditEventType.TRANSACTION_ADDED,
            entity_type="transaction",
            entity_id="tx-1",
            description="Transaction recorded: credit ₹500",
            details={"amount": "500"},
            is_user_action=True,
        )

        assert await storage.append_event(event) is True
        events = await storage.get_events_by_entity("transaction", "tx-1")

        assert len(events) == 1
        assert events[0].event_id == event.event_id
        assert events[0].details == {"amount": "500"}
        assert events[0].is_user_action is True


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
