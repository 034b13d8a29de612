"""
Tests for the Ledger Sync Engine.

The in-memory store pushes a fresh snapshot to open feeds after every
mutation, which is what a live document store subscription does.
"""

import asyncio
from datetime import date
from decimal import Decimal

import pytest

from khata.models.audit import AuditEventType
from khata.models.ledger import Direction, TransactionChanges
from khata.services.storage import StorageError, SubscriptionError
from khata.sync import compute_balance


async def _next(watch, timeout=1.0):
    return await asyncio.wait_for(watch.__anext__(), timeout=timeout)


async def _wait_until(condition, timeout=1.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not condition():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


def _events(audit_storage, event_type):
    return [e for e in audit_storage.events if e.event_type == event_type]


class TestLedgerView:
    """Views published by a watch."""

    @pytest.mark.asyncio
    async def test_initial_view(self, engine, store, ramesh, make_transaction):
        """Test that the first view covers the existing entries."""
        await store.add_contact(ramesh)
        await store.add_transaction(make_transaction("500", Direction.CREDIT))
        await store.add_transaction(make_transaction("200", Direction.DEBIT))

        async with engine.watch(ramesh.id) as watch:
            view = await _next(watch)

        assert view.balance == Decimal("300")
        assert view.status.label == "बाकी"
        assert len(view.transactions) == 2

    @pytest.mark.asyncio
    async def test_view_follows_mutations(self, engine, store, ramesh, make_transaction):
        """Test that insert, edit and delete each produce a re-derived view."""
        await store.add_contact(ramesh)
        first = make_transaction("500", Direction.CREDIT)
        await store.add_transaction(first)

        async with engine.watch(ramesh.id) as watch:
            assert (await _next(watch)).balance == Decimal("500")

            second = make_transaction("200", Direction.DEBIT)
            await store.add_transaction(second)
            assert (await _next(watch)).balance == Decimal("300")

            await store.update_transaction(first.id, TransactionChanges(
                amount=Decimal("500"),
                direction=Direction.DEBIT,
                effective_date=first.effective_date,
            ))
            assert (await _next(watch)).balance == Decimal("-700")

            await store.delete_transaction(second.id)
            view = await _next(watch)
            assert view.balance == Decimal("-500")
            assert view.status.label == "जमा"
            assert watch.views_published == 4
            assert watch.latest is view

    @pytest.mark.asyncio
    async def test_view_matches_store_after_each_change(self, engine, store, ramesh, make_transaction):
        """Test that every published balance equals a fresh sum over the store."""
        await store.add_contact(ramesh)
        amounts = [("120", Direction.CREDIT), ("45.50", Direction.DEBIT), ("999", Direction.CREDIT)]

        async with engine.watch(ramesh.id) as watch:
            await _next(watch)
            for amount, direction in amounts:
                await store.add_transaction(make_transaction(amount, direction))
                view = await _next(watch)
                stored = await store.list_transactions(ramesh.id)
                assert view.balance == compute_balance(stored)

    @pytest.mark.asyncio
    async def test_entries_newest_first(self, engine, store, ramesh, make_transaction):
        """Test that the view lists entries by date descending."""
        await store.add_contact(ramesh)
        old = make_transaction(effective_date=date(2025, 1, 1))
        new = make_transaction(effective_date=date(2025, 2, 1))
        await store.add_transaction(old)
        await store.add_transaction(new)

        async with engine.watch(ramesh.id) as watch:
            view = await _next(watch)

        assert [t.id for t in view.transactions] == [new.id, old.id]

    @pytest.mark.asyncio
    async def test_other_contacts_not_included(self, engine, store, ramesh, make_transaction):
        """Test that the view only holds the watched contact's entries."""
        await store.add_contact(ramesh)
        await store.add_transaction(make_transaction("100"))
        await store.add_transaction(make_transaction("900", contact_id="c-someone-else"))

        async with engine.watch(ramesh.id) as watch:
            view = await _next(watch)

        assert view.balance == Decimal("100")

    @pytest.mark.asyncio
    async def test_unknown_contact(self, engine, audit_storage):
        """Test that an unknown contact gives an empty view and no error."""
        async with engine.watch("no-such-contact") as watch:
            view = await _next(watch)
        await engine.drain()

        assert view.balance == Decimal("0")
        assert view.transactions == []
        # The write-back to a missing contact fails quietly
        assert len(_events(audit_storage, AuditEventType.BALANCE_WRITEBACK_FAILED)) == 1

    @pytest.mark.asyncio
    async def test_current_view_does_not_write_back(self, engine, store, ramesh, make_transaction):
        """Test that a one-shot view leaves the cached balance alone."""
        await store.add_contact(ramesh)
        await store.add_transaction(make_transaction("500"))

        view = await engine.current_view(ramesh.id)

        assert view.balance == Decimal("500")
        assert store.balance_write_count == 0
        assert (await store.get_contact(ramesh.id)).balance == Decimal("0")


class TestBalanceWriteBack:
    """Best-effort write of the derived balance onto the contact."""

    @pytest.mark.asyncio
    async def test_balance_written_to_contact(self, engine, store, ramesh, make_transaction):
        """Test that the cached balance catches up with the derived one."""
        await store.add_contact(ramesh)
        await store.add_transaction(make_transaction("500", Direction.CREDIT))
        await store.add_transaction(make_transaction("200", Direction.DEBIT))

        async with engine.watch(ramesh.id) as watch:
            await _next(watch)
        await engine.drain()

        assert (await store.get_contact(ramesh.id)).balance == Decimal("300")
        assert engine.pending_writebacks == 0

    @pytest.mark.asyncio
    async def test_each_view_writes_back(self, engine, store, ramesh, make_transaction):
        """Test that every snapshot schedules its own write-back."""
        await store.add_contact(ramesh)

        async with engine.watch(ramesh.id) as watch:
            await _next(watch)
            await store.add_transaction(make_transaction("80"))
            await _next(watch)
        await engine.drain()

        assert store.balance_write_count == 2
        assert (await store.get_contact(ramesh.id)).balance == Decimal("80")

    @pytest.mark.asyncio
    async def test_write_failure_is_swallowed(self, engine, store, audit_storage, ramesh, make_transaction):
        """Test that a failing write-back never reaches the consumer."""
        await store.add_contact(ramesh)
        await store.add_transaction(make_transaction("500"))
        store.fail_balance_writes = StorageError("backend offline")

        async with engine.watch(ramesh.id) as watch:
            view = await _next(watch)
            await store.add_transaction(make_transaction("50", Direction.DEBIT))
            second = await _next(watch)
        await engine.drain()

        assert view.balance == Decimal("500")
        assert second.balance == Decimal("450")
        assert (await store.get_contact(ramesh.id)).balance == Decimal("0")

        failures = _events(audit_storage, AuditEventType.BALANCE_WRITEBACK_FAILED)
        assert len(failures) == 2
        assert failures[0].entity_id == ramesh.id
        assert failures[0].error_message == "backend offline"

    @pytest.mark.asyncio
    async def test_engine_close_drains(self, engine, store, ramesh, make_transaction):
        """Test that closing the engine waits for outstanding writes."""
        await store.add_contact(ramesh)
        await store.add_transaction(make_transaction("250"))

        watch = await engine.watch(ramesh.id).open()
        await _next(watch)
        await engine.close()

        assert engine.pending_writebacks == 0
        assert engine.active_watch is None
        assert (await store.get_contact(ramesh.id)).balance == Decimal("250")


class TestSubscriptionFailure:
    """Subscription errors are terminal for the view."""

    @pytest.mark.asyncio
    async def test_failure_on_open(self, engine, store, audit_storage, ramesh):
        """Test that a refused subscription raises and leaves nothing active."""
        store.fail_subscriptions = SubscriptionError("permission denied")
        watch = engine.watch(ramesh.id)

        with pytest.raises(SubscriptionError, match="permission denied"):
            await watch.open()

        assert engine.active_watch is None
        assert watch.is_open is False
        assert len(_events(audit_storage, AuditEventType.SUBSCRIPTION_FAILED)) == 1

    @pytest.mark.asyncio
    async def test_backend_error_on_open_is_wrapped(self, engine, store, ramesh):
        """Test that other errors at subscribe time become SubscriptionError."""
        store.fail_subscriptions = PermissionError("missing or insufficient permissions")

        with pytest.raises(SubscriptionError) as excinfo:
            async with engine.watch(ramesh.id):
                pass
        assert isinstance(excinfo.value.__cause__, PermissionError)

    @pytest.mark.asyncio
    async def test_failure_mid_stream(self, engine, store, audit_storage, ramesh, make_transaction):
        """Test that a dropped subscription ends the watch without retry."""
        await store.add_contact(ramesh)
        await store.add_transaction(make_transaction("100"))

        watch = await engine.watch(ramesh.id).open()
        await _next(watch)

        store.break_feeds(PermissionError("access revoked"), contact_id=ramesh.id)
        with pytest.raises(SubscriptionError, match="access revoked"):
            await _next(watch)

        assert watch.is_open is False
        assert engine.active_watch is None
        assert store.open_feed_count() == 0
        with pytest.raises(StopAsyncIteration):
            await _next(watch)
        assert store.open_feed_count() == 0
        assert len(_events(audit_storage, AuditEventType.SUBSCRIPTION_FAILED)) == 1

    @pytest.mark.asyncio
    async def test_closed_watch_cannot_reopen(self, engine, ramesh):
        """Test that a watch is single-use."""
        watch = await engine.watch(ramesh.id).open()
        await watch.close()

        with pytest.raises(RuntimeError):
            await watch.open()


class TestWatchLifecycle:
    """One active watch per engine; release on scope exit."""

    @pytest.mark.asyncio
    async def test_scope_exit_releases_subscription(self, engine, store, ramesh):
        """Test that leaving the block cancels the store subscription."""
        await store.add_contact(ramesh)

        async with engine.watch(ramesh.id) as watch:
            assert store.open_feed_count(ramesh.id) == 1
            assert engine.active_watch is watch

        assert store.open_feed_count() == 0
        assert engine.active_watch is None

    @pytest.mark.asyncio
    async def test_switching_contacts_closes_previous(self, engine, store, make_transaction):
        """Test that opening a second watch releases the first."""
        await store.add_transaction(make_transaction("100", contact_id="c-a"))
        await store.add_transaction(make_transaction("300", contact_id="c-b"))

        first = await engine.watch("c-a").open()
        second = await engine.watch("c-b").open()

        assert first.is_open is False
        assert second.is_open is True
        assert engine.active_watch is second
        assert store.open_feed_count("c-a") == 0
        assert store.open_feed_count("c-b") == 1

        with pytest.raises(StopAsyncIteration):
            await _next(first)
        assert (await _next(second)).balance == Decimal("300")

        await second.close()

    @pytest.mark.asyncio
    async def test_iteration_opens_lazily(self, engine, store, ramesh):
        """Test that iterating an unopened watch subscribes first."""
        await store.add_contact(ramesh)
        watch = engine.watch(ramesh.id)
        assert store.open_feed_count() == 0

        view = await _next(watch)

        assert view.contact_id == ramesh.id
        assert store.open_feed_count(ramesh.id) == 1
        await watch.close()

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, engine, ramesh):
        """Test that closing twice is harmless."""
        watch = await engine.watch(ramesh.id).open()
        await watch.close()
        await watch.close()
        assert watch.is_open is False


class TestFollow:
    """Callback-style consumption."""

    @pytest.mark.asyncio
    async def test_follow_delivers_views(self, engine, store, ramesh, make_transaction):
        """Test that on_view sees each re-derived view until the watch closes."""
        await store.add_contact(ramesh)
        views = []

        task = asyncio.create_task(engine.follow(ramesh.id, views.append))
        await _wait_until(lambda: len(views) == 1)

        await store.add_transaction(make_transaction("75"))
        await _wait_until(lambda: len(views) == 2)

        await engine.active_watch.close()
        await asyncio.wait_for(task, timeout=1.0)

        assert [v.balance for v in views] == [Decimal("0"), Decimal("75")]

    @pytest.mark.asyncio
    async def test_follow_reports_failure(self, engine, store, ramesh):
        """Test that on_error receives a terminal subscription error."""
        await store.add_contact(ramesh)
        views, errors = [], []

        task = asyncio.create_task(engine.follow(ramesh.id, views.append, errors.append))
        await _wait_until(lambda: len(views) == 1)

        store.break_feeds(SubscriptionError("connection lost"))
        await asyncio.wait_for(task, timeout=1.0)

        assert len(errors) == 1
        assert str(errors[0]) == "connection lost"

    @pytest.mark.asyncio
    async def test_follow_without_handler_raises(self, engine, store):
        """Test that an unhandled subscription error propagates."""
        store.fail_subscriptions = SubscriptionError("permission denied")

        with pytest.raises(SubscriptionError):
            await engine.follow("c-a", lambda view: None)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
