"""
Ledger Sync Engine

Keeps one contact's ledger view in step with the store.

For every snapshot the store emits (initial load, then after each insert,
edit or delete):
1. The full snapshot is ordered newest first
2. The balance is recomputed from scratch (Σ credit − Σ debit)
3. The resulting LedgerView is handed to the consumer
4. A write of the new balance onto the contact's cached balance is
   scheduled in the background

Steps 1-3 are synchronous and authoritative. Step 4 is best effort: its
failures are logged and never reach the consumer, since nothing computes
from the cached balance.

A subscription failure is terminal for the view: the iterator raises
SubscriptionError and the watch is released. There is no automatic retry.
"""

import asyncio
from decimal import Decimal
from typing import Callable, Optional

import structlog

from khata.models.ledger import LedgerView, Transaction
from khata.services.storage import SnapshotFeed, SubscriptionError
from khata.sync.balance import derive_view
from khata.sync.session import LedgerSession


logger = structlog.get_logger(__name__)


class LedgerWatch:
    """
    One live view of one contact's ledger.

    Usage:
        async with engine.watch(contact_id) as watch:
            async for view in watch:
                render(view.balance, view.transactions)

    Leaving the block cancels the subscription.
    """

    def __init__(self, engine: "LedgerSyncEngine", contact_id: str):
        self.contact_id = contact_id
        self._engine = engine
        self._feed: Optional[SnapshotFeed] = None
        self._closed = False
        self.latest: Optional[LedgerView] = None
        self.views_published = 0

    @property
    def is_open(self) -> bool:
        return self._feed is not None and not self._closed

    async def open(self) -> "LedgerWatch":
        """Subscribe to the contact's transactions, replacing any other active watch."""
        if self._closed:
            raise RuntimeError("A closed watch cannot be reopened")
        if self._feed is not None:
            return self

        await self._engine._activate(self)
        session = self._engine.session
        try:
            self._feed = await session.store.watch_transactions(self.contact_id)
        except Exception as e:
            self._closed = True
            self._engine._deactivate(self)
            await self._engine._subscription_failed(self.contact_id, e)
            if isinstance(e, SubscriptionError):
                raise
            raise SubscriptionError(f"Failed to load transactions: {e}") from e

        logger.info(
            "ledger_watch_opened",
            contact_id=self.contact_id,
            user_id=session.user_id,
        )
        return self

    async def close(self) -> None:
        """Release the subscription. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        if self._feed is not None:
            self._feed.close()
        self._engine._deactivate(self)
        logger.info(
            "ledger_watch_closed",
            contact_id=self.contact_id,
            views_published=self.views_published,
        )

    def __aiter__(self) -> "LedgerWatch":
        return self

    async def __anext__(self) -> LedgerView:
        if self._closed:
            raise StopAsyncIteration
        if self._feed is None:
            await self.open()

        try:
            snapshot = await self._feed.__anext__()
        except SubscriptionError as e:
            await self.close()
            await self._engine._subscription_failed(self.contact_id, e)
            raise
        if self._closed:
            # Closed while waiting; the snapshot belongs to a view nobody shows
            raise StopAsyncIteration

        view = self._engine.apply_snapshot(self.contact_id, snapshot)
        self.latest = view
        self.views_published += 1
        return view

    async def __aenter__(self) -> "LedgerWatch":
        return await self.open()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


class LedgerSyncEngine:
    """
    Derives ledger views from live snapshots and writes balances back.

    At most one watch is active per engine; opening a watch for another
    contact closes the previous one first.
    """

    def __init__(self, session: LedgerSession):
        self.session = session
        self._active: Optional[LedgerWatch] = None
        self._writebacks: set[asyncio.Task] = set()

    @property
    def active_watch(self) -> Optional[LedgerWatch]:
        return self._active

    @property
    def pending_writebacks(self) -> int:
        return len(self._writebacks)

    def watch(self, contact_id: str) -> LedgerWatch:
        """Create a watch for a contact. It subscribes when opened or first iterated."""
        return LedgerWatch(self, contact_id)

    async def follow(
        self,
        contact_id: str,
        on_view: Callable[[LedgerView], None],
        on_error: Optional[Callable[[SubscriptionError], None]] = None,
    ) -> None:
        """
        Callback-style consumption of a watch.

        Runs until the watch is closed (for example by switching contacts).
        A subscription failure goes to `on_error` when given, otherwise it
        propagates.
        """
        try:
            async with self.watch(contact_id) as watch:
                async for view in watch:
                    on_view(view)
        except SubscriptionError as e:
            if on_error is None:
                raise
            on_error(e)

    def apply_snapshot(
        self,
        contact_id: str,
        snapshot: list[Transaction],
    ) -> LedgerView:
        """Derive the view for a snapshot and schedule the balance write-back."""
        view = derive_view(contact_id, snapshot)
        logger.debug(
            "ledger_view_published",
            contact_id=contact_id,
            balance=str(view.balance),
            transaction_count=len(view.transactions),
        )
        self._schedule_writeback(contact_id, view.balance)
        return view

    async def current_view(self, contact_id: str) -> LedgerView:
        """One-shot view from a fresh read, without touching the cached balance."""
        transactions = await self.session.store.list_transactions(contact_id)
        return derive_view(contact_id, transactions)

    async def drain(self) -> None:
        """Wait for scheduled balance write-backs to finish."""
        while self._writebacks:
            await asyncio.gather(*list(self._writebacks), return_exceptions=True)

    async def close(self) -> None:
        """Close the active watch and finish outstanding write-backs."""
        if self._active is not None:
            await self._active.close()
        await self.drain()

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _activate(self, watch: LedgerWatch) -> None:
        previous = self._active
        if previous is not None and previous is not watch:
            await previous.close()
        self._active = watch

    def _deactivate(self, watch: LedgerWatch) -> None:
        if self._active is watch:
            self._active = None

    def _schedule_writeback(self, contact_id: str, balance: Decimal) -> None:
        task = asyncio.create_task(self._write_back(contact_id, balance))
        self._writebacks.add(task)
        task.add_done_callback(self._writebacks.discard)

    async def _write_back(self, contact_id: str, balance: Decimal) -> None:
        try:
            await self.session.store.update_contact_balance(contact_id, balance)
        except Exception as e:
            logger.warning(
                "balance_writeback_failed",
                contact_id=contact_id,
                balance=str(balance),
                error=str(e),
            )
            await self.session.audit_logger.log_balance_writeback_failed(
                contact_id=contact_id,
                balance=str(balance),
                error_message=str(e),
            )

    async def _subscription_failed(self, contact_id: str, error: BaseException) -> None:
        logger.error(
            "ledger_subscription_failed",
            contact_id=contact_id,
            error=str(error),
        )
        await self.session.audit_logger.log_subscription_failed(
            contact_id=contact_id,
            error_message=str(error),
        )
