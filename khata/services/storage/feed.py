"""
Live Snapshot Feeds

A feed is the event-stream side of a subscription: an async iterator of
full snapshots (the complete current set of matching transactions), ended
either by close() or by a terminal SubscriptionError.

Two flavours:
- SnapshotFeed: push-based. The store calls publish() after each change.
- PollingSnapshotFeed: pull-based. Re-reads the backend on an interval and
  publishes only when the snapshot differs from the last one.

When the consumer falls behind, queued snapshots are coalesced and only the
newest one is delivered. Every snapshot is complete, so nothing is lost.
"""

import asyncio
from typing import Awaitable, Callable, Optional

import structlog

from khata.models.ledger import Transaction
from khata.services.storage.interface import SubscriptionError


logger = structlog.get_logger(__name__)

Snapshot = list[Transaction]


class _Closed:
    pass


class _Failed:
    def __init__(self, error: BaseException):
        self.error = error


_CLOSED = _Closed()


class SnapshotFeed:
    """
    Cancelable stream of transaction snapshots for one contact.

    Usage:
        async with await store.watch_transactions(contact_id) as feed:
            async for snapshot in feed:
                ...
    """

    def __init__(
        self,
        contact_id: str,
        on_close: Optional[Callable[["SnapshotFeed"], None]] = None,
    ):
        self.contact_id = contact_id
        self._queue: asyncio.Queue = asyncio.Queue()
        self._pending: Optional[object] = None
        self._closed = False
        self._finished = False
        self._on_close = on_close

    @property
    def closed(self) -> bool:
        return self._closed

    def publish(self, snapshot: Snapshot) -> None:
        """Queue a full snapshot. Ignored once the feed is closed."""
        if self._closed:
            return
        self._queue.put_nowait([t.model_copy(deep=True) for t in snapshot])

    def fail(self, error: BaseException) -> None:
        """End the feed with a terminal error."""
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_Failed(error))
        self._release()

    def close(self) -> None:
        """Cancel the subscription. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)
        self._release()

    def _release(self) -> None:
        if self._on_close is not None:
            callback, self._on_close = self._on_close, None
            callback(self)

    def __aiter__(self) -> "SnapshotFeed":
        return self

    async def __anext__(self) -> Snapshot:
        if self._finished:
            raise StopAsyncIteration

        if self._pending is not None:
            item, self._pending = self._pending, None
        else:
            item = await self._queue.get()

        # Coalesce: skip to the newest snapshot, stopping at any sentinel.
        while isinstance(item, list) and not self._queue.empty():
            following = self._queue.get_nowait()
            if not isinstance(following, list):
                self._pending = following
                break
            item = following

        if item is _CLOSED:
            self._finished = True
            raise StopAsyncIteration
        if isinstance(item, _Failed):
            self._finished = True
            if isinstance(item.error, SubscriptionError):
                raise item.error
            raise SubscriptionError(str(item.error)) from item.error
        return item

    async def __aenter__(self) -> "SnapshotFeed":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()


class PollingSnapshotFeed(SnapshotFeed):
    """
    Feed for backends without push notifications.

    Calls `fetch` every `interval_seconds` and publishes when the result
    changed. Any exception from `fetch` fails the feed; there is no retry.
    """

    def __init__(
        self,
        contact_id: str,
        fetch: Callable[[], Awaitable[Snapshot]],
        interval_seconds: float,
        on_close: Optional[Callable[["SnapshotFeed"], None]] = None,
    ):
        super().__init__(contact_id, on_close=on_close)
        self._fetch = fetch
        self._interval = interval_seconds
        self._task: Optional[asyncio.Task] = None
        self._last_fingerprint: Optional[list[dict]] = None
        self.poll_count = 0

    def start(self) -> "PollingSnapshotFeed":
        """Start polling on the running event loop."""
        if self._task is None and not self._closed:
            self._task = asyncio.create_task(self._run())
        return self

    async def poll_once(self) -> bool:
        """
        Fetch once and publish if changed.

        Returns:
            True if a snapshot was published
        """
        snapshot = await self._fetch()
        self.poll_count += 1
        fingerprint = sorted(
            (t.model_dump(mode="json") for t in snapshot),
            key=lambda d: d["id"],
        )
        if fingerprint == self._last_fingerprint:
            return False
        self._last_fingerprint = fingerprint
        self.publish(snapshot)
        return True

    async def _run(self) -> None:
        while not self._closed:
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    "snapshot_poll_failed",
                    contact_id=self.contact_id,
                    error=str(e),
                )
                self.fail(e)
                return
            await asyncio.sleep(self._interval)

    def _release(self) -> None:
        task, self._task = self._task, None
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if task is not None and task is not current:
            task.cancel()
        super()._release()
