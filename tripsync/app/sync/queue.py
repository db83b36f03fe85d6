"""Durable FIFO sync queue with head-of-line delivery and backoff.

Entries are delivered strictly in sequence order. A failed delivery keeps the
entry at the head of the queue and stops the drain, so later operations for
the same trip are never applied remotely before earlier ones. A background
worker retries with exponential backoff plus jitter.
"""

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from tripsync.app.db.repositories import NotAuthenticatedError, SyncQueueStore
from tripsync.app.models.sync import SyncAction, SyncQueueEntry, SyncStatus

logger = logging.getLogger(__name__)

DeliverFn = Callable[[SyncQueueEntry], Awaitable[None]]
StatusListener = Callable[[SyncStatus], None]


# Metrics interface (no-op default)
class SyncMetrics:
    """Interface for sync delivery metrics."""

    def record_latency(self, action: str, outcome: str, latency_ms: float) -> None:
        """Record delivery latency."""
        pass

    def inc_error(self, action: str, reason: str) -> None:
        """Increment error counter."""
        pass

    def set_depth(self, depth: int) -> None:
        """Publish current queue depth."""
        pass


# Logging interface (no-op default)
class SyncLogger:
    """Interface for structured delivery logging."""

    def log_attempt(
        self,
        entry: SyncQueueEntry,
        attempt: int,
        outcome: str,
        latency_ms: float,
        error_reason: str | None = None,
    ) -> None:
        """Log delivery attempt."""
        pass


@dataclass
class BackoffConfig:
    """Retry schedule for the background worker."""

    base_ms: int = 500
    max_ms: int = 60_000
    jitter_min_ms: int = 200
    jitter_max_ms: int = 500

    def delay_seconds(self, failures: int) -> float:
        """Delay before the next retry after ``failures`` consecutive failed drains."""
        exponent = max(failures - 1, 0)
        delay_ms = min(self.max_ms, self.base_ms * (2**exponent))
        jitter_ms = random.uniform(self.jitter_min_ms, self.jitter_max_ms)
        return (delay_ms + jitter_ms) / 1000


@dataclass
class DrainResult:
    """Outcome of one drain pass."""

    delivered: int
    remaining: int
    error: str | None = None
    blocked_entry_id: str | None = None
    # Stopped because no owner session is available; not a delivery failure
    needs_session: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


class SyncQueue:
    """Sync queue over a durable SyncQueueStore."""

    def __init__(
        self,
        store: SyncQueueStore,
        deliver: DeliverFn,
        metrics: SyncMetrics | None = None,
        logger: SyncLogger | None = None,
        sleep_fn: Callable[[float], Awaitable[None]] | None = None,
        backoff: BackoffConfig | None = None,
    ) -> None:
        """Initialize queue.

        Args:
            store: Durable entry storage
            deliver: Async callable applying one entry remotely; raises on failure
            metrics: Metrics recorder (optional, defaults to no-op)
            logger: Structured logger (optional, defaults to no-op)
            sleep_fn: Injectable sleep function (default: asyncio.sleep)
            backoff: Retry schedule for the background worker
        """
        self._store = store
        self._deliver = deliver
        self._metrics = metrics or SyncMetrics()
        self._logger = logger or SyncLogger()
        self._sleep = sleep_fn or asyncio.sleep
        self._backoff = backoff or BackoffConfig()

        self._lock = asyncio.Lock()
        self._wake = asyncio.Event()
        self._worker: asyncio.Task[None] | None = None
        self._status_listeners: list[StatusListener] = []

        self._pending_count = 0
        self._is_syncing = False
        self._last_synced_at: datetime | None = None
        self._last_error: str | None = None
        self._consecutive_failures = 0

    @property
    def status(self) -> SyncStatus:
        """Current sync indicator."""
        return SyncStatus(
            pending_count=self._pending_count,
            is_syncing=self._is_syncing,
            last_synced_at=self._last_synced_at,
            last_error=self._last_error,
        )

    @property
    def is_running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def on_status_change(self, listener: StatusListener) -> Callable[[], None]:
        """Register a status listener; returns an unsubscribe callable."""
        self._status_listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._status_listeners:
                self._status_listeners.remove(listener)

        return unsubscribe

    async def refresh(self) -> SyncStatus:
        """Reload the pending count from the store."""
        self._pending_count = await self._store.count()
        self._publish()
        return self.status

    async def enqueue(
        self, action: SyncAction, payload: dict[str, Any], trip_id: str | None
    ) -> SyncQueueEntry:
        """Durably append an operation and wake the background worker."""
        entry = await self._store.append(action, payload, trip_id)
        self._pending_count = await self._store.count()
        logger.info(
            f"[sync] enqueued {action.value} for trip {trip_id} "
            f"(seq={entry.seq}, pending={self._pending_count})"
        )
        self._publish()
        self._wake.set()
        return entry

    async def pending_count(self) -> int:
        """Number of entries waiting for delivery."""
        return await self._store.count()

    async def has_pending(self, trip_id: str | None = None) -> bool:
        """Whether any entry (for ``trip_id`` if given) is waiting."""
        return await self._store.has_pending(trip_id)

    async def list_pending(self) -> list[SyncQueueEntry]:
        """Pending entries in delivery order."""
        return await self._store.list_pending()

    async def purge_trip(self, trip_id: str) -> int:
        """Drop every pending entry for a trip."""
        async with self._lock:
            dropped = await self._store.purge_trip(trip_id)
            self._pending_count = await self._store.count()
        if dropped:
            logger.info(f"[sync] purged {dropped} pending entries for trip {trip_id}")
            self._publish()
        return dropped

    async def drain(self) -> DrainResult:
        """Deliver entries in order until the queue is empty or one fails."""
        async with self._lock:
            self._is_syncing = True
            self._publish()
            try:
                return await self._drain_locked()
            finally:
                self._is_syncing = False
                self._pending_count = await self._store.count()
                self._metrics.set_depth(self._pending_count)
                self._publish()

    async def _drain_locked(self) -> DrainResult:
        delivered = 0

        while True:
            entry = await self._store.peek()
            if entry is None:
                self._last_error = None
                self._last_synced_at = datetime.now(UTC)
                return DrainResult(delivered=delivered, remaining=0)

            attempt = entry.attempts + 1
            attempt_start = time.monotonic()
            try:
                await self._deliver(entry)
            except NotAuthenticatedError as e:
                # Not a delivery attempt; wait for a session
                self._last_error = str(e)
                return DrainResult(
                    delivered=delivered,
                    remaining=await self._store.count(),
                    error=str(e),
                    blocked_entry_id=entry.entry_id,
                    needs_session=True,
                )
            except Exception as e:
                elapsed_ms = (time.monotonic() - attempt_start) * 1000
                reason = type(e).__name__
                self._metrics.record_latency(entry.action.value, "error", elapsed_ms)
                self._metrics.inc_error(entry.action.value, reason)
                self._logger.log_attempt(entry, attempt, "error", elapsed_ms, error_reason=reason)

                await self._store.record_failure(entry.entry_id, str(e))
                self._last_error = str(e)
                logger.warning(
                    f"[sync] delivery of {entry.action.value} (seq={entry.seq}) failed "
                    f"on attempt {attempt}: {e}"
                )
                return DrainResult(
                    delivered=delivered,
                    remaining=await self._store.count(),
                    error=str(e),
                    blocked_entry_id=entry.entry_id,
                )

            elapsed_ms = (time.monotonic() - attempt_start) * 1000
            self._metrics.record_latency(entry.action.value, "success", elapsed_ms)
            self._logger.log_attempt(entry, attempt, "success", elapsed_ms)
            await self._store.remove(entry.entry_id)
            delivered += 1

    def start(self) -> None:
        """Start the background worker (idempotent)."""
        if self.is_running:
            return
        self._worker = asyncio.create_task(self._run(), name="sync-queue-worker")
        self._wake.set()

    async def stop(self) -> None:
        """Stop the background worker and wait for it to exit."""
        worker, self._worker = self._worker, None
        if worker is None:
            return
        worker.cancel()
        try:
            await worker
        except asyncio.CancelledError:
            pass

    def wake(self) -> None:
        """Ask the background worker to drain now."""
        self._wake.set()

    async def _run(self) -> None:
        while True:
            await self._wake.wait()
            self._wake.clear()

            try:
                result = await self.drain()
            except Exception as e:
                # Store failure mid-drain; back off and retry like a failed delivery
                logger.error(f"[sync] drain failed: {e}", exc_info=True)
                self._last_error = str(e)
                self._publish()
                result = DrainResult(delivered=0, remaining=self._pending_count, error=str(e))

            if result.ok or result.needs_session:
                # Signed out: idle until the next wake
                self._consecutive_failures = 0
                continue

            self._consecutive_failures += 1
            delay = self._backoff.delay_seconds(self._consecutive_failures)
            logger.info(
                f"[sync] retrying in {delay:.2f}s "
                f"(consecutive failures={self._consecutive_failures})"
            )
            await self._sleep(delay)
            self._wake.set()

    def _publish(self) -> None:
        status = self.status
        for listener in list(self._status_listeners):
            try:
                listener(status)
            except Exception as e:
                logger.error(f"[sync] status listener failed: {e}", exc_info=True)
