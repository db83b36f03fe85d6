"""Unit tests for the sync queue.

Tests cover:
1. Ordered delivery and removal on success
2. Head-of-line blocking on failure (later entries never overtake)
3. Attempt bookkeeping and status reporting
4. Backoff schedule and the background worker
5. Metrics and structured logging wiring
"""

import asyncio
import logging

import pytest
from prometheus_client import REGISTRY

from tripsync.app.db.inmemory import InMemorySyncQueueStore
from tripsync.app.db.repositories import (
    LocalStoreError,
    NotAuthenticatedError,
    RemoteStoreError,
)
from tripsync.app.models.sync import SyncAction, SyncQueueEntry
from tripsync.app.sync.queue import BackoffConfig, SyncQueue
from tripsync.app.utils.logging import StructuredSyncLogger
from tripsync.app.utils.metrics import PrometheusSyncMetrics


class RecordingDelivery:
    """Delivery callable that fails for configured payload names."""

    def __init__(self) -> None:
        self.delivered: list[str] = []
        self.failing: set[str] = set()
        self.calls = 0

    async def __call__(self, entry: SyncQueueEntry) -> None:
        self.calls += 1
        name = entry.payload["name"]
        if name in self.failing:
            raise RemoteStoreError(f"{name} rejected")
        self.delivered.append(name)


async def enqueue_ops(queue: SyncQueue, *names: str, trip_id: str = "trip-1") -> None:
    for name in names:
        await queue.enqueue(SyncAction.update_trip, {"name": name}, trip_id)


@pytest.mark.asyncio
async def test_drain_delivers_in_enqueue_order() -> None:
    delivery = RecordingDelivery()
    queue = SyncQueue(InMemorySyncQueueStore(), delivery)
    await enqueue_ops(queue, "op1", "op2", "op3")

    result = await queue.drain()

    assert result.ok
    assert result.delivered == 3
    assert result.remaining == 0
    assert delivery.delivered == ["op1", "op2", "op3"]
    assert await queue.pending_count() == 0
    assert queue.status.last_synced_at is not None


@pytest.mark.asyncio
async def test_failed_head_blocks_later_entries() -> None:
    """op1 fails, so op2/op3 must wait until op1 succeeds."""
    store = InMemorySyncQueueStore()
    delivery = RecordingDelivery()
    delivery.failing = {"op1"}
    queue = SyncQueue(store, delivery)
    await enqueue_ops(queue, "op1", "op2", "op3")

    first = await queue.drain()
    second = await queue.drain()

    assert not first.ok
    assert first.delivered == 0
    assert first.remaining == 3
    assert delivery.delivered == []

    head = await store.peek()
    assert head.payload["name"] == "op1"
    assert head.attempts == 2
    assert head.last_error == "op1 rejected"
    assert second.blocked_entry_id == head.entry_id

    delivery.failing.clear()
    third = await queue.drain()

    assert third.ok
    assert delivery.delivered == ["op1", "op2", "op3"]


@pytest.mark.asyncio
async def test_failure_midway_keeps_tail_in_order() -> None:
    delivery = RecordingDelivery()
    delivery.failing = {"op2"}
    queue = SyncQueue(InMemorySyncQueueStore(), delivery)
    await enqueue_ops(queue, "op1", "op2", "op3")

    result = await queue.drain()

    assert result.delivered == 1
    assert result.remaining == 2
    assert [e.payload["name"] for e in await queue.list_pending()] == ["op2", "op3"]
    assert queue.status.last_error == "op2 rejected"
    assert queue.status.pending_count == 2


@pytest.mark.asyncio
async def test_missing_session_is_not_counted_as_attempt() -> None:
    store = InMemorySyncQueueStore()

    async def deliver(entry: SyncQueueEntry) -> None:
        raise NotAuthenticatedError("signed out")

    queue = SyncQueue(store, deliver)
    await enqueue_ops(queue, "op1")

    result = await queue.drain()

    assert result.needs_session is True
    assert (await store.peek()).attempts == 0


@pytest.mark.asyncio
async def test_purge_trip_drops_only_that_trip() -> None:
    delivery = RecordingDelivery()
    queue = SyncQueue(InMemorySyncQueueStore(), delivery)
    await enqueue_ops(queue, "a1", trip_id="a")
    await enqueue_ops(queue, "b1", trip_id="b")
    await enqueue_ops(queue, "a2", trip_id="a")

    dropped = await queue.purge_trip("a")

    assert dropped == 2
    assert await queue.has_pending("a") is False
    assert await queue.has_pending("b") is True
    await queue.drain()
    assert delivery.delivered == ["b1"]


@pytest.mark.asyncio
async def test_status_listener_sees_pending_count() -> None:
    queue = SyncQueue(InMemorySyncQueueStore(), RecordingDelivery())
    seen: list[int] = []
    unsubscribe = queue.on_status_change(lambda status: seen.append(status.pending_count))

    await enqueue_ops(queue, "op1", "op2")
    unsubscribe()
    await queue.drain()

    assert seen == [1, 2]


def test_backoff_grows_exponentially_and_caps() -> None:
    backoff = BackoffConfig(base_ms=100, max_ms=1000, jitter_min_ms=0, jitter_max_ms=0)

    delays = [backoff.delay_seconds(n) for n in range(1, 7)]

    assert delays == [0.1, 0.2, 0.4, 0.8, 1.0, 1.0]


def test_backoff_adds_jitter_within_bounds() -> None:
    backoff = BackoffConfig(base_ms=100, max_ms=1000, jitter_min_ms=200, jitter_max_ms=500)
    for _ in range(20):
        assert 0.3 <= backoff.delay_seconds(1) <= 0.6


@pytest.mark.asyncio
async def test_background_worker_retries_until_delivered() -> None:
    delivery = RecordingDelivery()
    delivery.failing = {"op1"}
    sleeps: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)
        if len(sleeps) == 2:
            delivery.failing.clear()
        await asyncio.sleep(0)

    queue = SyncQueue(
        InMemorySyncQueueStore(),
        delivery,
        sleep_fn=fake_sleep,
        backoff=BackoffConfig(base_ms=100, max_ms=1000, jitter_min_ms=0, jitter_max_ms=0),
    )
    await enqueue_ops(queue, "op1", "op2")

    queue.start()
    try:
        for _ in range(100):
            if delivery.delivered == ["op1", "op2"]:
                break
            await asyncio.sleep(0)
    finally:
        await queue.stop()

    assert delivery.delivered == ["op1", "op2"]
    assert sleeps == [0.1, 0.2]
    assert queue.is_running is False


@pytest.mark.asyncio
async def test_worker_drains_on_enqueue() -> None:
    delivery = RecordingDelivery()
    queue = SyncQueue(InMemorySyncQueueStore(), delivery)
    queue.start()
    try:
        await enqueue_ops(queue, "late")
        for _ in range(50):
            if delivery.delivered:
                break
            await asyncio.sleep(0)
    finally:
        await queue.stop()

    assert delivery.delivered == ["late"]


class LockedOnceStore(InMemorySyncQueueStore):
    """Store whose first ``peek`` fails like a busy database."""

    def __init__(self) -> None:
        super().__init__()
        self.peek_failures = 1

    async def peek(self) -> SyncQueueEntry | None:
        if self.peek_failures:
            self.peek_failures -= 1
            raise LocalStoreError("database is locked")
        return await super().peek()


@pytest.mark.asyncio
async def test_worker_survives_store_error_and_backs_off() -> None:
    delivery = RecordingDelivery()
    sleeps: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)
        await asyncio.sleep(0)

    queue = SyncQueue(
        LockedOnceStore(),
        delivery,
        sleep_fn=fake_sleep,
        backoff=BackoffConfig(base_ms=100, max_ms=1000, jitter_min_ms=0, jitter_max_ms=0),
    )
    await enqueue_ops(queue, "op1")

    queue.start()
    try:
        for _ in range(100):
            if delivery.delivered:
                break
            await asyncio.sleep(0)
        assert queue.is_running is True
    finally:
        await queue.stop()

    assert delivery.delivered == ["op1"]
    assert sleeps == [0.1]
    assert queue.status.last_error is None
    assert await queue.pending_count() == 0


@pytest.mark.asyncio
async def test_prometheus_metrics_record_failures() -> None:
    delivery = RecordingDelivery()
    delivery.failing = {"op1"}
    queue = SyncQueue(InMemorySyncQueueStore(), delivery, metrics=PrometheusSyncMetrics())
    await enqueue_ops(queue, "op1")

    before = (
        REGISTRY.get_sample_value(
            "sync_delivery_errors_total",
            {"action": "update_trip", "reason": "RemoteStoreError"},
        )
        or 0.0
    )
    await queue.drain()
    after = REGISTRY.get_sample_value(
        "sync_delivery_errors_total",
        {"action": "update_trip", "reason": "RemoteStoreError"},
    )

    assert after == before + 1
    assert REGISTRY.get_sample_value("sync_queue_depth") == 1.0


@pytest.mark.asyncio
async def test_structured_logger_records_each_attempt(caplog) -> None:
    delivery = RecordingDelivery()
    delivery.failing = {"op1"}
    queue = SyncQueue(InMemorySyncQueueStore(), delivery, logger=StructuredSyncLogger())
    await enqueue_ops(queue, "op1")

    with caplog.at_level(logging.INFO, logger="tripsync.app.utils.logging"):
        await queue.drain()
        delivery.failing.clear()
        await queue.drain()

    records = [r.structured for r in caplog.records if hasattr(r, "structured")]
    assert [(r["attempt"], r["outcome"]) for r in records] == [(1, "error"), (2, "success")]
    assert records[0]["error_reason"] == "RemoteStoreError"
    assert records[1]["trip_id"] == "trip-1"
