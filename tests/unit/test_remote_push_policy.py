"""Tests for applying remote trip lists pushed through the subscription."""

from typing import Any

import pytest

from tripsync.app.db.inmemory import InMemoryRemoteTripStore
from tripsync.app.db.repositories import RemoteStoreError
from tripsync.app.engine.trip_engine import TripEngine

OWNER = "owner-1"


class SwitchableRemote(InMemoryRemoteTripStore):
    """Remote whose updates can be switched off and whose error callback is exposed."""

    def __init__(self) -> None:
        super().__init__()
        self.fail_updates = False
        self.on_error = None

    async def update(self, trip_id: str, updates: dict[str, Any], owner_id: str) -> None:
        if self.fail_updates:
            raise RemoteStoreError("timeout")
        await super().update(trip_id, updates, owner_id)

    async def subscribe_to_trips(self, owner_id, on_change, on_error):
        self.on_error = on_error
        return await super().subscribe_to_trips(owner_id, on_change, on_error)


@pytest.fixture
def remote() -> SwitchableRemote:
    return SwitchableRemote()


@pytest.fixture
def synced_engine(local_store, queue_store, remote, settings, id_factory) -> TripEngine:
    return TripEngine(local_store, queue_store, remote, settings=settings, id_factory=id_factory)


@pytest.mark.asyncio
async def test_newer_remote_version_replaces_local(
    synced_engine, local_store, remote, make_trip
) -> None:
    await local_store.create(make_trip("t1"))
    await synced_engine.load_trips()
    await synced_engine.sign_in(OWNER)
    accessed = synced_engine.active_trip.last_accessed_at

    # Another device edits the trip
    await remote.update("t1", {"title": "Lisbon & Sintra", "version": 4}, OWNER)

    local = await local_store.get("t1")
    assert local.title == "Lisbon & Sintra"
    assert local.version == 4
    assert synced_engine.active_trip.title == "Lisbon & Sintra"
    assert synced_engine.active_trip.last_accessed_at == accessed


@pytest.mark.asyncio
async def test_stale_remote_version_is_ignored(
    synced_engine, local_store, remote, make_trip, make_draft
) -> None:
    await local_store.create(make_trip("t1"))
    await synced_engine.load_trips()
    await synced_engine.sign_in(OWNER)
    await synced_engine.add_activity(1, make_draft("Oceanarium"))
    await synced_engine.add_activity(1, make_draft("Tile museum"))

    # A lagging echo carrying an older version
    await remote.update("t1", {"title": "Stale", "version": 2}, OWNER)

    assert synced_engine.active_trip.title == "Summer in Lisbon"
    assert synced_engine.active_trip.version == 3


@pytest.mark.asyncio
async def test_trips_with_pending_entries_are_not_overwritten(
    synced_engine, local_store, queue_store, remote, make_trip, make_draft
) -> None:
    await local_store.create(make_trip("t1"))
    await synced_engine.load_trips()
    await synced_engine.sign_in(OWNER)
    remote.fail_updates = True
    await synced_engine.add_activity(1, make_draft("Queued edit"))
    assert await queue_store.count() == 1

    remote.fail_updates = False
    await remote.update("t1", {"title": "Remote rename", "version": 9}, OWNER)

    local = await local_store.get("t1")
    assert local.title == "Summer in Lisbon"
    assert local.itinerary.days[0].activities[0].description == "Queued edit"


@pytest.mark.asyncio
async def test_unknown_remote_trip_is_inserted(
    synced_engine, local_store, remote, make_trip
) -> None:
    await synced_engine.sign_in(OWNER)

    await remote.create(make_trip("from-phone", is_local_only=False), OWNER)

    stored = await local_store.get("from-phone")
    assert stored is not None
    assert stored.is_local_only is False
    assert [t.id for t in synced_engine.trips] == ["from-phone"]


@pytest.mark.asyncio
async def test_remote_delete_removes_known_trip(
    synced_engine, local_store, remote, make_trip
) -> None:
    await local_store.create(make_trip("t1"))
    await synced_engine.load_trips()
    await synced_engine.sign_in(OWNER)

    await remote.delete("t1", OWNER)

    assert await local_store.get("t1") is None
    assert synced_engine.trips == []
    assert synced_engine.active_trip_id is None


@pytest.mark.asyncio
async def test_synced_trip_never_seen_remotely_is_kept(
    synced_engine, local_store, remote, make_trip
) -> None:
    await local_store.create(make_trip("t1", is_local_only=False))
    await synced_engine.load_trips()
    await synced_engine.sign_in(OWNER)

    await remote.create(make_trip("t2", is_local_only=False), OWNER)

    assert {t.id for t in synced_engine.trips} == {"t1", "t2"}
    assert await local_store.get("t1") is not None


@pytest.mark.asyncio
async def test_subscription_error_is_exposed(synced_engine, remote) -> None:
    await synced_engine.sign_in(OWNER)

    remote.on_error(RemoteStoreError("poll failed"))

    assert synced_engine.error == "poll failed"
    assert synced_engine.snapshot.error == "poll failed"


@pytest.mark.asyncio
async def test_sign_out_stops_remote_pushes(synced_engine, remote, make_trip) -> None:
    await synced_engine.sign_in(OWNER)
    synced_engine.sign_out()

    await remote.create(make_trip("late", is_local_only=False), OWNER)

    assert synced_engine.trips == []
    assert synced_engine.snapshot.is_signed_in is False
