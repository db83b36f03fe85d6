"""Tests for mapping queue entries onto remote store calls."""

from datetime import UTC, datetime

import pytest

from tripsync.app.db.inmemory import InMemoryRemoteTripStore
from tripsync.app.db.repositories import NotAuthenticatedError
from tripsync.app.models.sync import SyncAction, SyncQueueEntry
from tripsync.app.sync.dispatch import RemoteDispatcher


def entry(action: SyncAction, payload: dict, trip_id: str | None = "t1") -> SyncQueueEntry:
    return SyncQueueEntry(
        entry_id="e1",
        seq=1,
        action=action,
        trip_id=trip_id,
        payload=payload,
        created_at=datetime(2025, 5, 1, tzinfo=UTC),
    )


@pytest.mark.asyncio
async def test_itinerary_actions_become_partial_updates(make_trip) -> None:
    remote = InMemoryRemoteTripStore()
    await remote.create(make_trip("t1"), "owner-1")
    dispatch = RemoteDispatcher(remote, lambda: "owner-1")

    await dispatch(
        entry(SyncAction.reorder_days, {"updates": {"title": "Reordered", "version": 2}})
    )

    [trip] = remote.trips_for("owner-1")
    assert trip.title == "Reordered"
    assert trip.version == 2


@pytest.mark.asyncio
async def test_delete_action_deletes(make_trip) -> None:
    remote = InMemoryRemoteTripStore()
    await remote.create(make_trip("t1"), "owner-1")
    dispatch = RemoteDispatcher(remote, lambda: "owner-1")

    # Falls back to the payload's trip id
    await dispatch(entry(SyncAction.delete_trip, {"trip_id": "t1"}, trip_id=None))

    assert remote.trips_for("owner-1") == []


@pytest.mark.asyncio
async def test_missing_owner_raises_not_authenticated() -> None:
    dispatch = RemoteDispatcher(InMemoryRemoteTripStore(), lambda: None)

    with pytest.raises(NotAuthenticatedError):
        await dispatch(entry(SyncAction.update_trip, {"updates": {}}))


@pytest.mark.asyncio
async def test_entry_without_updates_is_rejected() -> None:
    dispatch = RemoteDispatcher(InMemoryRemoteTripStore(), lambda: "owner-1")

    with pytest.raises(ValueError, match="has no updates"):
        await dispatch(entry(SyncAction.add_activity, {"activity": {}}))
