"""Delivery of queued operations to the remote store."""

from collections.abc import Callable

from tripsync.app.db.repositories import NotAuthenticatedError, RemoteTripStore
from tripsync.app.models.sync import SyncAction, SyncQueueEntry

OwnerProvider = Callable[[], str | None]


class RemoteDispatcher:
    """Apply a queue entry to the remote store on behalf of the current owner.

    Every itinerary-level action carries the changed top-level trip fields in
    ``payload["updates"]``, so all of them map to a partial remote update.
    """

    def __init__(self, remote: RemoteTripStore, owner_provider: OwnerProvider) -> None:
        self._remote = remote
        self._owner_provider = owner_provider

    async def __call__(self, entry: SyncQueueEntry) -> None:
        owner_id = self._owner_provider()
        if owner_id is None:
            raise NotAuthenticatedError("No signed-in owner for remote delivery")

        trip_id = entry.trip_id or entry.payload.get("trip_id")
        if not trip_id:
            raise ValueError(f"Queue entry {entry.entry_id} has no trip id")

        if entry.action == SyncAction.delete_trip:
            await self._remote.delete(trip_id, owner_id)
            return

        updates = entry.payload.get("updates")
        if not isinstance(updates, dict):
            raise ValueError(f"Queue entry {entry.entry_id} ({entry.action.value}) has no updates")
        await self._remote.update(trip_id, updates, owner_id)
