"""Repository protocol interfaces for trip persistence and sync."""

from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from tripsync.app.models.sync import SyncAction, SyncQueueEntry
from tripsync.app.models.trip import Trip

TripsListener = Callable[[list[Trip]], Awaitable[None]]
ErrorListener = Callable[[Exception], None]
Unsubscribe = Callable[[], None]


class LocalStoreError(Exception):
    """Local persistence failed; the operation was not applied."""

    pass


class TripNotFoundError(LocalStoreError):
    """Trip id is not present in the local store."""

    pass


class RemoteStoreError(Exception):
    """Remote write failed (network, permission, missing trip)."""

    pass


class NotAuthenticatedError(RemoteStoreError):
    """No owner session is available for a remote write."""

    pass


class LocalTripStore(Protocol):
    """Durable client-side trip storage keyed by trip id."""

    async def create(self, trip: Trip) -> None:
        """Insert a new trip.

        Raises:
            LocalStoreError: If a trip with the same id exists or I/O fails
        """
        ...

    async def update(self, trip_id: str, updates: dict[str, Any]) -> Trip:
        """Merge partial fields into a stored trip.

        Args:
            trip_id: Trip ID
            updates: Field name -> new value (model objects or plain values)

        Returns:
            The merged trip as stored

        Raises:
            TripNotFoundError: If the trip does not exist
            LocalStoreError: On I/O failure
        """
        ...

    async def upsert(self, trip: Trip) -> None:
        """Insert or fully replace a trip."""
        ...

    async def delete(self, trip_id: str) -> None:
        """Delete a trip (no-op if absent)."""
        ...

    async def get(self, trip_id: str) -> Trip | None:
        """Get trip by ID."""
        ...

    async def get_all(self) -> list[Trip]:
        """All stored trips, oldest first."""
        ...

    async def get_recent(self, limit: int = 10) -> list[Trip]:
        """Trips ordered by last access, most recent first."""
        ...

    async def get_local_only(self) -> list[Trip]:
        """Trips never written to the remote store."""
        ...

    async def mark_as_synced(self, trip_id: str) -> Trip:
        """Clear the local-only flag."""
        ...

    async def touch(self, trip_id: str) -> Trip:
        """Update the last-accessed timestamp."""
        ...

    async def search(self, query: str) -> list[Trip]:
        """Case-insensitive match on title and destination."""
        ...


class RemoteTripStore(Protocol):
    """Cloud trip storage keyed by owning user."""

    async def create(self, trip: Trip, owner_id: str) -> None:
        """Create or overwrite a trip under ``owner_id`` (upsert by trip id)."""
        ...

    async def update(self, trip_id: str, updates: dict[str, Any], owner_id: str) -> None:
        """Merge JSON-ready partial fields into an owned trip.

        Raises:
            RemoteStoreError: If the trip is missing, owned by someone else, or
                the write fails
        """
        ...

    async def delete(self, trip_id: str, owner_id: str) -> None:
        """Delete an owned trip."""
        ...

    async def subscribe_to_trips(
        self, owner_id: str, on_change: TripsListener, on_error: ErrorListener
    ) -> Unsubscribe:
        """Push the owner's full trip list now and after every change.

        Returns:
            Callable that stops delivery
        """
        ...


class SyncQueueStore(Protocol):
    """Durable FIFO storage for sync queue entries."""

    async def append(
        self, action: SyncAction, payload: dict[str, Any], trip_id: str | None
    ) -> SyncQueueEntry:
        """Append an entry; returns once it is durably stored."""
        ...

    async def peek(self) -> SyncQueueEntry | None:
        """Oldest entry, or None when empty."""
        ...

    async def list_pending(self) -> list[SyncQueueEntry]:
        """All entries in delivery order."""
        ...

    async def remove(self, entry_id: str) -> None:
        """Drop an acknowledged entry (no-op if already gone)."""
        ...

    async def record_failure(self, entry_id: str, error: str) -> SyncQueueEntry | None:
        """Increment attempts and store the error; the entry stays in place."""
        ...

    async def count(self) -> int:
        """Number of pending entries."""
        ...

    async def has_pending(self, trip_id: str | None = None) -> bool:
        """Whether any entry (for ``trip_id`` if given) is pending."""
        ...

    async def purge_trip(self, trip_id: str) -> int:
        """Drop every entry for a trip; returns how many were dropped."""
        ...
