"""In-memory implementations of repository interfaces."""

import logging
import uuid
from datetime import UTC, datetime
from typing import Any

from tripsync.app.db.repositories import (
    ErrorListener,
    LocalStoreError,
    RemoteStoreError,
    TripNotFoundError,
    TripsListener,
    Unsubscribe,
)
from tripsync.app.models.sync import SyncAction, SyncQueueEntry
from tripsync.app.models.trip import Trip, apply_trip_updates, matches_query

logger = logging.getLogger(__name__)


class InMemoryLocalTripStore:
    """In-memory implementation of LocalTripStore."""

    def __init__(self) -> None:
        self._trips: dict[str, Trip] = {}

    async def create(self, trip: Trip) -> None:
        """Insert a new trip."""
        if trip.id in self._trips:
            raise LocalStoreError(f"Trip {trip.id} already exists")
        self._trips[trip.id] = trip.model_copy(deep=True)

    async def update(self, trip_id: str, updates: dict[str, Any]) -> Trip:
        """Merge partial fields into a stored trip."""
        existing = self._trips.get(trip_id)
        if existing is None:
            raise TripNotFoundError(f"Trip {trip_id} not found")

        merged = apply_trip_updates(existing, updates)
        self._trips[trip_id] = merged
        return merged.model_copy(deep=True)

    async def upsert(self, trip: Trip) -> None:
        """Insert or fully replace a trip."""
        self._trips[trip.id] = trip.model_copy(deep=True)

    async def delete(self, trip_id: str) -> None:
        """Delete a trip."""
        self._trips.pop(trip_id, None)

    async def get(self, trip_id: str) -> Trip | None:
        """Get trip by ID."""
        trip = self._trips.get(trip_id)
        return trip.model_copy(deep=True) if trip else None

    async def get_all(self) -> list[Trip]:
        """All stored trips, oldest first."""
        trips = sorted(self._trips.values(), key=lambda t: t.created_at)
        return [t.model_copy(deep=True) for t in trips]

    async def get_recent(self, limit: int = 10) -> list[Trip]:
        """Trips ordered by last access, most recent first."""
        trips = sorted(self._trips.values(), key=lambda t: t.last_accessed_at, reverse=True)
        return [t.model_copy(deep=True) for t in trips[:limit]]

    async def get_local_only(self) -> list[Trip]:
        """Trips never written to the remote store."""
        return [t for t in await self.get_all() if t.is_local_only]

    async def mark_as_synced(self, trip_id: str) -> Trip:
        """Clear the local-only flag."""
        return await self.update(trip_id, {"is_local_only": False})

    async def touch(self, trip_id: str) -> Trip:
        """Update the last-accessed timestamp."""
        return await self.update(trip_id, {"last_accessed_at": datetime.now(UTC)})

    async def search(self, query: str) -> list[Trip]:
        """Case-insensitive match on title and destination."""
        return [t for t in await self.get_all() if matches_query(t, query)]


class InMemorySyncQueueStore:
    """In-memory implementation of SyncQueueStore."""

    def __init__(self) -> None:
        self._entries: list[SyncQueueEntry] = []
        self._next_seq = 1

    async def append(
        self, action: SyncAction, payload: dict[str, Any], trip_id: str | None
    ) -> SyncQueueEntry:
        """Append an entry."""
        entry = SyncQueueEntry(
            entry_id=uuid.uuid4().hex,
            seq=self._next_seq,
            action=action,
            trip_id=trip_id,
            payload=payload,
            created_at=datetime.now(UTC),
        )
        self._next_seq += 1
        self._entries.append(entry)
        return entry

    async def peek(self) -> SyncQueueEntry | None:
        """Oldest entry."""
        return self._entries[0] if self._entries else None

    async def list_pending(self) -> list[SyncQueueEntry]:
        """All entries in delivery order."""
        return list(self._entries)

    async def remove(self, entry_id: str) -> None:
        """Drop an acknowledged entry."""
        self._entries = [e for e in self._entries if e.entry_id != entry_id]

    async def record_failure(self, entry_id: str, error: str) -> SyncQueueEntry | None:
        """Increment attempts and store the error."""
        for index, entry in enumerate(self._entries):
            if entry.entry_id == entry_id:
                updated = entry.model_copy(
                    update={
                        "attempts": entry.attempts + 1,
                        "last_attempt_at": datetime.now(UTC),
                        "last_error": error,
                    }
                )
                self._entries[index] = updated
                return updated
        return None

    async def count(self) -> int:
        """Number of pending entries."""
        return len(self._entries)

    async def has_pending(self, trip_id: str | None = None) -> bool:
        """Whether any entry (for ``trip_id`` if given) is pending."""
        if trip_id is None:
            return bool(self._entries)
        return any(e.trip_id == trip_id for e in self._entries)

    async def purge_trip(self, trip_id: str) -> int:
        """Drop every entry for a trip."""
        before = len(self._entries)
        self._entries = [e for e in self._entries if e.trip_id != trip_id]
        return before - len(self._entries)


class InMemoryRemoteTripStore:
    """In-memory implementation of RemoteTripStore.

    Subscribers are notified synchronously (awaited) after every write, which
    keeps tests deterministic.
    """

    def __init__(self) -> None:
        # trip_id -> (owner_id, JSON document)
        self._docs: dict[str, tuple[str, dict[str, Any]]] = {}
        self._subscribers: dict[int, tuple[str, TripsListener, ErrorListener]] = {}
        self._next_token = 0

    def trips_for(self, owner_id: str) -> list[Trip]:
        """Current trips owned by ``owner_id``."""
        return [
            Trip.model_validate(doc)
            for owner, doc in self._docs.values()
            if owner == owner_id
        ]

    def _owned_doc(self, trip_id: str, owner_id: str) -> dict[str, Any]:
        stored = self._docs.get(trip_id)
        if stored is None or stored[0] != owner_id:
            raise RemoteStoreError(f"Trip {trip_id} not found or access denied")
        return stored[1]

    async def create(self, trip: Trip, owner_id: str) -> None:
        """Create or overwrite a trip under ``owner_id``."""
        stored = self._docs.get(trip.id)
        if stored is not None and stored[0] != owner_id:
            raise RemoteStoreError(f"Trip {trip.id} not found or access denied")

        doc = trip.model_dump(mode="json")
        doc["is_local_only"] = False
        self._docs[trip.id] = (owner_id, doc)
        await self._notify(owner_id)

    async def update(self, trip_id: str, updates: dict[str, Any], owner_id: str) -> None:
        """Merge JSON-ready partial fields into an owned trip."""
        doc = self._owned_doc(trip_id, owner_id)
        doc.update(updates)
        doc["is_local_only"] = False
        await self._notify(owner_id)

    async def delete(self, trip_id: str, owner_id: str) -> None:
        """Delete an owned trip."""
        self._owned_doc(trip_id, owner_id)
        del self._docs[trip_id]
        await self._notify(owner_id)

    async def subscribe_to_trips(
        self, owner_id: str, on_change: TripsListener, on_error: ErrorListener
    ) -> Unsubscribe:
        """Register a listener and push the current list immediately."""
        token = self._next_token
        self._next_token += 1
        self._subscribers[token] = (owner_id, on_change, on_error)

        await on_change(self.trips_for(owner_id))

        def unsubscribe() -> None:
            self._subscribers.pop(token, None)

        return unsubscribe

    async def _notify(self, owner_id: str) -> None:
        for owner, on_change, on_error in list(self._subscribers.values()):
            if owner != owner_id:
                continue
            try:
                await on_change(self.trips_for(owner_id))
            except Exception as e:
                logger.error(f"[remote] subscriber failed: {e}", exc_info=True)
                on_error(e)
