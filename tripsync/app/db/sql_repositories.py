"""SQL implementations of repository interfaces."""

import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tripsync.app.db.models import SyncQueueRow, TripRow
from tripsync.app.db.repositories import LocalStoreError, TripNotFoundError
from tripsync.app.models.sync import SyncAction, SyncQueueEntry
from tripsync.app.models.trip import Trip, apply_trip_updates, matches_query


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo on the way back
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


@asynccontextmanager
async def _transaction(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    """Session with a committed transaction; driver errors become LocalStoreError."""
    try:
        async with session_factory() as session, session.begin():
            yield session
    except SQLAlchemyError as e:
        raise LocalStoreError(f"Local store failure: {e}") from e


def _write_row(row: TripRow, trip: Trip) -> None:
    row.title = trip.title
    row.status = trip.status.value
    row.is_local_only = trip.is_local_only
    row.version = trip.version
    row.created_at = trip.created_at
    row.last_accessed_at = trip.last_accessed_at
    row.data = trip.model_dump(mode="json")


def _to_trip(row: TripRow) -> Trip:
    return Trip.model_validate(row.data)


class SqlLocalTripStore:
    """SQL implementation of LocalTripStore."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create(self, trip: Trip) -> None:
        """Insert a new trip."""
        async with _transaction(self._session_factory) as session:
            if await session.get(TripRow, trip.id) is not None:
                raise LocalStoreError(f"Trip {trip.id} already exists")
            row = TripRow(trip_id=trip.id)
            _write_row(row, trip)
            session.add(row)

    async def update(self, trip_id: str, updates: dict[str, Any]) -> Trip:
        """Merge partial fields into a stored trip."""
        async with _transaction(self._session_factory) as session:
            row = await session.get(TripRow, trip_id)
            if row is None:
                raise TripNotFoundError(f"Trip {trip_id} not found")

            merged = apply_trip_updates(_to_trip(row), updates)
            _write_row(row, merged)

        return merged

    async def upsert(self, trip: Trip) -> None:
        """Insert or fully replace a trip."""
        async with _transaction(self._session_factory) as session:
            row = await session.get(TripRow, trip.id)
            if row is None:
                row = TripRow(trip_id=trip.id)
                session.add(row)
            _write_row(row, trip)

    async def delete(self, trip_id: str) -> None:
        """Delete a trip."""
        async with _transaction(self._session_factory) as session:
            await session.execute(delete(TripRow).where(TripRow.trip_id == trip_id))

    async def get(self, trip_id: str) -> Trip | None:
        """Get trip by ID."""
        async with _transaction(self._session_factory) as session:
            row = await session.get(TripRow, trip_id)
            return _to_trip(row) if row else None

    async def get_all(self) -> list[Trip]:
        """All stored trips, oldest first."""
        async with _transaction(self._session_factory) as session:
            result = await session.scalars(select(TripRow).order_by(TripRow.created_at))
            return [_to_trip(row) for row in result]

    async def get_recent(self, limit: int = 10) -> list[Trip]:
        """Trips ordered by last access, most recent first."""
        async with _transaction(self._session_factory) as session:
            result = await session.scalars(
                select(TripRow).order_by(TripRow.last_accessed_at.desc()).limit(limit)
            )
            return [_to_trip(row) for row in result]

    async def get_local_only(self) -> list[Trip]:
        """Trips never written to the remote store."""
        async with _transaction(self._session_factory) as session:
            result = await session.scalars(
                select(TripRow)
                .where(TripRow.is_local_only.is_(True))
                .order_by(TripRow.created_at)
            )
            return [_to_trip(row) for row in result]

    async def mark_as_synced(self, trip_id: str) -> Trip:
        """Clear the local-only flag."""
        return await self.update(trip_id, {"is_local_only": False})

    async def touch(self, trip_id: str) -> Trip:
        """Update the last-accessed timestamp."""
        return await self.update(trip_id, {"last_accessed_at": datetime.now(UTC)})

    async def search(self, query: str) -> list[Trip]:
        """Case-insensitive match on title and destination."""
        # Destination lives inside the JSON document
        return [t for t in await self.get_all() if matches_query(t, query)]


def _to_entry(row: SyncQueueRow) -> SyncQueueEntry:
    return SyncQueueEntry(
        entry_id=row.entry_id,
        seq=row.seq,
        action=SyncAction(row.action),
        trip_id=row.trip_id,
        payload=row.payload,
        created_at=_as_utc(row.created_at),
        attempts=row.attempts,
        last_attempt_at=_as_utc(row.last_attempt_at),
        last_error=row.last_error,
    )


class SqlSyncQueueStore:
    """SQL implementation of SyncQueueStore.

    Delivery order is the autoincrement ``seq`` column.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def append(
        self, action: SyncAction, payload: dict[str, Any], trip_id: str | None
    ) -> SyncQueueEntry:
        """Append an entry."""
        async with _transaction(self._session_factory) as session:
            row = SyncQueueRow(
                entry_id=uuid.uuid4().hex,
                action=action.value,
                trip_id=trip_id,
                payload=payload,
                attempts=0,
                created_at=datetime.now(UTC),
            )
            session.add(row)
            await session.flush()
            return _to_entry(row)

    async def peek(self) -> SyncQueueEntry | None:
        """Oldest entry."""
        async with _transaction(self._session_factory) as session:
            row = await session.scalar(select(SyncQueueRow).order_by(SyncQueueRow.seq).limit(1))
            return _to_entry(row) if row else None

    async def list_pending(self) -> list[SyncQueueEntry]:
        """All entries in delivery order."""
        async with _transaction(self._session_factory) as session:
            result = await session.scalars(select(SyncQueueRow).order_by(SyncQueueRow.seq))
            return [_to_entry(row) for row in result]

    async def remove(self, entry_id: str) -> None:
        """Drop an acknowledged entry."""
        async with _transaction(self._session_factory) as session:
            await session.execute(delete(SyncQueueRow).where(SyncQueueRow.entry_id == entry_id))

    async def record_failure(self, entry_id: str, error: str) -> SyncQueueEntry | None:
        """Increment attempts and store the error."""
        async with _transaction(self._session_factory) as session:
            row = await session.scalar(
                select(SyncQueueRow).where(SyncQueueRow.entry_id == entry_id)
            )
            if row is None:
                return None

            row.attempts += 1
            row.last_attempt_at = datetime.now(UTC)
            row.last_error = error
            await session.flush()
            return _to_entry(row)

    async def count(self) -> int:
        """Number of pending entries."""
        async with _transaction(self._session_factory) as session:
            return await session.scalar(select(func.count()).select_from(SyncQueueRow)) or 0

    async def has_pending(self, trip_id: str | None = None) -> bool:
        """Whether any entry (for ``trip_id`` if given) is pending."""
        stmt = select(SyncQueueRow.seq).limit(1)
        if trip_id is not None:
            stmt = stmt.where(SyncQueueRow.trip_id == trip_id)

        async with _transaction(self._session_factory) as session:
            return await session.scalar(stmt) is not None

    async def purge_trip(self, trip_id: str) -> int:
        """Drop every entry for a trip."""
        async with _transaction(self._session_factory) as session:
            result = await session.execute(
                delete(SyncQueueRow).where(SyncQueueRow.trip_id == trip_id)
            )
            return result.rowcount or 0
