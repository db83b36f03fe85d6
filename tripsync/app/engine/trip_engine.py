"""Trip engine - owns trip state and routes every edit through local and remote stores.

Write path for every mutating operation:

1. Compute the next trip value with the pure planner utilities.
2. Persist it to the local store. A LocalStoreError propagates and the
   in-memory state is left untouched.
3. Replace the trip in memory and notify observers.
4. Local-only trips stop here; guest migration uploads them wholesale. For
   synced trips, write straight to the remote store when a session exists and
   the sync queue is empty, otherwise (or when that write fails) enqueue the
   operation. Remote failures never roll back the local write.
"""

import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, date, datetime
from typing import Any

from pydantic import TypeAdapter

from tripsync.app.adapters.geocoding import Geocoder
from tripsync.app.config import Settings, get_settings
from tripsync.app.db.repositories import (
    LocalTripStore,
    NotAuthenticatedError,
    RemoteStoreError,
    RemoteTripStore,
    SyncQueueStore,
    TripNotFoundError,
    Unsubscribe,
)
from tripsync.app.engine.state import EngineSnapshot, NoActiveTripError
from tripsync.app.models.common import (
    ActivityHandling,
    ActivityType,
    DayEditAction,
    Geo,
    LocationData,
    TripStatus,
)
from tripsync.app.models.itinerary import (
    Activity,
    ActivityDetails,
    ActivityDraft,
    Day,
    DayDraft,
    InterDayTravel,
    Itinerary,
)
from tripsync.app.models.sync import MigrationReport, SyncAction, SyncQueueEntry, SyncStatus
from tripsync.app.models.trip import CreateTripInput, Destination, Trip, TripSummary
from tripsync.app.planner import mutations
from tripsync.app.planner.history import UndoHistory
from tripsync.app.planner.mutations import DaysPosition, RemoveDayResult
from tripsync.app.sync.dispatch import RemoteDispatcher
from tripsync.app.sync.migration import migrate_guest_trips
from tripsync.app.sync.queue import BackoffConfig, DrainResult, SyncLogger, SyncMetrics, SyncQueue
from tripsync.app.utils.ids import IdFactory, new_id

logger = logging.getLogger(__name__)

EngineListener = Callable[[EngineSnapshot], None]

_date_adapter = TypeAdapter(date)

# Fields callers may not set through update_trip
_PROTECTED_FIELDS = {"id", "created_at", "is_local_only", "version"}


def _require_days(days: list[Day]) -> None:
    if not days:
        raise ValueError("An itinerary needs at least one day")


async def _offline_delivery(entry: SyncQueueEntry) -> None:
    raise NotAuthenticatedError("No remote store configured")


class TripEngine:
    """Stateful coordinator for trips, planner edits and sync.

    Callers must await each operation before issuing the next edit against the
    same trip; the engine does not lock.
    """

    def __init__(
        self,
        local: LocalTripStore,
        queue_store: SyncQueueStore,
        remote: RemoteTripStore | None = None,
        geocoder: Geocoder | None = None,
        settings: Settings | None = None,
        id_factory: IdFactory = new_id,
        metrics: SyncMetrics | None = None,
        sync_logger: SyncLogger | None = None,
        sleep_fn: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        """Initialize engine.

        Args:
            local: Durable local trip store
            queue_store: Durable storage backing the sync queue
            remote: Remote trip store (None = offline only)
            geocoder: Place-name resolver for add_day_with_location
            settings: Settings (defaults to get_settings())
            id_factory: Id generator for trips, days and activities
            metrics: Sync metrics recorder (optional, defaults to no-op)
            sync_logger: Structured delivery logger (optional, defaults to no-op)
            sleep_fn: Injectable sleep used by the queue's retry backoff
        """
        self._settings = settings or get_settings()
        self._local = local
        self._remote = remote
        self._geocoder = geocoder
        self._new_id = id_factory

        deliver = (
            RemoteDispatcher(remote, lambda: self._owner_id) if remote else _offline_delivery
        )
        self._queue = SyncQueue(
            queue_store,
            deliver,
            metrics=metrics,
            logger=sync_logger,
            sleep_fn=sleep_fn,
            backoff=BackoffConfig(
                base_ms=self._settings.sync_backoff_base_ms,
                max_ms=self._settings.sync_backoff_max_ms,
                jitter_min_ms=self._settings.sync_retry_jitter_min_ms,
                jitter_max_ms=self._settings.sync_retry_jitter_max_ms,
            ),
        )
        self._queue.on_status_change(lambda _status: self._notify())

        self._history = UndoHistory(max_size=self._settings.undo_max_size)

        self._trips: list[Trip] = []
        self._active_trip_id: str | None = None
        self._is_loading = False
        self._error: str | None = None

        self._owner_id: str | None = None
        self._unsubscribe_remote: Unsubscribe | None = None
        # Trips seen in a remote list since sign-in; only these can be deleted by a push
        self._remote_known: set[str] = set()
        # Trips with a local write awaiting its remote step
        self._in_flight: set[str] = set()

        self._listeners: list[EngineListener] = []

    # ------------------------------------------------------------------
    # State and observers
    # ------------------------------------------------------------------

    @property
    def snapshot(self) -> EngineSnapshot:
        return EngineSnapshot(
            trips=tuple(self._trips),
            active_trip_id=self._active_trip_id,
            is_loading=self._is_loading,
            error=self._error,
            owner_id=self._owner_id,
            sync_status=self._queue.status,
            can_undo=self._history.can_undo,
            can_redo=self._history.can_redo,
        )

    @property
    def trips(self) -> list[Trip]:
        return list(self._trips)

    @property
    def active_trip(self) -> Trip | None:
        return self._find(self._active_trip_id) if self._active_trip_id else None

    @property
    def active_trip_id(self) -> str | None:
        return self._active_trip_id

    @property
    def is_loading(self) -> bool:
        return self._is_loading

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def owner_id(self) -> str | None:
        return self._owner_id

    @property
    def sync_status(self) -> SyncStatus:
        return self._queue.status

    @property
    def sync_queue(self) -> SyncQueue:
        return self._queue

    @property
    def history(self) -> UndoHistory:
        return self._history

    def subscribe(self, listener: EngineListener) -> Callable[[], None]:
        """Register an observer; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(f"[engine] listener failed: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Load the pending count and start the background sync worker."""
        await self._queue.refresh()
        self._queue.start()

    async def close(self) -> None:
        """Stop background work and drop the remote subscription."""
        await self._queue.stop()
        self._drop_subscription()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _find(self, trip_id: str) -> Trip | None:
        for trip in self._trips:
            if trip.id == trip_id:
                return trip
        return None

    def _require_trip(self, trip_id: str) -> Trip:
        trip = self._find(trip_id)
        if trip is None:
            raise TripNotFoundError(f"Trip {trip_id} not found")
        return trip

    def _require_active(self) -> Trip:
        trip = self.active_trip
        if trip is None:
            raise NoActiveTripError("No active trip selected")
        return trip

    def _replace_in_memory(self, trip: Trip) -> None:
        for index, existing in enumerate(self._trips):
            if existing.id == trip.id:
                self._trips[index] = trip
                return
        self._trips.append(trip)

    def _remove_from_memory(self, trip_id: str) -> None:
        self._trips = [t for t in self._trips if t.id != trip_id]
        if self._active_trip_id == trip_id:
            self._active_trip_id = self._trips[0].id if self._trips else None
            self._history.clear()

    def _days_update(self, trip: Trip, days: list[Day]) -> dict[str, Any]:
        return {
            "itinerary": trip.itinerary.model_copy(update={"days": days}),
            "end_date": mutations.end_date_for(days, trip.start_date),
        }

    async def _commit(
        self,
        trip: Trip,
        updates: dict[str, Any],
        action: SyncAction,
        details: dict[str, Any] | None = None,
    ) -> Trip:
        """Persist ``updates`` locally, publish, then push or enqueue them."""
        updates = {**updates, "version": trip.version + 1}

        self._in_flight.add(trip.id)
        try:
            stored = await self._local.update(trip.id, updates)
            self._replace_in_memory(stored)
            self._notify()

            if not stored.is_local_only:
                fields = set(updates) | {"updated_at"}
                payload = {
                    "trip_id": stored.id,
                    "updates": stored.model_dump(mode="json", include=fields),
                    **(details or {}),
                }
                await self._push(stored.id, action, payload)
        finally:
            self._in_flight.discard(trip.id)

        return stored

    async def _push(self, trip_id: str, action: SyncAction, payload: dict[str, Any]) -> None:
        """Write through to the remote store, or enqueue."""
        if self._remote and self._owner_id and not await self._queue.has_pending():
            try:
                if action == SyncAction.delete_trip:
                    await self._remote.delete(trip_id, self._owner_id)
                else:
                    await self._remote.update(trip_id, payload["updates"], self._owner_id)
                return
            except RemoteStoreError as e:
                logger.warning(
                    f"[engine] remote {action.value} for trip {trip_id} failed, queueing: {e}"
                )

        await self._queue.enqueue(action, payload, trip_id)

    async def _upload_new_trip(self, trip: Trip) -> Trip:
        """Create a fresh trip remotely when signed in; stays local-only otherwise."""
        if not (self._remote and self._owner_id):
            return trip

        self._in_flight.add(trip.id)
        try:
            await self._remote.create(trip, self._owner_id)
            synced = await self._local.mark_as_synced(trip.id)
        except RemoteStoreError as e:
            # Next migration pass retries it
            logger.warning(f"[engine] remote create for trip {trip.id} failed: {e}")
            return trip
        finally:
            self._in_flight.discard(trip.id)

        self._replace_in_memory(synced)
        self._notify()
        return synced

    async def _commit_days(
        self,
        trip: Trip,
        days: list[Day],
        action: SyncAction,
        details: dict[str, Any],
        snapshot_label: str | None = None,
    ) -> Trip:
        previous_days = trip.itinerary.days
        stored = await self._commit(trip, self._days_update(trip, days), action, details)
        if snapshot_label:
            self._history.push_snapshot(snapshot_label, previous_days)
            self._notify()
        return stored

    # ------------------------------------------------------------------
    # Loading and selection
    # ------------------------------------------------------------------

    async def load_trips(self) -> list[Trip]:
        """Load every trip from the local store and restore the active trip."""
        self._is_loading = True
        self._error = None
        self._notify()

        try:
            trips = await self._local.get_all()
            active_id = self._active_trip_id
            if active_id is None or not any(t.id == active_id for t in trips):
                recent = await self._local.get_recent(1)
                active_id = recent[0].id if recent else None
        except Exception as e:
            self._error = str(e) or "Failed to load trips"
            logger.error(f"[engine] load_trips failed: {e}")
            raise
        finally:
            self._is_loading = False

        if active_id != self._active_trip_id:
            self._history.clear()
        self._trips = trips
        self._active_trip_id = active_id
        self._notify()
        return list(trips)

    async def set_active_trip(self, trip_id: str) -> Trip:
        """Switch the active trip and touch its last-accessed timestamp."""
        self._require_trip(trip_id)
        touched = await self._local.touch(trip_id)
        self._replace_in_memory(touched)

        if self._active_trip_id != trip_id:
            self._history.clear()
        self._active_trip_id = trip_id
        self._notify()
        return touched

    def get_trip_summaries(self) -> list[TripSummary]:
        """List-screen projection of every trip."""
        return [
            TripSummary(
                id=trip.id,
                title=trip.title,
                destination=trip.destination.name,
                cover_image_url=trip.cover_image_url,
                start_date=trip.start_date,
                end_date=trip.end_date,
                status=trip.status,
                days_count=len(trip.itinerary.days),
                activities_count=mutations.count_activities(trip.itinerary.days),
                is_local_only=trip.is_local_only,
            )
            for trip in self._trips
        ]

    def get_active_trip_days(self) -> list[Day]:
        """Days of the active trip, or an empty list."""
        trip = self.active_trip
        return list(trip.itinerary.days) if trip else []

    async def search_trips(self, query: str) -> list[Trip]:
        """Search the local store by title or destination."""
        return await self._local.search(query)

    # ------------------------------------------------------------------
    # Trip-level operations
    # ------------------------------------------------------------------

    async def create_trip(self, data: CreateTripInput) -> Trip:
        """Create a trip with one empty day per date and make it active."""
        now = datetime.now(UTC)
        trip = Trip(
            id=self._new_id(),
            title=data.title,
            start_date=data.start_date,
            end_date=data.end_date,
            timezone=data.timezone or self._settings.default_timezone,
            destination=Destination(name=data.destination, coordinates=data.destination_coordinates),
            itinerary=Itinerary(title=data.title),
            created_at=now,
            updated_at=now,
            last_accessed_at=now,
            default_currency=data.default_currency or self._settings.default_currency,
        )
        days = [
            Day(id=self._new_id(), day_number=n, date=trip.day_date(n))
            for n in range(1, trip.span_days() + 1)
        ]
        itinerary = trip.itinerary.model_copy(update={"days": days})
        trip = trip.model_copy(update={"itinerary": itinerary})

        await self._local.create(trip)
        self._trips.append(trip)
        self._active_trip_id = trip.id
        self._history.clear()
        self._notify()
        logger.info(f"[engine] created trip {trip.id} ({len(days)} days)")

        return await self._upload_new_trip(trip)

    async def update_trip(self, trip_id: str, updates: dict[str, Any]) -> Trip:
        """Apply metadata and/or itinerary updates to a trip.

        Changing ``start_date`` redates every day. ``end_date`` always follows
        the last day; an explicit conflicting value raises ValueError.

        Raises:
            TripNotFoundError: If the trip is unknown
            ValueError: On protected or unknown fields, inconsistent dates or an
                itinerary without days
        """
        trip = self._require_trip(trip_id)

        protected = _PROTECTED_FIELDS & set(updates)
        if protected:
            raise ValueError(f"Fields cannot be updated directly: {sorted(protected)}")

        updates = dict(updates)
        if {"start_date", "end_date", "itinerary"} & set(updates):
            start = _date_adapter.validate_python(updates.get("start_date", trip.start_date))
            itinerary = Itinerary.model_validate(updates.get("itinerary", trip.itinerary))

            _require_days(itinerary.days)
            days = mutations.normalize_days(itinerary.days, start)
            derived_end = mutations.end_date_for(days, start)
            if "end_date" in updates:
                requested_end = _date_adapter.validate_python(updates["end_date"])
                if requested_end != derived_end:
                    raise ValueError(
                        f"end_date {requested_end} does not match the itinerary "
                        f"(last day is {derived_end})"
                    )
            updates["itinerary"] = itinerary.model_copy(update={"days": days})
            updates["end_date"] = derived_end

        return await self._commit(trip, updates, SyncAction.update_trip)

    async def delete_trip(self, trip_id: str) -> None:
        """Delete a trip locally and remotely, dropping its queued entries."""
        trip = self._require_trip(trip_id)

        await self._local.delete(trip_id)
        self._remove_from_memory(trip_id)
        self._remote_known.discard(trip_id)
        self._notify()
        logger.info(f"[engine] deleted trip {trip_id}")

        await self._queue.purge_trip(trip_id)
        if not trip.is_local_only:
            await self._push(trip_id, SyncAction.delete_trip, {"trip_id": trip_id})

    async def archive_trip(self, trip_id: str) -> Trip:
        return await self.update_trip(trip_id, {"status": TripStatus.archived})

    async def unarchive_trip(self, trip_id: str) -> Trip:
        return await self.update_trip(trip_id, {"status": TripStatus.completed})

    async def duplicate_trip(self, trip_id: str) -> Trip:
        """Copy a trip with fresh ids for the trip, its days and activities."""
        source = self._require_trip(trip_id)
        now = datetime.now(UTC)

        days = [
            day.model_copy(
                update={
                    "id": self._new_id(),
                    "activities": [
                        a.model_copy(update={"id": self._new_id()}) for a in day.activities
                    ],
                },
                deep=True,
            )
            for day in source.itinerary.days
        ]
        copy = source.model_copy(
            update={
                "id": self._new_id(),
                "title": f"{source.title} (Copy)",
                "status": TripStatus.planning,
                "itinerary": Itinerary(title=f"{source.itinerary.title} (Copy)", days=days),
                "created_at": now,
                "updated_at": now,
                "last_accessed_at": now,
                "is_local_only": True,
                "version": 1,
            },
            deep=True,
        )

        await self._local.create(copy)
        self._trips.append(copy)
        self._notify()
        logger.info(f"[engine] duplicated trip {trip_id} as {copy.id}")

        return await self._upload_new_trip(copy)

    # ------------------------------------------------------------------
    # Activity and itinerary operations on the active trip
    # ------------------------------------------------------------------

    async def add_activity(self, day_number: int, draft: ActivityDraft) -> Activity | None:
        """Append an activity to the day with ``day_number``; None if no such day."""
        trip = self._require_active()
        days = list(trip.itinerary.days)
        index = next((i for i, d in enumerate(days) if d.day_number == day_number), None)
        if index is None:
            logger.warning(f"[engine] add_activity: day {day_number} not found")
            return None

        activity = mutations.activity_from_draft(draft, self._new_id)
        days[index] = days[index].model_copy(
            update={"activities": [*days[index].activities, activity]}
        )

        await self._commit_days(
            trip,
            days,
            SyncAction.add_activity,
            {"day_number": day_number, "activity": activity.model_dump(mode="json")},
        )
        return activity

    async def update_activity(
        self, day_id: str, activity_id: str, updates: dict[str, Any]
    ) -> Activity | None:
        """Merge fields into one activity; None if the day or activity is unknown."""
        unknown = set(updates) - set(ActivityDraft.model_fields)
        if unknown:
            raise ValueError(f"Unknown activity fields: {sorted(unknown)}")

        trip = self._require_active()
        days = list(trip.itinerary.days)
        day_index = mutations.find_day_index(days, day_id)
        if day_index is None:
            return None
        activities = list(days[day_index].activities)
        activity_index = mutations.find_activity_index(activities, activity_id)
        if activity_index is None:
            return None

        updated = Activity.model_validate({**activities[activity_index].model_dump(), **updates})
        activities[activity_index] = updated
        days[day_index] = days[day_index].model_copy(update={"activities": activities})

        await self._commit_days(
            trip,
            days,
            SyncAction.update_activity,
            {"day_id": day_id, "activity_id": activity_id, "activity": updated.model_dump(mode="json")},
        )
        return updated

    async def delete_activity(self, day_id: str, activity_id: str) -> bool:
        """Remove one activity; False if the day or activity is unknown."""
        trip = self._require_active()
        days = list(trip.itinerary.days)
        day_index = mutations.find_day_index(days, day_id)
        if day_index is None:
            return False
        activities = list(days[day_index].activities)
        activity_index = mutations.find_activity_index(activities, activity_id)
        if activity_index is None:
            return False

        del activities[activity_index]
        days[day_index] = days[day_index].model_copy(update={"activities": activities})

        await self._commit_days(
            trip, days, SyncAction.delete_activity, {"day_id": day_id, "activity_id": activity_id}
        )
        return True

    async def replace_itinerary(self, itinerary: Itinerary) -> Trip:
        """Swap the whole itinerary, renumbering and redating its days.

        Raises:
            ValueError: If the itinerary has no days
        """
        trip = self._require_active()
        _require_days(itinerary.days)
        days = mutations.normalize_days(itinerary.days, trip.start_date)
        updates = {
            "itinerary": itinerary.model_copy(update={"days": days}),
            "end_date": mutations.end_date_for(days, trip.start_date),
        }
        return await self._commit(trip, updates, SyncAction.update_trip)

    async def add_days(self, drafts: list[DayDraft], position: DaysPosition = "end") -> list[Day]:
        """Insert drafted days at "start", "end" or before a 1-based day number."""
        trip = self._require_active()
        if not drafts:
            return []

        days, inserted = mutations.insert_days(
            trip.itinerary.days, drafts, position, trip.start_date, self._new_id
        )
        await self._commit_days(
            trip,
            days,
            SyncAction.add_days,
            {"days": [d.model_dump(mode="json") for d in inserted], "position": position},
        )
        return inserted

    async def modify_day(
        self,
        day_number: int,
        action: DayEditAction | str,
        activities: list[ActivityDraft] | None = None,
        remove_indices: list[int] | None = None,
    ) -> Day | None:
        """Add, remove (by index) or replace the activities of one day.

        Returns:
            The updated day, or None if ``day_number`` does not exist
        """
        edit = DayEditAction(action)
        trip = self._require_active()
        days = list(trip.itinerary.days)
        index = next((i for i, d in enumerate(days) if d.day_number == day_number), None)
        if index is None:
            logger.warning(f"[engine] modify_day: day {day_number} not found")
            return None

        current = days[index].activities
        new_activities = [mutations.activity_from_draft(a, self._new_id) for a in activities or []]
        if edit == DayEditAction.add_activities:
            result = [*current, *new_activities]
        elif edit == DayEditAction.remove_activities:
            dropped = set(remove_indices or [])
            result = [a for i, a in enumerate(current) if i not in dropped]
        else:
            result = new_activities

        days[index] = days[index].model_copy(update={"activities": result})
        await self._commit_days(
            trip,
            days,
            SyncAction.modify_day,
            {
                "day_number": day_number,
                "modify_action": edit.value,
                "activities": [a.model_dump(mode="json") for a in result],
            },
        )
        return days[index]

    # ------------------------------------------------------------------
    # Planner operations (snapshotted for undo)
    # ------------------------------------------------------------------

    async def reorder_activities_in_day(self, day_id: str, from_index: int, to_index: int) -> bool:
        """Move an activity within one day; False when nothing changed."""
        trip = self._require_active()
        days = list(trip.itinerary.days)
        day_index = mutations.find_day_index(days, day_id)
        if day_index is None:
            return False

        current = days[day_index].activities
        reordered = mutations.reorder_activities(current, from_index, to_index)
        if reordered is current:
            return False

        days[day_index] = days[day_index].model_copy(update={"activities": reordered})
        await self._commit_days(
            trip,
            days,
            SyncAction.reorder_activities,
            {"day_id": day_id, "activity_ids": [a.id for a in reordered]},
            snapshot_label="Reorder activities",
        )
        return True

    async def move_activity_between_days(
        self,
        activity_id: str,
        source_day_id: str,
        destination_day_id: str,
        destination_index: int,
    ) -> bool:
        """Move an activity to another day at ``destination_index``."""
        trip = self._require_active()
        days = list(trip.itinerary.days)
        source_index = mutations.find_day_index(days, source_day_id)
        dest_index = mutations.find_day_index(days, destination_day_id)
        if source_index is None or dest_index is None:
            return False

        source = days[source_index].activities
        activity_index = mutations.find_activity_index(source, activity_id)
        if activity_index is None:
            return False

        if source_index == dest_index:
            reordered = mutations.reorder_activities(source, activity_index, destination_index)
            if reordered is source:
                return False
            days[source_index] = days[source_index].model_copy(update={"activities": reordered})
        else:
            new_source, new_dest = mutations.move_activity_between_days(
                source, days[dest_index].activities, activity_index, destination_index
            )
            days[source_index] = days[source_index].model_copy(update={"activities": new_source})
            days[dest_index] = days[dest_index].model_copy(update={"activities": new_dest})

        await self._commit_days(
            trip,
            days,
            SyncAction.move_activity,
            {
                "activity_id": activity_id,
                "source_day_id": source_day_id,
                "destination_day_id": destination_day_id,
                "destination_index": destination_index,
            },
            snapshot_label="Move activity",
        )
        return True

    async def reorder_days(self, from_index: int, to_index: int) -> bool:
        """Move a day; every day is renumbered and redated."""
        trip = self._require_active()
        current = trip.itinerary.days
        days = mutations.reorder_days(current, from_index, to_index, trip.start_date)
        if days is current:
            return False

        await self._commit_days(
            trip,
            days,
            SyncAction.reorder_days,
            {"day_ids": [d.id for d in days]},
            snapshot_label="Reorder days",
        )
        return True

    async def add_day_at_position(self, position: int) -> Day:
        """Insert an empty day at a 0-based position."""
        trip = self._require_active()
        result = mutations.add_day(trip.itinerary.days, position, trip.start_date, self._new_id)

        await self._commit_days(
            trip,
            result.days,
            SyncAction.add_day,
            {"day": result.new_day.model_dump(mode="json"), "position": position},
            snapshot_label="Add day",
        )
        return result.new_day

    async def add_day_with_location(self, position: int, location_name: str) -> Day:
        """Insert a day holding a "Visit <place>" activity for ``location_name``.

        Geocoding failures fall back to (0, 0) coordinates with an explanatory
        note instead of aborting.
        """
        trip = self._require_active()
        result = mutations.add_day(trip.itinerary.days, position, trip.start_date, self._new_id)

        coordinates = Geo(lat=0, lng=0)
        address = location_name
        resolved = False
        if self._geocoder is not None:
            try:
                found = await self._geocoder.geocode(location_name)
            except Exception as e:
                logger.warning(f"[engine] geocoding {location_name!r} failed, using (0, 0): {e}")
                found = None
            if found is not None:
                coordinates = found.coordinates
                address = found.formatted_address
                resolved = True

        placeholder = Activity(
            id=self._new_id(),
            description=f"Visit {location_name}",
            type=ActivityType.activity,
            location=LocationData(name=location_name, coordinates=coordinates, address=address),
            details=ActivityDetails(
                notes=None
                if resolved
                else f"Placeholder for {location_name} (location not found on map)"
            ),
        )

        days = list(result.days)
        day_index = mutations.find_day_index(days, result.new_day.id)
        new_day = days[day_index].model_copy(update={"activities": [placeholder]})
        days[day_index] = new_day

        await self._commit_days(
            trip,
            days,
            SyncAction.add_day,
            {"day": new_day.model_dump(mode="json"), "position": position},
            snapshot_label=f"Add {location_name}",
        )
        return new_day

    async def remove_day_by_id(
        self, day_id: str, activity_handling: ActivityHandling | str = ActivityHandling.delete
    ) -> RemoveDayResult:
        """Remove a day; the result's ``removed`` flag is False for rejected requests."""
        trip = self._require_active()
        handling = ActivityHandling(activity_handling)
        result = mutations.remove_day(trip.itinerary.days, day_id, handling, trip.start_date)
        if not result.removed:
            return result

        await self._commit_days(
            trip,
            result.days,
            SyncAction.remove_day,
            {"day_id": day_id, "delete_activities": handling == ActivityHandling.delete},
            snapshot_label="Remove day",
        )
        if result.orphaned_activities:
            logger.info(
                f"[engine] removing day {day_id} orphaned "
                f"{len(result.orphaned_activities)} activities"
            )
        return result

    async def update_day_location(self, day_id: str, location: LocationData | None) -> Day | None:
        """Set a day's primary location."""
        return await self._update_day(day_id, {"primary_location": location})

    async def update_day_travel(self, day_id: str, travel: InterDayTravel | None) -> Day | None:
        """Set how the traveller arrives from the previous day."""
        return await self._update_day(day_id, {"travel_from_previous": travel})

    async def _update_day(self, day_id: str, fields: dict[str, Any]) -> Day | None:
        trip = self._require_active()
        days = list(trip.itinerary.days)
        index = mutations.find_day_index(days, day_id)
        if index is None:
            return None

        days[index] = days[index].model_copy(update=fields)
        days = mutations.normalize_days(days, trip.start_date)
        await self._commit_days(
            trip,
            days,
            SyncAction.modify_day,
            {"day_id": day_id, "day": days[index].model_dump(mode="json")},
        )
        return days[index]

    async def replace_itinerary_days(self, days: list[Day]) -> Trip:
        """Swap the active trip's days wholesale (used by undo/redo)."""
        trip = self._require_active()
        _require_days(days)
        normalized = mutations.normalize_days(days, trip.start_date)
        return await self._commit(
            trip, self._days_update(trip, normalized), SyncAction.update_trip
        )

    # ------------------------------------------------------------------
    # Undo / redo
    # ------------------------------------------------------------------

    async def undo(self) -> bool:
        """Restore the days from before the last planner edit."""
        trip = self._require_active()
        current = trip.itinerary.days
        restored = self._history.undo(current)
        if restored is None:
            return False

        try:
            await self.replace_itinerary_days(restored)
        except Exception:
            self._history.redo(restored)
            raise
        return True

    async def redo(self) -> bool:
        """Re-apply the most recently undone planner edit."""
        trip = self._require_active()
        current = trip.itinerary.days
        restored = self._history.redo(current)
        if restored is None:
            return False

        try:
            await self.replace_itinerary_days(restored)
        except Exception:
            self._history.undo(restored)
            raise
        return True

    # ------------------------------------------------------------------
    # Session and sync
    # ------------------------------------------------------------------

    async def sign_in(self, owner_id: str) -> MigrationReport:
        """Attach an owner: migrate guest trips, subscribe, then drain the queue."""
        if self._remote is None:
            raise RuntimeError("No remote store configured")
        if self._owner_id is not None and self._owner_id != owner_id:
            self.sign_out()

        self._owner_id = owner_id
        self._remote_known.clear()
        logger.info(f"[engine] signed in as {owner_id}")

        report = await migrate_guest_trips(self._local, self._remote, owner_id)
        await self._reload_from_local()

        self._drop_subscription()
        self._unsubscribe_remote = await self._remote.subscribe_to_trips(
            owner_id, self._on_remote_trips, self._on_remote_error
        )

        await self._drain()
        self._notify()
        return report

    def sign_out(self) -> None:
        """Drop the owner session; local trips stay available offline."""
        self._drop_subscription()
        if self._owner_id is not None:
            logger.info(f"[engine] signed out {self._owner_id}")
        self._owner_id = None
        self._remote_known.clear()
        self._notify()

    async def sync_now(self) -> DrainResult:
        """Retry migration of remaining guest trips and drain the queue."""
        if self._remote and self._owner_id:
            report = await migrate_guest_trips(self._local, self._remote, self._owner_id)
            if report.migrated:
                await self._reload_from_local()
        return await self._drain()

    async def _drain(self) -> DrainResult:
        """Drain now; a failed pass is handed to the background worker for retry."""
        result = await self._queue.drain()
        if not result.ok and not result.needs_session:
            self._queue.wake()
        return result

    def _drop_subscription(self) -> None:
        if self._unsubscribe_remote is not None:
            self._unsubscribe_remote()
            self._unsubscribe_remote = None

    async def _reload_from_local(self) -> None:
        self._trips = await self._local.get_all()
        if self._active_trip_id and self._find(self._active_trip_id) is None:
            self._active_trip_id = self._trips[0].id if self._trips else None
            self._history.clear()
        self._notify()

    async def _on_remote_trips(self, remote_trips: list[Trip]) -> None:
        """Apply a pushed remote trip list.

        Trips with a local write in flight or queued entries are skipped. A
        known trip is replaced only when the remote version is newer. Unknown
        remote trips are inserted. A synced trip that was seen remotely before
        and is now missing is deleted locally.
        """
        pending = {e.trip_id for e in await self._queue.list_pending()}
        busy = pending | self._in_flight
        changed = False
        seen: set[str] = set()

        for remote_trip in remote_trips:
            seen.add(remote_trip.id)
            if remote_trip.id in busy:
                continue

            local = self._find(remote_trip.id)
            if local is None:
                incoming = remote_trip.model_copy(update={"is_local_only": False})
            elif remote_trip.version > local.version:
                incoming = remote_trip.model_copy(
                    update={"is_local_only": False, "last_accessed_at": local.last_accessed_at}
                )
            else:
                continue

            await self._local.upsert(incoming)
            self._replace_in_memory(incoming)
            changed = True
            logger.info(f"[engine] applied remote trip {incoming.id} (version {incoming.version})")

        for local in list(self._trips):
            gone = (
                not local.is_local_only
                and local.id in self._remote_known
                and local.id not in seen
                and local.id not in busy
            )
            if gone:
                await self._local.delete(local.id)
                self._remove_from_memory(local.id)
                changed = True
                logger.info(f"[engine] trip {local.id} deleted remotely, removed locally")

        self._remote_known = seen | (self._remote_known & busy)
        if changed:
            self._notify()

    def _on_remote_error(self, error: Exception) -> None:
        logger.warning(f"[engine] remote subscription error: {error}")
        self._error = str(error)
        self._notify()
