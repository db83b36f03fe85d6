"""Engine state snapshot delivered to observers."""

from dataclasses import dataclass, field

from tripsync.app.models.sync import SyncStatus
from tripsync.app.models.trip import Trip


class NoActiveTripError(Exception):
    """Operation needs an active trip but none is selected."""

    pass


@dataclass(frozen=True)
class EngineSnapshot:
    """Immutable view of the engine state at one point in time."""

    trips: tuple[Trip, ...] = ()
    active_trip_id: str | None = None
    is_loading: bool = False
    error: str | None = None
    owner_id: str | None = None
    sync_status: SyncStatus = field(default_factory=SyncStatus)
    can_undo: bool = False
    can_redo: bool = False

    @property
    def active_trip(self) -> Trip | None:
        for trip in self.trips:
            if trip.id == self.active_trip_id:
                return trip
        return None

    @property
    def is_signed_in(self) -> bool:
        return self.owner_id is not None
