"""Models package - re-exports for convenience."""

from tripsync.app.models.common import (
    ActivityHandling,
    ActivityType,
    DayEditAction,
    Geo,
    InterDayTravelMode,
    LocationData,
    MoneyAmount,
    TravelMode,
    TripStatus,
)
from tripsync.app.models.itinerary import (
    Activity,
    ActivityDetails,
    ActivityDraft,
    AttachmentRef,
    BookingInfo,
    Day,
    DayDraft,
    InterDayTravel,
    Itinerary,
)
from tripsync.app.models.sync import MigrationReport, SyncAction, SyncQueueEntry, SyncStatus
from tripsync.app.models.trip import CreateTripInput, Destination, Trip, TripSummary

__all__ = [
    # Common
    "Geo",
    "LocationData",
    "MoneyAmount",
    "ActivityType",
    "ActivityHandling",
    "DayEditAction",
    "TravelMode",
    "InterDayTravelMode",
    "TripStatus",
    # Itinerary
    "Activity",
    "ActivityDraft",
    "ActivityDetails",
    "AttachmentRef",
    "BookingInfo",
    "Day",
    "DayDraft",
    "InterDayTravel",
    "Itinerary",
    # Trip
    "Trip",
    "TripSummary",
    "CreateTripInput",
    "Destination",
    # Sync
    "SyncAction",
    "SyncQueueEntry",
    "SyncStatus",
    "MigrationReport",
]
