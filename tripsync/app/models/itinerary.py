"""Itinerary models - days and the activities they hold."""

from datetime import date, datetime

from pydantic import BaseModel, Field

from tripsync.app.models.common import (
    ActivityType,
    InterDayTravelMode,
    LocationData,
    MoneyAmount,
    TravelMode,
)


class AttachmentRef(BaseModel):
    """Reference to a stored file attachment."""

    id: str
    filename: str
    mime_type: str
    size: int = Field(..., ge=0)
    thumbnail_url: str | None = None
    created_at: datetime


class BookingInfo(BaseModel):
    """Booking confirmation details."""

    confirmation_number: str | None = None
    provider: str | None = None
    booking_url: str | None = None
    check_in: str | None = None  # HH:MM
    check_out: str | None = None
    guest_count: int | None = None
    room_type: str | None = None

    # Flights
    flight_number: str | None = None
    airline: str | None = None
    terminal: str | None = None
    gate: str | None = None
    seat_number: str | None = None


class ActivityDetails(BaseModel):
    """Extended activity information."""

    booking: BookingInfo | None = None
    phone: str | None = None
    website: str | None = None
    email: str | None = None
    notes: str | None = None
    attachments: list[AttachmentRef] = Field(default_factory=list)
    estimated_cost: MoneyAmount | None = None
    actual_cost: MoneyAmount | None = None
    is_paid: bool = False
    tags: list[str] = Field(default_factory=list)
    preferred_travel_mode: TravelMode | None = None


class ActivityDraft(BaseModel):
    """Activity content before an id is assigned."""

    time: str | None = None  # "HH:MM AM/PM"
    end_time: str | None = None
    description: str
    type: ActivityType
    location: LocationData
    details: ActivityDetails | None = None


class Activity(ActivityDraft):
    """Single activity within a day."""

    id: str


class InterDayTravel(BaseModel):
    """How the traveller gets from the previous day's location to this day."""

    mode: InterDayTravelMode
    details: str | None = None
    departure_time: str | None = None
    arrival_time: str | None = None
    duration_minutes: int | None = Field(default=None, ge=0)


class DayDraft(BaseModel):
    """Day content before ids, numbering and dates are assigned."""

    activities: list[ActivityDraft] = Field(default_factory=list)
    primary_location: LocationData | None = None
    travel_from_previous: InterDayTravel | None = None


class Day(BaseModel):
    """One calendar day of an itinerary."""

    id: str
    day_number: int = Field(..., ge=1)
    date: date
    activities: list[Activity] = Field(default_factory=list)
    primary_location: LocationData | None = None
    travel_from_previous: InterDayTravel | None = None


class Itinerary(BaseModel):
    """Ordered sequence of days."""

    title: str
    days: list[Day] = Field(default_factory=list)
