"""Trip models - the top-level planning unit."""

from datetime import UTC, date, datetime, timedelta
from typing import Any

from pydantic import BaseModel, Field, ValidationInfo, field_validator

from tripsync.app.models.common import Geo, TripStatus
from tripsync.app.models.itinerary import Itinerary


class Destination(BaseModel):
    """Trip destination."""

    name: str
    country: str = ""
    country_code: str = ""  # ISO 3166-1 alpha-2
    coordinates: Geo | None = None


class Trip(BaseModel):
    """Trip with its itinerary and sync metadata."""

    id: str
    title: str
    description: str = ""
    cover_image_url: str | None = None

    start_date: date
    end_date: date
    timezone: str = Field(..., description="IANA timezone, e.g., 'Europe/Paris'")

    destination: Destination
    itinerary: Itinerary

    status: TripStatus = TripStatus.planning
    created_at: datetime
    updated_at: datetime
    last_accessed_at: datetime

    budget_enabled: bool = False
    packing_enabled: bool = False
    photos_enabled: bool = False

    default_currency: str = "USD"

    # True until the first confirmed cloud write
    is_local_only: bool = True
    # Incremented on every engine write; compared against remote pushes
    version: int = Field(default=1, ge=1)

    @field_validator("end_date")
    @classmethod
    def validate_end_after_start(cls, v: date, info: ValidationInfo) -> date:
        """Ensure end >= start."""
        if "start_date" in info.data and v < info.data["start_date"]:
            raise ValueError("end_date must be >= start_date")
        return v

    def span_days(self) -> int:
        """Number of days implied by the inclusive date range."""
        return (self.end_date - self.start_date).days + 1

    def day_date(self, day_number: int) -> date:
        """Calendar date of a 1-indexed day."""
        return self.start_date + timedelta(days=day_number - 1)


def apply_trip_updates(trip: Trip, updates: dict[str, Any]) -> Trip:
    """Merge partial fields into a trip and re-validate the result.

    Args:
        trip: Current trip
        updates: Field name -> value; values may be models or JSON-ready data

    Returns:
        New validated Trip; ``updated_at`` is stamped unless provided

    Raises:
        ValueError: On unknown fields or a merged trip that fails validation
    """
    unknown = set(updates) - set(Trip.model_fields)
    if unknown:
        raise ValueError(f"Unknown trip fields: {sorted(unknown)}")

    merged = {**trip.model_dump(), **updates}
    if "updated_at" not in updates:
        merged["updated_at"] = datetime.now(UTC)
    return Trip.model_validate(merged)


def matches_query(trip: Trip, query: str) -> bool:
    """Case-insensitive match on title, destination name and country."""
    needle = query.lower()
    return (
        needle in trip.title.lower()
        or needle in trip.destination.name.lower()
        or needle in trip.destination.country.lower()
    )


class TripSummary(BaseModel):
    """Denormalized trip view for list screens."""

    id: str
    title: str
    destination: str
    cover_image_url: str | None
    start_date: date
    end_date: date
    status: TripStatus
    days_count: int
    activities_count: int
    is_local_only: bool


class CreateTripInput(BaseModel):
    """Input for creating a trip."""

    title: str
    destination: str
    start_date: date
    end_date: date
    timezone: str | None = None
    default_currency: str | None = None
    destination_coordinates: Geo | None = None

    @field_validator("end_date")
    @classmethod
    def validate_end_after_start(cls, v: date, info: ValidationInfo) -> date:
        """Ensure end >= start."""
        if "start_date" in info.data and v < info.data["start_date"]:
            raise ValueError("end_date must be >= start_date")
        return v
