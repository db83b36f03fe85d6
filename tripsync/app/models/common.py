"""Common types and enums shared across all models."""

from enum import Enum

from pydantic import BaseModel, Field


class Geo(BaseModel):
    """Geographic coordinates (WGS84)."""

    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class LocationData(BaseModel):
    """Named place with optional coordinates."""

    name: str
    coordinates: Geo | None = None
    address: str | None = None
    place_id: str | None = None  # External place reference (e.g. a Places API id)


class MoneyAmount(BaseModel):
    """Monetary amount with ISO 4217 currency."""

    amount: float = Field(..., ge=0)
    currency: str = "USD"


class ActivityType(str, Enum):
    """Kind of activity within a day."""

    food = "food"
    lodging = "lodging"
    activity = "activity"
    travel = "travel"


class TravelMode(str, Enum):
    """Preferred mode to reach an activity."""

    walking = "walking"
    driving = "driving"
    transit = "transit"
    flight = "flight"


class InterDayTravelMode(str, Enum):
    """Mode of travel between consecutive days."""

    car = "car"
    train = "train"
    flight = "flight"
    bus = "bus"
    ferry = "ferry"
    walking = "walking"
    other = "other"


class TripStatus(str, Enum):
    """Trip lifecycle status."""

    planning = "planning"
    upcoming = "upcoming"
    active = "active"
    completed = "completed"
    archived = "archived"


class ActivityHandling(str, Enum):
    """Disposition of a removed day's activities."""

    previous = "previous"
    next = "next"
    delete = "delete"


class DayEditAction(str, Enum):
    """Activity edit applied to a single day by ``modify_day``."""

    add_activities = "add_activities"
    remove_activities = "remove_activities"
    replace_activities = "replace_activities"
