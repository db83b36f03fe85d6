"""Pure planner mutations over day and activity sequences.

Every function returns new lists and leaves its inputs untouched. Index
arguments are clamped because drag interactions report transient out-of-range
positions while the pointer is moving; an unknown day or activity id turns the
whole operation into a no-op that returns the input unchanged.

Any function that changes the day sequence renumbers and redates every day from
the trip start date (see ``normalize_days``), so positions and dates never drift
apart.
"""

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Literal, TypeVar

from tripsync.app.models.common import ActivityHandling
from tripsync.app.models.itinerary import Activity, ActivityDraft, Day, DayDraft
from tripsync.app.utils.ids import IdFactory, new_id

logger = logging.getLogger(__name__)

T = TypeVar("T")

DaysPosition = Literal["start", "end"] | int


@dataclass
class AddDayResult:
    """Result of inserting a single empty day."""

    days: list[Day]
    new_day: Day
    end_date: date


@dataclass
class RemoveDayResult:
    """Result of removing a day.

    ``removed`` is False when the request was rejected (unknown id or the
    trip's only day); ``days`` is then the input sequence.
    """

    days: list[Day]
    orphaned_activities: list[Activity]
    end_date: date
    removed: bool


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(value, high))


def _move(items: list[T], from_index: int, to_index: int) -> list[T]:
    """Move one element, returning the input itself when nothing moves."""
    if not 0 <= from_index < len(items):
        logger.debug(
            f"[planner] from_index {from_index} out of range for {len(items)} items, no-op"
        )
        return items

    to_index = _clamp(to_index, 0, len(items) - 1)
    if from_index == to_index:
        return items

    result = list(items)
    moved = result.pop(from_index)
    result.insert(to_index, moved)
    return result


def normalize_days(days: list[Day], trip_start_date: date) -> list[Day]:
    """Renumber 1..N and redate every day from the trip start date.

    Inter-day travel is cleared on the first day since there is no previous
    day to travel from.
    """
    result: list[Day] = []
    for index, day in enumerate(days):
        updates: dict[str, object] = {
            "day_number": index + 1,
            "date": trip_start_date + timedelta(days=index),
        }
        if index == 0 and day.travel_from_previous is not None:
            updates["travel_from_previous"] = None
        result.append(day.model_copy(update=updates))
    return result


def end_date_for(days: list[Day], trip_start_date: date) -> date:
    """Trip end date implied by a normalized day sequence."""
    if not days:
        return trip_start_date
    return days[-1].date


def find_day_index(days: list[Day], day_id: str) -> int | None:
    """Position of the day with ``day_id``, or None."""
    for index, day in enumerate(days):
        if day.id == day_id:
            return index
    return None


def find_activity_index(activities: list[Activity], activity_id: str) -> int | None:
    """Position of the activity with ``activity_id``, or None."""
    for index, activity in enumerate(activities):
        if activity.id == activity_id:
            return index
    return None


def count_activities(days: list[Day]) -> int:
    """Total activities across all days."""
    return sum(len(day.activities) for day in days)


def activity_from_draft(draft: ActivityDraft, id_factory: IdFactory = new_id) -> Activity:
    """Assign a fresh id to an activity draft."""
    return Activity(id=id_factory(), **draft.model_dump())


def day_from_draft(
    draft: DayDraft, day_number: int, day_date: date, id_factory: IdFactory = new_id
) -> Day:
    """Assign fresh ids to a day draft and all of its activities."""
    return Day(
        id=id_factory(),
        day_number=day_number,
        date=day_date,
        activities=[activity_from_draft(a, id_factory) for a in draft.activities],
        primary_location=draft.primary_location,
        travel_from_previous=draft.travel_from_previous,
    )


def reorder_activities(
    activities: list[Activity], from_index: int, to_index: int
) -> list[Activity]:
    """Move the activity at ``from_index`` to ``to_index`` within one day.

    Args:
        activities: Current activities of the day
        from_index: Position of the activity to move
        to_index: Target position, clamped to [0, len - 1]

    Returns:
        New activity list, or the input itself if nothing moved
    """
    return _move(activities, from_index, to_index)


def move_activity_between_days(
    source_activities: list[Activity],
    dest_activities: list[Activity],
    source_index: int,
    dest_index: int,
) -> tuple[list[Activity], list[Activity]]:
    """Move one activity from a source day into a destination day.

    Both lists are returned together; callers apply both or neither so the
    activity is never lost or duplicated.

    Args:
        source_activities: Activities of the source day
        dest_activities: Activities of the destination day
        source_index: Position in the source day
        dest_index: Insert position in the destination day, clamped to
            [0, len(dest_activities)]

    Returns:
        Tuple of (new_source, new_dest); the inputs when source_index is invalid
    """
    if not 0 <= source_index < len(source_activities):
        logger.debug(
            f"[planner] source_index {source_index} out of range for "
            f"{len(source_activities)} activities, no-op"
        )
        return source_activities, dest_activities

    dest_index = _clamp(dest_index, 0, len(dest_activities))

    new_source = list(source_activities)
    moved = new_source.pop(source_index)
    new_dest = list(dest_activities)
    new_dest.insert(dest_index, moved)

    return new_source, new_dest


def reorder_days(
    days: list[Day], from_index: int, to_index: int, trip_start_date: date
) -> list[Day]:
    """Move a day and renumber/redate the whole sequence.

    Activities keep their times but land on the new calendar date of the day
    they belong to.
    """
    moved = _move(days, from_index, to_index)
    if moved is days:
        return days
    return normalize_days(moved, trip_start_date)


def add_day(
    days: list[Day],
    position: int,
    trip_start_date: date,
    id_factory: IdFactory = new_id,
) -> AddDayResult:
    """Insert an empty day at ``position`` (0-based; len(days) appends)."""
    position = _clamp(position, 0, len(days))

    new_day = Day(
        id=id_factory(),
        day_number=position + 1,
        date=trip_start_date + timedelta(days=position),
        activities=[],
    )

    result = list(days)
    result.insert(position, new_day)
    normalized = normalize_days(result, trip_start_date)

    return AddDayResult(
        days=normalized,
        new_day=normalized[position],
        end_date=end_date_for(normalized, trip_start_date),
    )


def remove_day(
    days: list[Day],
    day_id: str,
    activity_handling: ActivityHandling | str,
    trip_start_date: date,
) -> RemoveDayResult:
    """Remove a day, re-homing or discarding its activities.

    ``previous`` appends the activities to the preceding day and ``next``
    prepends them to the following day. When that neighbour does not exist the
    activities are reported as orphaned. ``delete`` discards them, and they are
    reported as orphaned too so callers can offer undo.

    The only remaining day is never removed.
    """
    handling = ActivityHandling(activity_handling)
    unchanged = RemoveDayResult(
        days=days,
        orphaned_activities=[],
        end_date=end_date_for(days, trip_start_date),
        removed=False,
    )

    if len(days) <= 1:
        logger.warning("[planner] refusing to remove the only day of a trip")
        return unchanged

    index = find_day_index(days, day_id)
    if index is None:
        logger.warning(f"[planner] remove_day: day {day_id} not found")
        return unchanged

    removed_day = days[index]
    result = list(days)
    orphaned: list[Activity] = []

    if handling == ActivityHandling.delete:
        orphaned = list(removed_day.activities)
    elif handling == ActivityHandling.previous:
        if index == 0:
            orphaned = list(removed_day.activities)
        else:
            target = result[index - 1]
            result[index - 1] = target.model_copy(
                update={"activities": [*target.activities, *removed_day.activities]}
            )
    else:
        if index == len(days) - 1:
            orphaned = list(removed_day.activities)
        else:
            target = result[index + 1]
            result[index + 1] = target.model_copy(
                update={"activities": [*removed_day.activities, *target.activities]}
            )

    del result[index]
    normalized = normalize_days(result, trip_start_date)

    return RemoveDayResult(
        days=normalized,
        orphaned_activities=orphaned,
        end_date=end_date_for(normalized, trip_start_date),
        removed=True,
    )


def insert_days(
    days: list[Day],
    drafts: list[DayDraft],
    position: DaysPosition,
    trip_start_date: date,
    id_factory: IdFactory = new_id,
) -> tuple[list[Day], list[Day]]:
    """Insert several drafted days at once.

    Args:
        days: Current day sequence
        drafts: Days to insert, in order
        position: "start", "end", or a 1-based day number to insert before
        trip_start_date: Trip start date used for renumbering
        id_factory: Id generator for the new days and activities

    Returns:
        Tuple of (normalized days, the inserted days as they appear in it)
    """
    if position == "start":
        insert_at = 0
    elif position == "end":
        insert_at = len(days)
    else:
        insert_at = _clamp(int(position) - 1, 0, len(days))

    new_days = [
        day_from_draft(draft, insert_at + offset + 1, trip_start_date, id_factory)
        for offset, draft in enumerate(drafts)
    ]
    new_ids = {day.id for day in new_days}

    normalized = normalize_days([*days[:insert_at], *new_days, *days[insert_at:]], trip_start_date)
    inserted = [day for day in normalized if day.id in new_ids]

    return normalized, inserted
