"""Shared pytest fixtures for all test suites."""

import itertools
from collections.abc import AsyncGenerator, Callable
from datetime import UTC, date, datetime, timedelta
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from tripsync.app.config import Settings
from tripsync.app.db.engine import (
    create_async_engine_from_settings,
    create_session_factory,
    init_schema,
)
from tripsync.app.db.inmemory import (
    InMemoryLocalTripStore,
    InMemoryRemoteTripStore,
    InMemorySyncQueueStore,
)
from tripsync.app.engine.trip_engine import TripEngine
from tripsync.app.models.common import ActivityType, LocationData
from tripsync.app.models.itinerary import Activity, ActivityDraft, Day, Itinerary
from tripsync.app.models.trip import Destination, Trip

TRIP_START = date(2025, 6, 1)


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from the environment and any .env file."""
    return Settings(
        _env_file=None,
        local_database_url="sqlite+aiosqlite:///:memory:",
        remote_base_url=None,
        sync_backoff_base_ms=10,
        sync_backoff_max_ms=100,
        sync_retry_jitter_min_ms=0,
        sync_retry_jitter_max_ms=0,
        undo_max_size=50,
    )


@pytest.fixture
def id_factory() -> Callable[[], str]:
    """Deterministic ids: id-1, id-2, ..."""
    counter = itertools.count(1)
    return lambda: f"id-{next(counter)}"


@pytest.fixture
def make_activity() -> Callable[..., Activity]:
    def _make(activity_id: str, description: str | None = None) -> Activity:
        return Activity(
            id=activity_id,
            description=description or f"Activity {activity_id}",
            type=ActivityType.activity,
            location=LocationData(name=f"Place {activity_id}"),
        )

    return _make


@pytest.fixture
def make_draft() -> Callable[..., ActivityDraft]:
    def _make(description: str, type: ActivityType = ActivityType.activity) -> ActivityDraft:
        return ActivityDraft(
            description=description,
            type=type,
            location=LocationData(name=description),
        )

    return _make


@pytest.fixture
def make_days(make_activity: Callable[..., Activity]) -> Callable[..., list[Day]]:
    """Build normalized days from a list of activity-id lists."""

    def _make(activity_ids: list[list[str]], start: date = TRIP_START) -> list[Day]:
        return [
            Day(
                id=f"day{index + 1}",
                day_number=index + 1,
                date=start + timedelta(days=index),
                activities=[make_activity(a) for a in ids],
            )
            for index, ids in enumerate(activity_ids)
        ]

    return _make


@pytest.fixture
def make_trip(make_days: Callable[..., list[Day]]) -> Callable[..., Trip]:
    def _make(
        trip_id: str = "trip-1",
        activity_ids: list[list[str]] | None = None,
        is_local_only: bool = True,
        title: str = "Summer in Lisbon",
        created_at: datetime | None = None,
    ) -> Trip:
        days = make_days(activity_ids if activity_ids is not None else [[], [], []])
        now = created_at or datetime(2025, 5, 1, 12, 0, tzinfo=UTC)
        return Trip(
            id=trip_id,
            title=title,
            start_date=TRIP_START,
            end_date=days[-1].date,
            timezone="Europe/Lisbon",
            destination=Destination(name="Lisbon", country="Portugal", country_code="PT"),
            itinerary=Itinerary(title=title, days=days),
            created_at=now,
            updated_at=now,
            last_accessed_at=now,
            is_local_only=is_local_only,
        )

    return _make


@pytest.fixture
def local_store() -> InMemoryLocalTripStore:
    return InMemoryLocalTripStore()


@pytest.fixture
def queue_store() -> InMemorySyncQueueStore:
    return InMemorySyncQueueStore()


@pytest.fixture
def remote_store() -> InMemoryRemoteTripStore:
    return InMemoryRemoteTripStore()


async def _no_sleep(_seconds: float) -> None:
    return None


@pytest.fixture
def engine(
    local_store: InMemoryLocalTripStore,
    queue_store: InMemorySyncQueueStore,
    remote_store: InMemoryRemoteTripStore,
    settings: Settings,
    id_factory: Callable[[], str],
) -> TripEngine:
    """Engine over in-memory stores; the background worker is not started."""
    return TripEngine(
        local=local_store,
        queue_store=queue_store,
        remote=remote_store,
        settings=settings,
        id_factory=id_factory,
        sleep_fn=_no_sleep,
    )


@pytest_asyncio.fixture
async def sqlite_engine(tmp_path: Path, settings: Settings) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite engine with the schema created."""
    file_settings = settings.model_copy(
        update={"local_database_url": f"sqlite+aiosqlite:///{tmp_path / 'trips.db'}"}
    )
    db_engine = create_async_engine_from_settings(file_settings)
    await init_schema(db_engine)

    yield db_engine

    await db_engine.dispose()


@pytest.fixture
def session_factory(sqlite_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(sqlite_engine)
