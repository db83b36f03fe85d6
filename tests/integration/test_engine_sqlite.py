"""End-to-end engine tests over the SQLite stores."""

from datetime import date
from pathlib import Path

import pytest

from tripsync.app.db.engine import create_session_factory
from tripsync.app.db.inmemory import InMemoryRemoteTripStore
from tripsync.app.db.sql_repositories import SqlLocalTripStore, SqlSyncQueueStore
from tripsync.app.engine.trip_engine import TripEngine
from tripsync.app.main import create_app
from tripsync.app.models.trip import CreateTripInput


def porto_input() -> CreateTripInput:
    return CreateTripInput(
        title="Porto",
        destination="Porto",
        start_date=date(2025, 7, 1),
        end_date=date(2025, 7, 2),
    )


def sql_engine(sqlite_engine, remote, settings) -> TripEngine:
    session_factory = create_session_factory(sqlite_engine)
    return TripEngine(
        SqlLocalTripStore(session_factory),
        SqlSyncQueueStore(session_factory),
        remote,
        settings=settings,
    )


@pytest.mark.asyncio
async def test_app_reloads_trips_after_restart(tmp_path: Path, settings, make_draft) -> None:
    app_settings = settings.model_copy(
        update={"local_database_url": f"sqlite+aiosqlite:///{tmp_path / 'app.db'}"}
    )

    app = await create_app(app_settings)
    trip = await app.engine.create_trip(porto_input())
    await app.engine.add_activity(2, make_draft("Port cellars"))
    await app.aclose()

    restarted = await create_app(app_settings)
    try:
        assert restarted.remote is None
        assert restarted.engine.active_trip_id == trip.id
        [day1, day2] = restarted.engine.get_active_trip_days()
        assert day1.activities == []
        assert day2.activities[0].description == "Port cellars"
        assert restarted.engine.active_trip.version == 2
    finally:
        await restarted.aclose()


@pytest.mark.asyncio
async def test_offline_edits_survive_restart_and_sync(sqlite_engine, settings, make_draft) -> None:
    remote = InMemoryRemoteTripStore()

    engine = sql_engine(sqlite_engine, remote, settings)
    trip = await engine.create_trip(porto_input())
    await engine.sign_in("owner-1")
    engine.sign_out()
    await engine.add_activity(1, make_draft("Livraria Lello"))
    await engine.reorder_days(0, 1)
    await engine.close()

    # Same database, new process
    engine = sql_engine(sqlite_engine, remote, settings)
    await engine.load_trips()
    await engine.start()
    try:
        assert engine.sync_status.pending_count == 2

        await engine.sign_in("owner-1")

        assert engine.sync_status.pending_count == 0
        [remote_trip] = remote.trips_for("owner-1")
        assert remote_trip.id == trip.id
        assert remote_trip.version == 3
        assert remote_trip.itinerary.days[1].activities[0].description == "Livraria Lello"
    finally:
        await engine.close()
