"""Application wiring - builds a TripEngine from settings."""

import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncEngine

from tripsync.app.adapters.geocoding import NominatimGeocoder
from tripsync.app.adapters.remote import HttpRemoteTripStore
from tripsync.app.config import Settings, get_settings
from tripsync.app.db.engine import (
    create_async_engine_from_settings,
    create_session_factory,
    init_schema,
)
from tripsync.app.db.sql_repositories import SqlLocalTripStore, SqlSyncQueueStore
from tripsync.app.engine.trip_engine import TripEngine
from tripsync.app.utils.logging import StructuredSyncLogger
from tripsync.app.utils.metrics import PrometheusSyncMetrics

logger = logging.getLogger(__name__)


@dataclass
class App:
    """Running engine plus the resources it owns."""

    engine: TripEngine
    db_engine: AsyncEngine
    remote: HttpRemoteTripStore | None

    async def aclose(self) -> None:
        await self.engine.close()
        if self.remote is not None:
            await self.remote.aclose()
        await self.db_engine.dispose()


async def create_app(settings: Settings | None = None) -> App:
    """Create schema, stores and adapters, load trips and start background sync."""
    settings = settings or get_settings()

    db_engine = create_async_engine_from_settings(settings)
    await init_schema(db_engine)
    session_factory = create_session_factory(db_engine)

    remote = HttpRemoteTripStore.from_settings(settings) if settings.remote_base_url else None
    if remote is None:
        logger.info("[app] REMOTE_BASE_URL not set, running offline only")

    engine = TripEngine(
        local=SqlLocalTripStore(session_factory),
        queue_store=SqlSyncQueueStore(session_factory),
        remote=remote,
        geocoder=NominatimGeocoder.from_settings(settings),
        settings=settings,
        metrics=PrometheusSyncMetrics(),
        sync_logger=StructuredSyncLogger(),
    )
    await engine.load_trips()
    await engine.start()

    return App(engine=engine, db_engine=db_engine, remote=remote)
