"""Guest migration: upload trips created while signed out."""

import logging

from tripsync.app.db.repositories import LocalTripStore, RemoteTripStore
from tripsync.app.models.sync import MigrationReport

logger = logging.getLogger(__name__)


async def migrate_guest_trips(
    local: LocalTripStore, remote: RemoteTripStore, owner_id: str
) -> MigrationReport:
    """Upload every local-only trip to ``owner_id``'s remote collection.

    A trip is marked synced only after its remote create succeeds. Failures are
    logged and left local-only so a later pass can retry them; one failure does
    not stop the rest of the batch.

    Args:
        local: Local trip store
        remote: Remote trip store
        owner_id: Newly signed-in owner

    Returns:
        MigrationReport listing migrated and failed trip ids
    """
    report = MigrationReport()
    pending = await local.get_local_only()
    if not pending:
        return report

    logger.info(f"[migration] uploading {len(pending)} local-only trips for owner {owner_id}")

    for trip in pending:
        try:
            await remote.create(trip, owner_id)
            await local.mark_as_synced(trip.id)
        except Exception as e:
            logger.warning(f"[migration] trip {trip.id} failed: {e}")
            report.failed.append(trip.id)
            continue
        report.migrated.append(trip.id)

    logger.info(
        f"[migration] done: {len(report.migrated)} migrated, {len(report.failed)} failed"
    )
    return report
