"""Structured logging for sync queue deliveries."""

import logging
from datetime import UTC, datetime
from typing import Any

from tripsync.app.models.sync import SyncQueueEntry

logger = logging.getLogger(__name__)


class StructuredSyncLogger:
    """Emits one record per delivery attempt under ``extra["structured"]``."""

    def log_attempt(
        self,
        entry: SyncQueueEntry,
        attempt: int,
        outcome: str,
        latency_ms: float,
        error_reason: str | None = None,
    ) -> None:
        """Log one delivery attempt.

        ``queued_ms`` is how long the entry waited since it was enqueued.
        """
        queued_for = datetime.now(UTC) - entry.created_at
        fields: dict[str, Any] = {
            "entry_id": entry.entry_id,
            "seq": entry.seq,
            "action": entry.action.value,
            "trip_id": entry.trip_id,
            "attempt": attempt,
            "outcome": outcome,
            "latency_ms": round(latency_ms, 2),
            "queued_ms": round(queued_for.total_seconds() * 1000),
        }
        if error_reason:
            fields["error_reason"] = error_reason
        if attempt > 1 and entry.last_error:
            fields["previous_error"] = entry.last_error

        level = logging.INFO if outcome == "success" else logging.WARNING
        logger.log(
            level,
            f"[sync] {entry.action.value} seq={entry.seq} attempt {attempt}: {outcome}",
            extra={"structured": fields},
        )
