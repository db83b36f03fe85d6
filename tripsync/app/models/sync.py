"""Sync queue models."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class SyncAction(str, Enum):
    """Operation names carried by sync queue entries."""

    update_trip = "update_trip"
    delete_trip = "delete_trip"
    add_activity = "add_activity"
    update_activity = "update_activity"
    delete_activity = "delete_activity"
    add_days = "add_days"
    modify_day = "modify_day"
    reorder_activities = "reorder_activities"
    move_activity = "move_activity"
    reorder_days = "reorder_days"
    add_day = "add_day"
    remove_day = "remove_day"


class SyncQueueEntry(BaseModel):
    """Pending remote operation.

    The payload is opaque to the queue; only the delivery callable reads it.
    """

    entry_id: str
    seq: int
    action: SyncAction
    trip_id: str | None
    payload: dict[str, Any]
    created_at: datetime
    attempts: int = 0
    last_attempt_at: datetime | None = None
    last_error: str | None = None


class SyncStatus(BaseModel):
    """Best-effort sync indicator for the UI."""

    pending_count: int = 0
    is_syncing: bool = False
    last_synced_at: datetime | None = None
    last_error: str | None = None


class MigrationReport(BaseModel):
    """Outcome of a guest migration pass."""

    migrated: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)
