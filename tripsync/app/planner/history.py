"""Linear undo/redo history over full day-sequence snapshots."""

from dataclasses import dataclass, field
from datetime import UTC, datetime

from tripsync.app.models.itinerary import Day


@dataclass(frozen=True)
class Snapshot:
    """Labelled deep copy of a day sequence."""

    label: str
    days: tuple[Day, ...]
    taken_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def capture(cls, label: str, days: list[Day]) -> "Snapshot":
        return cls(label=label, days=tuple(day.model_copy(deep=True) for day in days))

    def restore(self) -> list[Day]:
        """Fresh copies, so the snapshot survives later edits of the result."""
        return [day.model_copy(deep=True) for day in self.days]


class UndoHistory:
    """Undo/redo stacks for planner edits.

    Snapshots are pushed before each structural edit. Pushing after an undo
    discards the redo stack (no branching). The oldest snapshot is dropped once
    ``max_size`` is exceeded.
    """

    def __init__(self, max_size: int = 50) -> None:
        self._max_size = max_size
        self._past: list[Snapshot] = []
        self._future: list[Snapshot] = []

    @property
    def can_undo(self) -> bool:
        return bool(self._past)

    @property
    def can_redo(self) -> bool:
        return bool(self._future)

    @property
    def undo_label(self) -> str | None:
        return self._past[-1].label if self._past else None

    @property
    def redo_label(self) -> str | None:
        return self._future[-1].label if self._future else None

    def push_snapshot(self, label: str, days: list[Day]) -> None:
        """Record ``days`` as the state before the edit named ``label``."""
        self._past.append(Snapshot.capture(label, days))
        if len(self._past) > self._max_size:
            self._past.pop(0)
        self._future.clear()

    def undo(self, current_days: list[Day]) -> list[Day] | None:
        """Step back one edit.

        Args:
            current_days: Day sequence currently shown, saved for redo

        Returns:
            Days to restore, or None if there is nothing to undo
        """
        if not self._past:
            return None

        previous = self._past.pop()
        self._future.append(Snapshot.capture(previous.label, current_days))
        return previous.restore()

    def redo(self, current_days: list[Day]) -> list[Day] | None:
        """Re-apply the most recently undone edit."""
        if not self._future:
            return None

        following = self._future.pop()
        self._past.append(Snapshot.capture(following.label, current_days))
        return following.restore()

    def clear(self) -> None:
        self._past.clear()
        self._future.clear()
