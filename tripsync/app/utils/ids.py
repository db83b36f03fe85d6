"""Id generation for trips, days and activities."""

import uuid
from collections.abc import Callable

IdFactory = Callable[[], str]


def new_id() -> str:
    """Return a collision-resistant string id."""
    return uuid.uuid4().hex
