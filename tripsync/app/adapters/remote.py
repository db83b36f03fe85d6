"""HTTP remote trip store.

Binding:
    PUT    {base}/owners/{owner}/trips/{trip_id}   full trip document (upsert)
    PATCH  {base}/owners/{owner}/trips/{trip_id}   partial JSON fields
    DELETE {base}/owners/{owner}/trips/{trip_id}
    GET    {base}/owners/{owner}/trips             {"trips": [...]}

Change delivery is implemented by polling the list endpoint.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from tripsync.app.config import Settings
from tripsync.app.db.repositories import (
    ErrorListener,
    RemoteStoreError,
    TripsListener,
    Unsubscribe,
)
from tripsync.app.models.trip import Trip

logger = logging.getLogger(__name__)


class HttpRemoteTripStore:
    """RemoteTripStore over a JSON HTTP API."""

    def __init__(
        self,
        base_url: str,
        api_token: str = "",
        timeout_sec: float = 10.0,
        poll_seconds: float = 15.0,
        client: httpx.AsyncClient | None = None,
        sleep_fn: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        """Initialize store.

        Args:
            base_url: API root, without trailing slash
            api_token: Bearer token sent with every request (optional)
            timeout_sec: Per-request timeout when the client is created here
            poll_seconds: Interval between subscription polls
            client: Optional httpx client (for testing with mocks)
            sleep_fn: Injectable sleep function (default: asyncio.sleep)
        """
        self._base_url = base_url.rstrip("/")
        self._poll_seconds = poll_seconds
        self._sleep = sleep_fn or asyncio.sleep
        self._tasks: set[asyncio.Task[None]] = set()

        headers = {"Authorization": f"Bearer {api_token}"} if api_token else {}
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout_sec, headers=headers)

    @classmethod
    def from_settings(cls, settings: Settings) -> "HttpRemoteTripStore":
        if not settings.remote_base_url:
            raise ValueError("REMOTE_BASE_URL must be set to use the HTTP remote store")
        return cls(
            base_url=settings.remote_base_url,
            api_token=settings.remote_api_token,
            timeout_sec=settings.remote_timeout_sec,
            poll_seconds=settings.subscription_poll_seconds,
        )

    def _trip_url(self, owner_id: str, trip_id: str) -> str:
        return f"{self._base_url}/owners/{owner_id}/trips/{trip_id}"

    async def _request(self, method: str, url: str, json: Any = None) -> httpx.Response:
        try:
            response = await self._client.request(method, url, json=json)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise RemoteStoreError(
                f"{method} {url} failed with status {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise RemoteStoreError(f"{method} {url} failed: {e}") from e
        return response

    async def create(self, trip: Trip, owner_id: str) -> None:
        """Create or overwrite a trip under ``owner_id``."""
        doc = trip.model_dump(mode="json")
        doc["is_local_only"] = False
        await self._request("PUT", self._trip_url(owner_id, trip.id), json=doc)

    async def update(self, trip_id: str, updates: dict[str, Any], owner_id: str) -> None:
        """Merge JSON-ready partial fields into an owned trip."""
        await self._request("PATCH", self._trip_url(owner_id, trip_id), json=updates)

    async def delete(self, trip_id: str, owner_id: str) -> None:
        """Delete an owned trip."""
        await self._request("DELETE", self._trip_url(owner_id, trip_id))

    async def list_trips(self, owner_id: str) -> list[Trip]:
        """Fetch the owner's full trip list."""
        response = await self._request("GET", f"{self._base_url}/owners/{owner_id}/trips")
        try:
            return [Trip.model_validate(doc) for doc in response.json()["trips"]]
        except (ValueError, KeyError, TypeError) as e:
            raise RemoteStoreError(f"Malformed trip list for owner {owner_id}: {e}") from e

    async def subscribe_to_trips(
        self, owner_id: str, on_change: TripsListener, on_error: ErrorListener
    ) -> Unsubscribe:
        """Poll the owner's trip list and push it whenever it changes.

        The first poll completes before this returns. Poll errors are reported
        to ``on_error`` and polling continues.
        """
        last_seen: list[dict[str, Any]] | None = None

        async def poll() -> None:
            nonlocal last_seen
            try:
                trips = await self.list_trips(owner_id)
            except RemoteStoreError as e:
                logger.warning(f"[remote] poll for owner {owner_id} failed: {e}")
                on_error(e)
                return

            snapshot = [t.model_dump(mode="json") for t in trips]
            if snapshot == last_seen:
                return
            last_seen = snapshot
            await on_change(trips)

        async def loop() -> None:
            while True:
                await self._sleep(self._poll_seconds)
                try:
                    await poll()
                except Exception as e:
                    logger.error(f"[remote] trip listener failed: {e}", exc_info=True)
                    on_error(e)

        await poll()
        task = asyncio.create_task(loop(), name=f"remote-poll-{owner_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        def unsubscribe() -> None:
            task.cancel()

        return unsubscribe

    async def aclose(self) -> None:
        """Stop all polls and close the client if it was created here."""
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        if self._owns_client:
            await self._client.aclose()
