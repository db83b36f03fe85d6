"""Geocoding adapter using the Nominatim search API (keyless)."""

import logging
from dataclasses import dataclass
from typing import Protocol

import httpx

from tripsync.app.config import Settings
from tripsync.app.models.common import Geo

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GeocodeResult:
    """Resolved place."""

    coordinates: Geo
    formatted_address: str


class Geocoder(Protocol):
    """Resolve a free-text place name to coordinates."""

    async def geocode(self, query: str) -> GeocodeResult | None:
        """Return the best match, or None when nothing matches.

        Raises:
            httpx.HTTPError: On network or HTTP errors
        """
        ...


class NominatimGeocoder:
    """Geocoder backed by OpenStreetMap Nominatim."""

    def __init__(
        self,
        base_url: str = "https://nominatim.openstreetmap.org/search",
        user_agent: str = "tripsync/0.1",
        timeout_sec: float = 4.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url
        self._user_agent = user_agent
        self._timeout_sec = timeout_sec
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "NominatimGeocoder":
        return cls(
            base_url=settings.geocoder_base_url,
            user_agent=settings.geocoder_user_agent,
            timeout_sec=settings.geocoder_timeout_sec,
        )

    async def geocode(self, query: str) -> GeocodeResult | None:
        """Look up ``query`` and return the top result.

        Args:
            query: Free-text place name, e.g. "Kyoto, Japan"

        Returns:
            GeocodeResult, or None when the query is blank or has no match

        Raises:
            httpx.HTTPError: On network or HTTP errors
        """
        if not query.strip():
            return None

        # Docs: https://nominatim.org/release-docs/latest/api/Search/
        params: dict[str, str | int] = {"q": query, "format": "jsonv2", "limit": 1}
        headers = {"User-Agent": self._user_agent}

        close_client = False
        client = self._client
        if client is None:
            client = httpx.AsyncClient(timeout=self._timeout_sec)
            close_client = True

        try:
            response = await client.get(self._base_url, params=params, headers=headers)
            response.raise_for_status()
            results = response.json()
        finally:
            if close_client:
                await client.aclose()

        if not results:
            logger.info(f"[geocoder] no match for {query!r}")
            return None

        # Nominatim returns lat/lon as strings
        top = results[0]
        return GeocodeResult(
            coordinates=Geo(lat=float(top["lat"]), lng=float(top["lon"])),
            formatted_address=top.get("display_name", query),
        )
