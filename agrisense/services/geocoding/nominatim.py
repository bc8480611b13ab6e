"""Nominatim (OpenStreetMap) geocoding client.

Search is best-effort: network errors, non-2xx responses and malformed
payloads are logged and turned into an empty result. There is no retry
loop, a failed call is final and the caller may simply re-issue it.
"""

import logging
from typing import Any

import httpx

from agrisense.core.config import get_settings
from agrisense.core.models import LocationResult
from agrisense.services.geocoding.curated import CURATED_LOCATIONS

logger = logging.getLogger(__name__)

# Nominatim rejects larger values
_MAX_LIMIT = 40


class NominatimGeocoder:
    """Forward and reverse geocoding over the Nominatim HTTP API.

    Args:
        base_url: API root (falls back to settings if not provided).
        user_agent: Identifying client label sent with every request.
        timeout: Per-request timeout in seconds.
        settings: Optional Settings instance (defaults to get_settings()).
        client: Pre-built ``httpx.AsyncClient`` (tests inject a mock transport).
    """

    def __init__(
        self,
        base_url: str | None = None,
        user_agent: str | None = None,
        timeout: float | None = None,
        settings=None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._base_url = (base_url or self._settings.geocoding_base_url).rstrip("/")
        self._user_agent = user_agent or self._settings.geocoding_user_agent
        self._timeout = timeout if timeout is not None else self._settings.geocoding_timeout
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            headers={"User-Agent": self._user_agent},
        )

    async def __aenter__(self) -> "NominatimGeocoder":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this geocoder created it."""
        if self._owns_client:
            await self._client.aclose()

    async def _get(self, path: str, params: dict[str, Any]) -> Any | None:
        """GET a JSON document, returning None on any failure."""
        url = f"{self._base_url}{path}"
        try:
            resp = await self._client.get(
                url,
                params=params,
                headers={"User-Agent": self._user_agent},
            )
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "Geocoding request %s failed with HTTP %s", path, exc.response.status_code
            )
        except httpx.HTTPError as exc:
            logger.warning("Geocoding request %s failed: %s", path, exc)
        except ValueError as exc:
            logger.warning("Geocoding response for %s is not valid JSON: %s", path, exc)
        return None

    async def forward_search(
        self,
        query: str,
        limit: int | None = None,
        country_code: str | None = None,
    ) -> list[LocationResult]:
        """Find places matching free text, in the provider's relevance order.

        Args:
            query: Free-text place name or address.
            limit: Maximum number of results (default from settings).
            country_code: ISO 3166-1 alpha-2 filter (default from settings).

        Returns:
            Up to ``limit`` results; empty on blank query or any failure.
        """
        query = query.strip()
        if not query:
            return []

        limit = limit or self._settings.geocoding_limit
        limit = max(1, min(limit, _MAX_LIMIT))
        params = {
            "format": "json",
            "q": query,
            "countrycodes": country_code or self._settings.geocoding_country_code,
            "limit": limit,
            "addressdetails": 1,
        }
        data = await self._get("/search", params)
        if not isinstance(data, list):
            if data is not None:
                logger.warning("Unexpected search payload type: %s", type(data).__name__)
            return []

        results = []
        for item in data:
            place = self._parse_place(item)
            if place is not None:
                results.append(place)
        logger.debug("Geocoding search %r returned %d result(s)", query, len(results))
        return results[:limit]

    async def reverse_lookup(self, lat: float, lng: float) -> LocationResult | None:
        """Describe the place at the given coordinates, or None."""
        params = {
            "format": "json",
            "lat": lat,
            "lon": lng,
            "addressdetails": 1,
        }
        data = await self._get("/reverse", params)
        if not isinstance(data, dict):
            return None
        if "error" in data:
            logger.info("Reverse geocoding found nothing at (%s, %s): %s", lat, lng, data["error"])
            return None
        return self._parse_place(data)

    @staticmethod
    def get_curated_locations() -> list[LocationResult]:
        """Return the fixed shortlist of regional suggestions (no network)."""
        return list(CURATED_LOCATIONS)

    @staticmethod
    def _parse_place(item: Any) -> LocationResult | None:
        """Convert one Nominatim place object, skipping malformed entries."""
        if not isinstance(item, dict):
            return None
        try:
            lat = float(item["lat"])
            lon = float(item["lon"])
        except (KeyError, TypeError, ValueError):
            logger.debug("Skipping geocoding entry without usable coordinates: %r", item)
            return None

        full_address = item.get("display_name") or ""
        name = item.get("name") or full_address.split(",")[0].strip() or f"{lat:.4f}, {lon:.4f}"

        try:
            south, north, west, east = (float(v) for v in item["boundingbox"])
            bounding_box = (south, north, west, east)
        except (KeyError, TypeError, ValueError):
            bounding_box = (lat, lat, lon, lon)

        try:
            importance = float(item.get("importance") or 0.0)
        except (TypeError, ValueError):
            importance = 0.0

        address = item.get("address")
        if isinstance(address, dict):
            address = {str(k): str(v) for k, v in address.items()}
        else:
            address = {}

        return LocationResult(
            latitude=lat,
            longitude=lon,
            display_name=name,
            full_address=full_address,
            place_type=item.get("type") or item.get("addresstype") or "",
            importance=importance,
            bounding_box=bounding_box,
            address=address,
        )
