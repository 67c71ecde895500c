"""Nominatim forward/reverse geocoding, limited to one request per second."""

import asyncio
import logging
import time

import httpx

from shuttle.config import settings
from shuttle.schemas.service import GeocodingResult

logger = logging.getLogger(__name__)

MIN_REQUEST_INTERVAL = 1.0  # seconds, Nominatim usage policy
MIN_QUERY_LENGTH = 3


class GeocodingClient:
    def __init__(self, client: httpx.AsyncClient | None = None, clock=time.monotonic) -> None:
        self._client = client or httpx.AsyncClient(
            base_url=settings.nominatim_base_url,
            timeout=10.0,
            headers={"User-Agent": settings.nominatim_user_agent},
        )
        self._clock = clock
        self._lock = asyncio.Lock()
        self._last_request: float | None = None

    async def close(self) -> None:
        await self._client.aclose()

    async def _rate_limited_get(self, path: str, params: dict) -> httpx.Response:
        async with self._lock:
            if self._last_request is not None:
                wait = MIN_REQUEST_INTERVAL - (self._clock() - self._last_request)
                if wait > 0:
                    await asyncio.sleep(wait)
            self._last_request = self._clock()
            resp = await self._client.get(path, params=params)
        resp.raise_for_status()
        return resp

    async def search(self, query: str) -> list[GeocodingResult]:
        """Addresses matching a free-text query (at most 5)."""
        if not query or len(query.strip()) < MIN_QUERY_LENGTH:
            return []
        try:
            resp = await self._rate_limited_get(
                "/search",
                {"q": query, "format": "json", "limit": 5, "addressdetails": 1},
            )
            items = resp.json()
        except Exception:
            logger.exception("Forward geocoding failed for %r", query)
            return []

        results = []
        for item in items:
            try:
                results.append(GeocodingResult(
                    latitude=float(item["lat"]),
                    longitude=float(item["lon"]),
                    address=item.get("display_name", ""),
                    display_name=item.get("display_name", ""),
                ))
            except (KeyError, ValueError, TypeError) as e:
                logger.debug("Skipping malformed geocoding result: %s", e)
        return results

    async def reverse(self, lat: float, lon: float) -> GeocodingResult | None:
        try:
            resp = await self._rate_limited_get(
                "/reverse",
                {"lat": lat, "lon": lon, "format": "json", "addressdetails": 1},
            )
            item = resp.json()
        except Exception:
            logger.exception("Reverse geocoding failed for %.6f,%.6f", lat, lon)
            return None
        if not item or "error" in item:
            return None
        return GeocodingResult(
            latitude=lat,
            longitude=lon,
            address=item.get("display_name", ""),
            display_name=item.get("display_name", ""),
        )
