"""Async client for OSRM road routing (route, trip and ETA lookups)."""

import asyncio
import logging
from dataclasses import dataclass

import httpx

from shuttle.config import settings
from shuttle.core.geo import format_distance, format_duration
from shuttle.schemas.location import LatLon
from shuttle.schemas.service import EtaResult

logger = logging.getLogger(__name__)

MAX_RETRIES = 2
RETRY_BACKOFF = [0.5, 1.0]  # seconds between retries


@dataclass
class RoadRoute:
    points: list[LatLon]
    distance_m: float
    duration_s: float
    # Visiting order of the intermediate waypoints when OSRM reordered them
    waypoint_order: list[int] | None = None

    @property
    def distance_text(self) -> str:
        return format_distance(self.distance_m)

    @property
    def duration_text(self) -> str:
        return format_duration(self.duration_s)


def _coords(points: list) -> str:
    # OSRM wants lon,lat pairs
    return ";".join(f"{p.longitude:.6f},{p.latitude:.6f}" for p in points)


def _geometry(route: dict) -> list[LatLon]:
    coords = route.get("geometry", {}).get("coordinates", [])
    return [LatLon(latitude=c[1], longitude=c[0]) for c in coords]


class RoutingClient:
    """Road geometry and travel time from an OSRM server."""

    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._client = client or httpx.AsyncClient(
            base_url=settings.osrm_base_url,
            timeout=settings.routing_request_timeout_seconds,
            headers={"Accept": "application/json"},
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def _get_with_retry(self, path: str, params: dict, label: str) -> dict | None:
        """GET with retry on transient failures; returns decoded OSRM body or None."""
        for attempt in range(MAX_RETRIES + 1):
            try:
                resp = await self._client.get(path, params=params)
                resp.raise_for_status()
                data = resp.json()
                if data.get("code") != "Ok":
                    logger.warning("OSRM %s returned %s: %s", label, data.get("code"), data.get("message"))
                    return None
                return data
            except (httpx.ReadTimeout, httpx.ConnectTimeout, httpx.ConnectError) as e:
                if attempt < MAX_RETRIES:
                    wait = RETRY_BACKOFF[attempt]
                    logger.warning(
                        "%s attempt %d/%d failed (%s), retrying in %.1fs",
                        label, attempt + 1, MAX_RETRIES + 1, type(e).__name__, wait,
                    )
                    await asyncio.sleep(wait)
                else:
                    logger.error("%s failed after %d attempts: %s", label, MAX_RETRIES + 1, e)
                    return None
            except httpx.HTTPStatusError as e:
                if e.response.status_code >= 500 and attempt < MAX_RETRIES:
                    wait = RETRY_BACKOFF[attempt]
                    logger.warning(
                        "%s attempt %d/%d got HTTP %d, retrying in %.1fs",
                        label, attempt + 1, MAX_RETRIES + 1, e.response.status_code, wait,
                    )
                    await asyncio.sleep(wait)
                else:
                    logger.error("OSRM %s failed: %s", label, e)
                    return None
            except Exception:
                logger.exception("OSRM %s request failed", label)
                return None
        return None

    async def get_route(
        self,
        origin: LatLon,
        destination: LatLon,
        waypoints: list[LatLon] | None = None,
        optimize_waypoints: bool = False,
    ) -> RoadRoute | None:
        """Road route from origin through waypoints to destination.

        With ``optimize_waypoints`` the trip service reorders the waypoints
        (origin and destination stay fixed) and the chosen order is reported
        in ``waypoint_order``.
        """
        waypoints = waypoints or []
        if optimize_waypoints and len(waypoints) > 1:
            return await self.get_trip(origin, destination, waypoints)

        points = [origin, *waypoints, destination]
        data = await self._get_with_retry(
            f"/route/v1/driving/{_coords(points)}",
            {"overview": "full", "geometries": "geojson"},
            "route",
        )
        if not data or not data.get("routes"):
            return None
        route = data["routes"][0]
        return RoadRoute(
            points=_geometry(route),
            distance_m=float(route.get("distance", 0.0)),
            duration_s=float(route.get("duration", 0.0)),
        )

    async def get_trip(
        self,
        origin: LatLon,
        destination: LatLon,
        waypoints: list[LatLon],
    ) -> RoadRoute | None:
        points = [origin, *waypoints, destination]
        data = await self._get_with_retry(
            f"/trip/v1/driving/{_coords(points)}",
            {
                "source": "first",
                "destination": "last",
                "roundtrip": "false",
                "overview": "full",
                "geometries": "geojson",
            },
            "trip",
        )
        if not data or not data.get("trips"):
            return None
        trip = data["trips"][0]

        # waypoints[i].waypoint_index is the position of input i in the trip
        order = None
        returned = data.get("waypoints") or []
        if len(returned) == len(points):
            middle = range(1, len(points) - 1)
            ranked = sorted(middle, key=lambda i: returned[i].get("waypoint_index", i))
            order = [i - 1 for i in ranked]

        return RoadRoute(
            points=_geometry(trip),
            distance_m=float(trip.get("distance", 0.0)),
            duration_s=float(trip.get("duration", 0.0)),
            waypoint_order=order,
        )

    async def get_eta(self, origin: LatLon, destination: LatLon) -> EtaResult | None:
        data = await self._get_with_retry(
            f"/route/v1/driving/{_coords([origin, destination])}",
            {"overview": "false"},
            "eta",
        )
        if not data or not data.get("routes"):
            return None
        route = data["routes"][0]
        distance = float(route.get("distance", 0.0))
        duration = float(route.get("duration", 0.0))
        return EtaResult(
            distance_text=format_distance(distance),
            duration_text=format_duration(duration),
            duration_seconds=int(round(duration)),
            source="routing",
        )
