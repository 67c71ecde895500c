"""Throttled ETA between two points with a haversine fallback."""

import asyncio
import logging
import time

from shuttle.config import settings
from shuttle.core.geo import (
    CITY_SPEED_KMH,
    distance_between,
    format_distance,
    format_duration,
    travel_seconds,
)
from shuttle.schemas.location import LatLon
from shuttle.schemas.service import EtaResult

logger = logging.getLogger(__name__)

# Below this speed (km/h) the vehicle is treated as stopped and the city
# average is used instead
MIN_MOVING_SPEED_KMH = 10.0


class EtaEstimator:
    """ETA for one tracking session.

    Recomputes at most once per ``interval_seconds``; inside the window the
    previous result is returned as is. The first call of a session always
    computes.
    """

    def __init__(
        self,
        routing=None,
        interval_seconds: float | None = None,
        timeout: float | None = None,
        clock=time.monotonic,
    ) -> None:
        self.routing = routing
        self.interval = (
            interval_seconds if interval_seconds is not None else settings.eta_throttle_seconds
        )
        self.timeout = timeout if timeout is not None else settings.routing_timeout_seconds
        self._clock = clock
        self._last: EtaResult | None = None
        self._last_at: float | None = None

    @property
    def last(self) -> EtaResult | None:
        return self._last

    def reset(self) -> None:
        self._last = None
        self._last_at = None

    async def estimate(
        self,
        origin: LatLon,
        destination: LatLon,
        speed_ms: float | None = None,
    ) -> EtaResult:
        now = self._clock()
        if self._last is not None and now - self._last_at < self.interval:
            return self._last

        result = None
        if self.routing is not None:
            try:
                result = await asyncio.wait_for(
                    self.routing.get_eta(origin, destination), timeout=self.timeout
                )
            except asyncio.TimeoutError:
                logger.warning("ETA lookup timed out after %.1fs", self.timeout)
            except Exception:
                logger.exception("ETA lookup failed")
        if result is None:
            result = self.fallback(origin, destination, speed_ms)

        self._last = result
        self._last_at = now
        return result

    @staticmethod
    def fallback(
        origin: LatLon,
        destination: LatLon,
        speed_ms: float | None = None,
    ) -> EtaResult:
        """Straight-line distance at current speed, or the city average."""
        distance = distance_between(origin, destination)
        speed_kmh = (speed_ms or 0.0) * 3.6
        effective = speed_kmh if speed_kmh > MIN_MOVING_SPEED_KMH else CITY_SPEED_KMH
        seconds = travel_seconds(distance, effective)
        return EtaResult(
            distance_text=format_distance(distance),
            duration_text=format_duration(seconds),
            duration_seconds=int(round(seconds)),
            source="haversine",
        )


class EtaSessions:
    """One estimator per (service, follower).

    Sessions of a service are dropped when its room goes idle or empties,
    so the map only holds services that are live right now.
    """

    def __init__(self, routing=None) -> None:
        self.routing = routing
        self._sessions: dict[tuple[str, str], EtaEstimator] = {}

    def get(self, service_id: str, user_id: str) -> EtaEstimator:
        key = (service_id, user_id)
        estimator = self._sessions.get(key)
        if estimator is None:
            estimator = EtaEstimator(self.routing)
            self._sessions[key] = estimator
        return estimator

    def drop_service(self, service_id: str) -> int:
        keys = [k for k in self._sessions if k[0] == service_id]
        for key in keys:
            del self._sessions[key]
        if keys:
            logger.debug("Dropped %d ETA sessions of service %s", len(keys), service_id)
        return len(keys)

    def __contains__(self, key) -> bool:
        return key in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
