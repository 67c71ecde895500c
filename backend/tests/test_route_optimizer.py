"""Tests for the greedy visit order and route planning."""

import asyncio
import itertools

import pytest

from shuttle.core.route_optimizer import RouteOptimizer, greedy_order, path_length_m
from shuttle.core.routing_client import RoadRoute
from shuttle.schemas.location import LatLon
from shuttle.schemas.service import Passenger, Place

ORIGIN = LatLon(latitude=41.0082, longitude=28.9784)


def stop(pid: str, lat: float, lon: float) -> Passenger:
    return Passenger(id=pid, pickup_location=Place(latitude=lat, longitude=lon))


def istanbul_stops() -> list[Passenger]:
    return [
        stop("cevizlibag", 41.0150, 28.9220),
        stop("topkapi", 41.0190, 28.9300),
        stop("capa", 41.0165, 28.9390),
        stop("aksaray", 41.0105, 28.9510),
    ]


class FakeRouting:
    def __init__(self, result=None, delay: float = 0.0, error: Exception | None = None) -> None:
        self.result = result
        self.delay = delay
        self.error = error
        self.calls = []

    async def get_route(self, origin, destination, waypoints=None, optimize_waypoints=False):
        self.calls.append((origin, destination, waypoints, optimize_waypoints))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.result


def test_nearest_first_along_meridian():
    pending = [stop("c", 0, 3), stop("a", 0, 1), stop("b", 0, 2)]
    result = greedy_order(LatLon(latitude=0, longitude=0), pending)
    assert [p.id for p in result.order] == ["a", "b", "c"]
    assert result.last_point == LatLon(latitude=0, longitude=3)


def test_tie_goes_to_first_in_input():
    pending = [stop("east", 0, 1), stop("west", 0, -1)]
    result = greedy_order(LatLon(latitude=0, longitude=0), pending)
    assert [p.id for p in result.order] == ["east", "west"]

    result = greedy_order(LatLon(latitude=0, longitude=0), list(reversed(pending)))
    assert [p.id for p in result.order] == ["west", "east"]


def test_empty_pending_returns_origin_or_destination():
    empty = greedy_order(ORIGIN, [])
    assert empty.order == []
    assert empty.last_point == ORIGIN

    dest = LatLon(latitude=41.0145, longitude=28.9570)
    assert greedy_order(ORIGIN, [], dest).last_point == dest


def test_destination_does_not_compete():
    # Destination is closer than the only pickup, but still comes last
    dest = Place(latitude=0, longitude=0.5, address="Okul")
    result = greedy_order(LatLon(latitude=0, longitude=0), [stop("a", 0, 2)], dest)
    assert [p.id for p in result.order] == ["a"]
    assert result.last_point == LatLon(latitude=0, longitude=0.5)


def test_deterministic():
    pending = istanbul_stops()
    first = greedy_order(ORIGIN, pending)
    for _ in range(5):
        assert [p.id for p in greedy_order(ORIGIN, pending).order] == [p.id for p in first.order]


def test_greedy_not_longer_than_input_order():
    origin = LatLon(latitude=0, longitude=0)
    base = [stop(f"s{i}", 0.001 * i, i * 0.5) for i in range(1, 5)]
    for perm in itertools.permutations(base):
        perm = list(perm)
        ordered = greedy_order(origin, perm).order
        greedy_len = path_length_m(origin, [p.pickup_location for p in ordered])
        input_len = path_length_m(origin, [p.pickup_location for p in perm])
        assert greedy_len <= input_len + 1e-6


@pytest.mark.asyncio
async def test_plan_passes_greedy_order_as_waypoints():
    road = RoadRoute(points=[ORIGIN], distance_m=5200.0, duration_s=900.0)
    routing = FakeRouting(result=road)
    optimizer = RouteOptimizer(routing)
    dest = Place(latitude=41.0145, longitude=28.9570)

    plan = await optimizer.plan(ORIGIN, istanbul_stops(), dest)

    origin, destination, waypoints, optimize = routing.calls[0]
    assert destination == LatLon(latitude=41.0145, longitude=28.9570)
    assert waypoints == [
        LatLon(latitude=p.pickup_location.latitude, longitude=p.pickup_location.longitude)
        for p in plan.order
    ]
    assert optimize is False
    assert plan.source == "routing"
    assert plan.distance_text == "5.2 km"
    assert plan.duration_text == "15 dk"


@pytest.mark.asyncio
async def test_plan_without_destination_ends_at_last_pickup():
    routing = FakeRouting(result=RoadRoute(points=[], distance_m=1.0, duration_s=1.0))
    plan = await RouteOptimizer(routing).plan(ORIGIN, istanbul_stops())
    _, destination, waypoints, _ = routing.calls[0]
    last = plan.order[-1].pickup_location
    assert destination == LatLon(latitude=last.latitude, longitude=last.longitude)
    assert len(waypoints) == 3


@pytest.mark.asyncio
async def test_routing_order_takes_precedence_when_optimizing():
    routing = FakeRouting(
        result=RoadRoute(points=[], distance_m=1.0, duration_s=1.0, waypoint_order=[2, 1, 0])
    )
    dest = Place(latitude=41.0145, longitude=28.9570)
    optimizer = RouteOptimizer(routing)
    greedy = [p.id for p in optimizer.order(ORIGIN, istanbul_stops()[:3], dest).order]

    plan = await optimizer.plan(ORIGIN, istanbul_stops()[:3], dest, optimize_waypoints=True)
    assert [p.id for p in plan.order] == list(reversed(greedy))
    assert plan.optimized


@pytest.mark.asyncio
async def test_routing_failure_falls_back_to_straight_lines():
    optimizer = RouteOptimizer(FakeRouting(error=RuntimeError("boom")))
    plan = await optimizer.plan(ORIGIN, istanbul_stops())
    assert plan.source == "haversine"
    assert len(plan.points) == 5
    assert plan.distance_m > 0
    assert plan.duration_text.endswith("dk")


@pytest.mark.asyncio
async def test_routing_timeout_falls_back():
    optimizer = RouteOptimizer(FakeRouting(result=None, delay=1.0), timeout=0.01)
    plan = await optimizer.plan(ORIGIN, istanbul_stops())
    assert plan.source == "haversine"


@pytest.mark.asyncio
async def test_plan_with_nothing_to_visit():
    routing = FakeRouting()
    plan = await RouteOptimizer(routing).plan(ORIGIN, [])
    assert plan.order == []
    assert plan.last_point == ORIGIN
    assert routing.calls == []
