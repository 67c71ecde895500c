"""Service REST endpoints: attendance, pending pickups, route and ETA."""

import logging

from fastapi import APIRouter, HTTPException, Query

from shuttle.core.attendance import pending_pickups, utc_today
from shuttle.core.errors import ServiceNotFoundError
from shuttle.schemas.location import LatLon
from shuttle.schemas.service import (
    ActiveToggle,
    AttendanceRecord,
    AttendanceReset,
    AttendanceUpdate,
    EtaResult,
    FutureAbsence,
    Passenger,
    RoutePlan,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/services", tags=["services"])

# Will be set by main.py
store = None
planner = None
registry = None
eta_sessions = None


def _require_store():
    if store is None:
        raise HTTPException(status_code=503, detail="Service not ready")
    return store


def _driver_location(service_id: str) -> LatLon | None:
    room = registry.room(service_id) if registry else None
    return room.latest_location if room else None


@router.get("/{service_id}/pending", response_model=list[Passenger])
async def get_pending(service_id: str):
    """Passengers still to be picked up today, in roster order."""
    db = _require_store()
    today = utc_today()
    try:
        passengers = await db.find_passengers(service_id)
    except ServiceNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    attendance = await db.find_attendance(service_id, today)
    return pending_pickups(passengers, attendance, today)


@router.get("/{service_id}/route", response_model=RoutePlan)
async def get_route(
    service_id: str,
    lat: float | None = Query(None, ge=-90, le=90),
    lon: float | None = Query(None, ge=-180, le=180),
    optimize: bool = False,
):
    """Visit order and road geometry from the given or the driver's last position."""
    if planner is None:
        raise HTTPException(status_code=503, detail="Service not ready")
    if lat is not None and lon is not None:
        origin = LatLon(latitude=lat, longitude=lon)
    else:
        origin = _driver_location(service_id)
    if origin is None:
        raise HTTPException(status_code=409, detail="No driver location for this service")
    try:
        return await planner.plan_for(service_id, origin, optimize)
    except ServiceNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/{service_id}/eta", response_model=EtaResult)
async def get_eta(
    service_id: str,
    user_id: str,
    lat: float = Query(ge=-90, le=90),
    lon: float = Query(ge=-180, le=180),
):
    """ETA of the driver to a point, recomputed at most every throttle interval."""
    room = registry.room(service_id) if registry else None
    if room is None or room.latest_location is None:
        raise HTTPException(status_code=409, detail="Driver is not sharing a location")
    if eta_sessions is None:
        raise HTTPException(status_code=503, detail="Service not ready")
    estimator = eta_sessions.get(service_id, user_id)
    driver = room.latest_location
    return await estimator.estimate(driver, LatLon(latitude=lat, longitude=lon), driver.speed)


@router.post("/{service_id}/attendance", response_model=AttendanceRecord)
async def update_attendance(service_id: str, body: AttendanceUpdate):
    db = _require_store()
    date = body.date or utc_today()
    try:
        return await db.upsert_attendance(service_id, body.passenger_id, date, body.status)
    except Exception:
        logger.exception("Attendance update failed for %s/%s", service_id, body.passenger_id)
        raise HTTPException(status_code=500, detail="Attendance could not be updated")


@router.post("/{service_id}/attendance/reset")
async def reset_attendance(service_id: str, body: AttendanceReset):
    """Trip end: clear the day's attendance and forget the ETA sessions."""
    db = _require_store()
    date = body.date or utc_today()
    deleted = await db.reset_attendance(service_id, date)
    if eta_sessions is not None:
        eta_sessions.drop_service(service_id)
    return {"service_id": service_id, "date": date.isoformat(), "deleted": deleted}


@router.post("/{service_id}/attendance/future", response_model=list[AttendanceRecord])
async def mark_future_absence(service_id: str, body: FutureAbsence):
    db = _require_store()
    today = utc_today()
    if any(d < today for d in body.dates):
        raise HTTPException(status_code=422, detail="Absence dates must not be in the past")
    return await db.mark_future_absence(service_id, body.passenger_id, body.dates)


@router.post("/{service_id}/active")
async def set_active(service_id: str, body: ActiveToggle):
    db = _require_store()
    try:
        await db.set_service_active(service_id, body.active)
    except ServiceNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"service_id": service_id, "active": body.active}


@router.get("/{service_id}/room")
async def get_room(service_id: str):
    """Live room diagnostics: members, state and last driver location."""
    room = registry.room(service_id) if registry else None
    if room is None:
        return {"service_id": service_id, "state": "idle", "members": [], "latest_location": None}
    return room.snapshot()
