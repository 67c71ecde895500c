"""Select the passengers a route pass still has to pick up."""

import datetime
import logging

from shuttle.schemas.service import AttendanceRecord, AttendanceStatus, Passenger

logger = logging.getLogger(__name__)

SKIP_STATUSES = {AttendanceStatus.BINDI, AttendanceStatus.GELMEYECEK}


def utc_today() -> datetime.date:
    """Attendance dates are UTC calendar days."""
    return datetime.datetime.now(datetime.timezone.utc).date()


def statuses_on(
    attendance: list[AttendanceRecord],
    today: datetime.date,
) -> dict[str, AttendanceStatus]:
    """Passenger id -> status recorded for a date.

    The write path keeps one record per date; should duplicates slip
    through, the last one in ledger order wins.
    """
    return {r.passenger_id: r.status for r in attendance if r.date == today}


def status_for(
    passenger_id: str,
    attendance: list[AttendanceRecord],
    today: datetime.date,
) -> AttendanceStatus:
    """Attendance status of a passenger for a date, BEKLIYOR when unrecorded."""
    return statuses_on(attendance, today).get(passenger_id, AttendanceStatus.BEKLIYOR)


def has_pickup(passenger: Passenger) -> bool:
    loc = passenger.pickup_location
    if loc is None:
        return False
    # (0, 0) is what unset coordinates end up as
    return not (loc.latitude == 0 or loc.longitude == 0)


def pending_pickups(
    passengers: list[Passenger],
    attendance: list[AttendanceRecord],
    today: datetime.date,
) -> list[Passenger]:
    """Passengers still waiting today, in roster order."""
    statuses = statuses_on(attendance, today)
    pending = []
    for p in passengers:
        if statuses.get(p.id, AttendanceStatus.BEKLIYOR) in SKIP_STATUSES:
            continue
        if not has_pickup(p):
            logger.debug("Passenger %s has no usable pickup location", p.id)
            continue
        pending.append(p)
    return pending
