"""Persistence for services, rosters, attendance and notification history."""

import datetime
import logging

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload

from shuttle.core.errors import ServiceNotFoundError
from shuttle.models.tables import Attendance, Notification, Service, ServicePassenger, User
from shuttle.schemas.service import (
    AttendanceRecord,
    AttendanceStatus,
    Passenger,
    Place,
    ServiceInfo,
)

logger = logging.getLogger(__name__)


def _passenger(user: User) -> Passenger:
    pickup = None
    if user.pickup_lat is not None and user.pickup_lon is not None:
        pickup = Place(
            latitude=user.pickup_lat,
            longitude=user.pickup_lon,
            address=user.pickup_address or "",
        )
    return Passenger(id=user.id, name=user.name, pickup_location=pickup)


def _record(row: Attendance) -> AttendanceRecord:
    return AttendanceRecord(
        passenger_id=row.passenger_id,
        date=row.date,
        status=AttendanceStatus(row.status),
    )


class ServiceStore:
    """Reads and writes through to the database; nothing is cached."""

    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    async def _load_service(self, session, service_id: str) -> Service:
        result = await session.execute(
            select(Service)
            .where(Service.id == service_id)
            .options(selectinload(Service.passengers).selectinload(ServicePassenger.passenger))
        )
        service = result.scalar_one_or_none()
        if service is None:
            raise ServiceNotFoundError(service_id)
        return service

    async def find_service_by_id(self, service_id: str) -> ServiceInfo:
        async with self.session_factory() as session:
            service = await self._load_service(session, service_id)
            destination = None
            if service.destination_lat is not None and service.destination_lon is not None:
                destination = Place(
                    latitude=service.destination_lat,
                    longitude=service.destination_lon,
                    address=service.destination_address or "",
                )
            return ServiceInfo(
                id=service.id,
                name=service.name,
                driver_id=service.driver_id,
                passenger_ids=[sp.passenger_id for sp in service.passengers],
                destination=destination,
                active=service.active,
            )

    async def find_service_roster(self, service_id: str) -> list[str]:
        """Passenger ids of a service in roster order."""
        async with self.session_factory() as session:
            service = await self._load_service(session, service_id)
            return [sp.passenger_id for sp in service.passengers]

    async def find_passengers(self, service_id: str) -> list[Passenger]:
        async with self.session_factory() as session:
            service = await self._load_service(session, service_id)
            return [_passenger(sp.passenger) for sp in service.passengers]

    async def find_attendance(
        self, service_id: str, date: datetime.date | None = None
    ) -> list[AttendanceRecord]:
        async with self.session_factory() as session:
            query = select(Attendance).where(Attendance.service_id == service_id)
            if date is not None:
                query = query.where(Attendance.date == date)
            result = await session.execute(query.order_by(Attendance.id))
            return [_record(row) for row in result.scalars()]

    async def upsert_attendance(
        self,
        service_id: str,
        passenger_id: str,
        date: datetime.date,
        status: AttendanceStatus,
    ) -> AttendanceRecord:
        """Set a passenger's status for a date: update the record or create it.

        Concurrent writers race between the lookup and the insert; the
        unique constraint turns the loser's insert into an update.
        """
        async with self.session_factory() as session:
            try:
                row = await self._write_attendance(session, service_id, passenger_id, date, status)
                await session.commit()
            except IntegrityError:
                await session.rollback()
                logger.info(
                    "Attendance insert raced for %s/%s on %s, updating instead",
                    service_id, passenger_id, date,
                )
                row = await self._write_attendance(session, service_id, passenger_id, date, status)
                await session.commit()
            return _record(row)

    @staticmethod
    async def _write_attendance(session, service_id, passenger_id, date, status) -> Attendance:
        result = await session.execute(
            select(Attendance).where(
                Attendance.service_id == service_id,
                Attendance.passenger_id == passenger_id,
                Attendance.date == date,
            )
        )
        row = result.scalar_one_or_none()
        if row is None:
            row = Attendance(
                service_id=service_id,
                passenger_id=passenger_id,
                date=date,
                status=status.value,
            )
            session.add(row)
        else:
            row.status = status.value
        await session.flush()
        return row

    async def reset_attendance(self, service_id: str, date: datetime.date) -> int:
        """Delete every record of a service for a date (trip end)."""
        async with self.session_factory() as session:
            result = await session.execute(
                delete(Attendance).where(
                    Attendance.service_id == service_id,
                    Attendance.date == date,
                )
            )
            await session.commit()
            logger.info("Reset %d attendance records for %s on %s", result.rowcount, service_id, date)
            return result.rowcount

    async def mark_future_absence(
        self,
        service_id: str,
        passenger_id: str,
        dates: list[datetime.date],
    ) -> list[AttendanceRecord]:
        records = []
        for d in sorted(set(dates)):
            records.append(
                await self.upsert_attendance(service_id, passenger_id, d, AttendanceStatus.GELMEYECEK)
            )
        return records

    async def set_service_active(self, service_id: str, active: bool) -> None:
        async with self.session_factory() as session:
            service = await session.get(Service, service_id)
            if service is None:
                raise ServiceNotFoundError(service_id)
            service.active = active
            await session.commit()

    async def find_push_token(self, user_id: str) -> str | None:
        async with self.session_factory() as session:
            user = await session.get(User, user_id)
            return user.push_token if user else None

    async def save_notification(
        self,
        user_id: str,
        title: str,
        body: str,
        type: str,
        data: dict,
    ) -> int:
        async with self.session_factory() as session:
            row = Notification(user_id=user_id, title=title, body=body, type=type, data=data)
            session.add(row)
            await session.commit()
            return row.id
