"""Tests for ServiceStore against a throwaway SQLite database."""

import datetime

import pytest
import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from shuttle.core.errors import ServiceNotFoundError
from shuttle.core.store import ServiceStore
from shuttle.models.base import Base
from shuttle.models.tables import Attendance, Notification, Service, ServicePassenger, User
from shuttle.schemas.service import AttendanceStatus

DAY = datetime.date(2026, 3, 2)


@pytest_asyncio.fixture
async def store(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'shuttle.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    session_factory = async_sessionmaker(engine, expire_on_commit=False)

    async with session_factory() as session:
        session.add_all([
            User(id="d1", name="Ahmet", role="driver"),
            User(id="p1", name="Ayşe", pickup_lat=41.015, pickup_lon=28.922, push_token="ExponentPushToken[p1]"),
            User(id="p2", name="Mehmet", pickup_lat=41.019, pickup_lon=28.930),
            User(id="p3", name="Zeynep"),
        ])
        session.add(Service(
            id="svc1", name="Sabah Servisi", driver_id="d1",
            destination_lat=41.0145, destination_lon=28.9570, destination_address="Okul",
        ))
        session.add_all([
            ServicePassenger(service_id="svc1", passenger_id="p2", position=1),
            ServicePassenger(service_id="svc1", passenger_id="p1", position=0),
            ServicePassenger(service_id="svc1", passenger_id="p3", position=2),
        ])
        await session.commit()

    yield ServiceStore(session_factory)
    await engine.dispose()


async def count(store, model) -> int:
    async with store.session_factory() as session:
        return await session.scalar(select(func.count()).select_from(model))


@pytest.mark.asyncio
async def test_service_and_roster_in_position_order(store):
    info = await store.find_service_by_id("svc1")
    assert info.driver_id == "d1"
    assert info.passenger_ids == ["p1", "p2", "p3"]
    assert info.destination.address == "Okul"
    assert await store.find_service_roster("svc1") == ["p1", "p2", "p3"]


@pytest.mark.asyncio
async def test_passengers_without_pickup_have_no_location(store):
    passengers = await store.find_passengers("svc1")
    assert [p.id for p in passengers] == ["p1", "p2", "p3"]
    assert passengers[0].pickup_location.latitude == 41.015
    assert passengers[2].pickup_location is None


@pytest.mark.asyncio
async def test_unknown_service_raises(store):
    with pytest.raises(ServiceNotFoundError):
        await store.find_service_by_id("ghost")
    with pytest.raises(ServiceNotFoundError):
        await store.set_service_active("ghost", True)


@pytest.mark.asyncio
async def test_upsert_keeps_one_record_per_day(store):
    await store.upsert_attendance("svc1", "p1", DAY, AttendanceStatus.BINMEDI)
    record = await store.upsert_attendance("svc1", "p1", DAY, AttendanceStatus.BINDI)

    assert record.status is AttendanceStatus.BINDI
    assert await count(store, Attendance) == 1
    records = await store.find_attendance("svc1", DAY)
    assert [(r.passenger_id, r.status) for r in records] == [("p1", AttendanceStatus.BINDI)]


@pytest.mark.asyncio
async def test_reset_only_touches_the_given_day(store):
    other = DAY + datetime.timedelta(days=1)
    await store.upsert_attendance("svc1", "p1", DAY, AttendanceStatus.BINDI)
    await store.upsert_attendance("svc1", "p2", DAY, AttendanceStatus.BINMEDI)
    await store.upsert_attendance("svc1", "p1", other, AttendanceStatus.GELMEYECEK)

    assert await store.reset_attendance("svc1", DAY) == 2
    assert await store.find_attendance("svc1", DAY) == []
    assert len(await store.find_attendance("svc1")) == 1


@pytest.mark.asyncio
async def test_future_absence_marks_each_date_once(store):
    dates = [DAY + datetime.timedelta(days=3), DAY + datetime.timedelta(days=1), DAY + datetime.timedelta(days=3)]
    records = await store.mark_future_absence("svc1", "p2", dates)
    assert [r.date for r in records] == sorted(set(dates))
    assert all(r.status is AttendanceStatus.GELMEYECEK for r in records)
    assert await count(store, Attendance) == 2


@pytest.mark.asyncio
async def test_active_flag(store):
    await store.set_service_active("svc1", True)
    assert (await store.find_service_by_id("svc1")).active is True


@pytest.mark.asyncio
async def test_notification_history_and_token(store):
    first = await store.save_notification("p1", "Konum", "Paylaş", "INFO", {"serviceId": "svc1"})
    second = await store.save_notification("p1", "Konum", "Paylaş", "INFO", {})
    assert second > first
    assert await count(store, Notification) == 2
    assert await store.find_push_token("p1") == "ExponentPushToken[p1]"
    assert await store.find_push_token("p2") is None
    assert await store.find_push_token("nobody") is None
