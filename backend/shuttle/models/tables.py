import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shuttle.models.base import Base


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    role: Mapped[str] = mapped_column(String(16), nullable=False, default="passenger")
    pickup_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    pickup_lon: Mapped[float | None] = mapped_column(Float, nullable=True)
    pickup_address: Mapped[str] = mapped_column(String(512), nullable=False, default="")
    push_token: Mapped[str | None] = mapped_column(String(255), nullable=True)


class Service(Base):
    __tablename__ = "services"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    plate: Mapped[str] = mapped_column(String(20), nullable=False, default="")
    code: Mapped[str] = mapped_column(String(10), nullable=False, default="")
    driver_id: Mapped[str] = mapped_column(String(64), ForeignKey("users.id"), nullable=False)
    destination_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    destination_lon: Mapped[float | None] = mapped_column(Float, nullable=True)
    destination_address: Mapped[str] = mapped_column(String(512), nullable=False, default="")
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    passengers: Mapped[list["ServicePassenger"]] = relationship(
        back_populates="service", order_by="ServicePassenger.position"
    )


class ServicePassenger(Base):
    __tablename__ = "service_passengers"

    service_id: Mapped[str] = mapped_column(String(64), ForeignKey("services.id"), primary_key=True)
    passenger_id: Mapped[str] = mapped_column(String(64), ForeignKey("users.id"), primary_key=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)  # roster order

    service: Mapped["Service"] = relationship(back_populates="passengers")
    passenger: Mapped["User"] = relationship()


class Attendance(Base):
    __tablename__ = "attendance"
    __table_args__ = (
        UniqueConstraint("service_id", "passenger_id", "date", name="uq_attendance_day"),
        Index("ix_attendance_service_date", "service_id", "date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    service_id: Mapped[str] = mapped_column(String(64), ForeignKey("services.id"), nullable=False)
    passenger_id: Mapped[str] = mapped_column(String(64), ForeignKey("users.id"), nullable=False)
    date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )


class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), ForeignKey("users.id"), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False, default="")
    type: Mapped[str] = mapped_column(String(40), nullable=False, default="INFO")
    data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
