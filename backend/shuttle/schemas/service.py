import datetime
import enum

from pydantic import BaseModel, Field

from shuttle.schemas.location import LatLon


class AttendanceStatus(str, enum.Enum):
    BEKLIYOR = "BEKLIYOR"  # pending
    BINDI = "BINDI"  # boarded
    BINMEDI = "BINMEDI"  # no-show
    GELMEYECEK = "GELMEYECEK"  # absent in advance


class Place(LatLon):
    address: str = ""


class Passenger(BaseModel):
    id: str
    name: str = ""
    pickup_location: Place | None = None


class AttendanceRecord(BaseModel):
    passenger_id: str
    date: datetime.date
    status: AttendanceStatus


class ServiceInfo(BaseModel):
    id: str
    name: str = ""
    driver_id: str
    passenger_ids: list[str] = []
    destination: Place | None = None
    active: bool = False


class EtaResult(BaseModel):
    distance_text: str
    duration_text: str
    duration_seconds: int
    source: str = "routing"  # routing | haversine


class RoutePlan(BaseModel):
    order: list[Passenger] = []
    last_point: LatLon
    points: list[LatLon] = []  # road geometry
    distance_m: float = 0.0
    duration_s: float = 0.0
    distance_text: str = ""
    duration_text: str = ""
    source: str = "routing"
    optimized: bool = False


class AttendanceUpdate(BaseModel):
    passenger_id: str
    status: AttendanceStatus
    date: datetime.date | None = None


class AttendanceReset(BaseModel):
    date: datetime.date | None = None


class FutureAbsence(BaseModel):
    passenger_id: str
    dates: list[datetime.date] = Field(min_length=1)


class ActiveToggle(BaseModel):
    active: bool


class GeocodingResult(BaseModel):
    latitude: float
    longitude: float
    address: str
    display_name: str = ""
