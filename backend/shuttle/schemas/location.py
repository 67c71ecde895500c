"""Relay wire payloads.

Events travel as ``{"event": <name>, "data": <payload>}`` frames. Field names
on the wire are camelCase to match the mobile clients.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class LatLon(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class LiveLocation(LatLon):
    heading: float | None = None
    speed: float | None = None  # m/s, as reported by the device
    timestamp: float | None = None

    def wire(self) -> dict:
        """Payload as the sender provided it (unset optionals stay absent)."""
        return self.model_dump(exclude_unset=True)


class ServiceRef(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    service_id: str = Field(alias="serviceId", min_length=1)


class SendLocation(ServiceRef):
    location: LiveLocation


class PassengerLocation(ServiceRef):
    passenger_id: str = Field(alias="passengerId", min_length=1)
    location: LiveLocation


class Envelope(BaseModel):
    event: str = Field(min_length=1)
    data: Any = None
