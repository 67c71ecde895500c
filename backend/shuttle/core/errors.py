"""Exception types shared by the relay, collaborators and client."""


class ShuttleError(Exception):
    """Base class for all shuttle tracking errors."""


class RelayProtocolError(ShuttleError):
    """A relay message could not be decoded or failed validation."""


class ServiceNotFoundError(ShuttleError):
    def __init__(self, service_id: str) -> None:
        super().__init__(f"Service {service_id} not found")
        self.service_id = service_id


class PushDeliveryError(ShuttleError):
    """Push notification could not be delivered to one recipient."""

    def __init__(self, user_id: str, reason: str) -> None:
        super().__init__(f"Push to {user_id} failed: {reason}")
        self.user_id = user_id
        self.reason = reason


class ConnectionFailedError(ShuttleError):
    """All reconnection attempts to the relay were exhausted."""
