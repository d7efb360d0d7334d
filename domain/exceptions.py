"""Domain Exceptions - reservation error taxonomy"""
from typing import Any, Optional


class ReservationError(Exception):
    """Base class for reservation subsystem errors"""
    status_code: int = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class SlotUnavailable(ReservationError):
    """Requested interval overlaps an existing booking"""
    status_code = 409


class InvalidInterval(ReservationError):
    """Malformed, inverted or past time interval"""
    status_code = 400


class ResourceNotFound(ReservationError):
    """Resource is unknown or not approved for booking"""
    status_code = 404


class ReservationNotFound(ReservationError):
    """Reservation id is unknown"""
    status_code = 404


class NotificationNotFound(ReservationError):
    """Notification id is unknown to the requesting user"""
    status_code = 404


class Forbidden(ReservationError):
    status_code = 403


class InvalidTransition(ReservationError):
    """Status change out of a terminal or wrong source state"""
    status_code = 409


class PersistenceError(ReservationError):
    """Storage or transaction failure"""
    status_code = 503

    def __init__(self, message: str, fallback: Optional[Any] = None):
        super().__init__(message)
        self.fallback = fallback
