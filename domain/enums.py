"""Domain Enums"""
from enum import Enum


class ReservationStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"


class ResourceStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class UserRole(str, Enum):
    PLAYER = "player"
    OWNER = "owner"
    ADMIN = "admin"


class NotificationSeverity(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class StatsScope(str, Enum):
    PLATFORM = "platform"
    OWNER = "owner"
    RESOURCE = "resource"
