"""Domain Entities - Aggregates"""
from pydantic import BaseModel, Field
from datetime import datetime, timezone
from typing import Optional, Dict, FrozenSet
from decimal import Decimal, ROUND_HALF_UP

from domain.enums import ReservationStatus, ResourceStatus, NotificationSeverity
from domain.exceptions import InvalidTransition
from domain.value_objects import TimeSlot


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Allowed status changes; every status missing from the keys is terminal.
ALLOWED_TRANSITIONS: Dict[ReservationStatus, FrozenSet[ReservationStatus]] = {
    ReservationStatus.PENDING: frozenset({
        ReservationStatus.CONFIRMED,
        ReservationStatus.CANCELLED,
        ReservationStatus.REJECTED,
    }),
}

TERMINAL_STATUSES = frozenset(
    status for status in ReservationStatus if status not in ALLOWED_TRANSITIONS
)


class Reservation(BaseModel):
    """Reservation Aggregate Root Entity"""

    # Identity (assigned by the store)
    reservation_id: Optional[int] = None

    # References to other contexts
    user_id: int
    resource_id: int

    # Time window, stored in UTC
    start_time: datetime
    end_time: datetime

    total_price: Decimal = Field(ge=0)
    status: ReservationStatus = ReservationStatus.PENDING

    # Metadata
    created_at: datetime = Field(default_factory=utcnow)
    modified_at: datetime = Field(default_factory=utcnow)
    version: int = 1

    class Config:
        from_attributes = True

    # ==================== FACTORY METHOD ====================
    @staticmethod
    def create(
        user_id: int,
        resource_id: int,
        slot: TimeSlot,
        total_price: Decimal,
        created_at: Optional[datetime] = None
    ) -> "Reservation":
        """Create new pending reservation"""
        now = created_at or utcnow()
        return Reservation(
            user_id=user_id,
            resource_id=resource_id,
            start_time=slot.start.astimezone(timezone.utc),
            end_time=slot.end.astimezone(timezone.utc),
            total_price=total_price,
            status=ReservationStatus.PENDING,
            created_at=now,
            modified_at=now
        )

    # ==================== STATE TRANSITION METHODS ====================
    def transition_to(self, new_status: ReservationStatus) -> None:
        """Apply a status change allowed by the state machine"""
        if new_status not in ALLOWED_TRANSITIONS.get(self.status, frozenset()):
            raise InvalidTransition(
                f"Cannot move reservation {self.reservation_id} from {self.status.value} to {new_status.value}"
            )

        self.status = new_status
        self.modified_at = utcnow()
        self.version += 1

    # ==================== QUERY METHODS ====================
    @property
    def slot(self) -> TimeSlot:
        return TimeSlot(start=self.start_time, end=self.end_time)

    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return self.start_time < end and start < self.end_time

    def is_stale_hold(self, cutoff: datetime) -> bool:
        """Pending hold created at or before the cutoff"""
        return self.status == ReservationStatus.PENDING and self.created_at <= cutoff


class Resource(BaseModel):
    """Bookable resource (court, field) owned by a venue owner"""
    resource_id: int
    owner_id: int
    name: str
    category: str
    price_per_hour: Decimal = Field(ge=0)
    status: ResourceStatus = ResourceStatus.PENDING

    @property
    def is_approved(self) -> bool:
        return self.status == ResourceStatus.APPROVED

    def quote(self, slot: TimeSlot) -> Decimal:
        """Price for a slot: duration in hours times the hourly rate"""
        price = slot.duration_hours() * self.price_per_hour
        return price.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


class Notification(BaseModel):
    notification_id: int
    user_id: int
    message: str
    severity: NotificationSeverity = NotificationSeverity.INFO
    is_read: bool = False
    created_at: datetime = Field(default_factory=utcnow)


# ==================== READ PROJECTIONS ====================

class ReservationDetails(BaseModel):
    """Reservation joined with resource name and category"""
    reservation_id: int
    user_id: int
    resource_id: int
    resource_name: str
    category: str
    start_time: datetime
    end_time: datetime
    total_price: Decimal
    status: ReservationStatus
    created_at: datetime


class ReservationAdminView(ReservationDetails):
    """Owner/admin facing view, adds requester identity"""
    user_first_name: str = ""
    user_last_name: str = ""
