"""Domain Repository Interfaces"""
from abc import ABC, abstractmethod
from typing import AsyncContextManager, Iterable, Optional, List
from datetime import datetime

from domain.auth import UserInDB
from domain.entities import Reservation, Resource, Notification
from domain.enums import ReservationStatus, NotificationSeverity


class ReservationRepository(ABC):
    """Repository interface for Reservation Aggregate

    List queries return reservations ordered by start time, newest first,
    and an empty list when nothing matches.
    """

    @abstractmethod
    def resource_lock(self, resource_id: int) -> AsyncContextManager[None]:
        """Exclusive write section for one resource's calendar.

        Overlap checks and the write that depends on them must run inside it.
        Raises PersistenceError when the lock cannot be acquired in time.
        """
        pass

    @abstractmethod
    async def create(self, reservation: Reservation) -> Reservation:
        """Insert a pending reservation and assign its id"""
        pass

    @abstractmethod
    async def find_by_id(self, reservation_id: int) -> Optional[Reservation]:
        """Find reservation by ID"""
        pass

    @abstractmethod
    async def find_by_user(self, user_id: int) -> List[Reservation]:
        """Find reservations made by a user"""
        pass

    @abstractmethod
    async def find_by_resource(self, resource_id: int) -> List[Reservation]:
        """Find reservations on a resource"""
        pass

    @abstractmethod
    async def find_all(self) -> List[Reservation]:
        """Find all reservations"""
        pass

    @abstractmethod
    async def find_overlapping(
        self,
        resource_id: int,
        start: datetime,
        end: datetime,
        statuses: Iterable[ReservationStatus]
    ) -> List[Reservation]:
        """Reservations on the resource in one of the statuses overlapping [start, end)"""
        pass

    @abstractmethod
    async def find_confirmed(self, resource_ids: Optional[Iterable[int]] = None) -> List[Reservation]:
        """Confirmed reservations, optionally restricted to some resources"""
        pass

    @abstractmethod
    async def find_confirmed_slots(self, resource_id: int, window_start: datetime, window_end: datetime) -> List[Reservation]:
        """Confirmed reservations on the resource starting inside [window_start, window_end)"""
        pass

    @abstractmethod
    async def find_stale_pending(self, cutoff: datetime) -> List[Reservation]:
        """Pending reservations created at or before the cutoff"""
        pass

    @abstractmethod
    async def transition_status(
        self,
        reservation_id: int,
        expected: Iterable[ReservationStatus],
        new_status: ReservationStatus,
        user_id: Optional[int] = None
    ) -> Reservation:
        """Compare-and-swap status change, the only way a status is mutated.

        Raises ReservationNotFound, Forbidden when user_id is given and does not
        own the reservation, or InvalidTransition when the stored status is not
        in the expected set or the state machine disallows the change.
        """
        pass


class ResourceDirectory(ABC):
    """Venue/resource collaborator"""

    @abstractmethod
    async def get(self, resource_id: int) -> Optional[Resource]:
        pass

    @abstractmethod
    async def find_by_owner(self, owner_id: int) -> List[Resource]:
        pass

    @abstractmethod
    async def find_all(self) -> List[Resource]:
        pass


class UserDirectory(ABC):
    """Identity collaborator"""

    @abstractmethod
    async def find_by_id(self, user_id: int) -> Optional[UserInDB]:
        pass

    @abstractmethod
    async def find_by_username(self, username: str) -> Optional[UserInDB]:
        pass


class NotificationSink(ABC):
    """Fire-and-forget notification delivery"""

    @abstractmethod
    async def notify(self, user_id: int, message: str, severity: NotificationSeverity) -> None:
        pass

    @abstractmethod
    async def find_by_user(self, user_id: int) -> List[Notification]:
        pass

    @abstractmethod
    async def mark_read(self, notification_id: int, user_id: int) -> Notification:
        """Flag one of the user's notifications as read, idempotent"""
        pass
