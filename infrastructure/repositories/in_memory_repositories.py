"""In-Memory Repository Implementations"""
import asyncio
import itertools
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Iterable, Optional, List, Dict

from domain.auth import UserInDB
from domain.entities import Reservation, Resource, Notification
from domain.enums import ReservationStatus, NotificationSeverity
from domain.exceptions import (
    PersistenceError, ReservationNotFound, Forbidden, InvalidTransition, NotificationNotFound
)
from domain.repositories import ReservationRepository, ResourceDirectory, UserDirectory, NotificationSink

logger = logging.getLogger(__name__)


def _newest_first(reservations: Iterable[Reservation]) -> List[Reservation]:
    return sorted(reservations, key=lambda r: (r.start_time, r.reservation_id), reverse=True)


class InMemoryReservationRepository(ReservationRepository):
    """In-memory implementation of ReservationRepository

    Stored records are never handed out directly; readers get copies, so the
    only way to change a stored status is transition_status.
    """

    def __init__(self, lock_timeout: float = 5.0):
        self._storage: Dict[int, Reservation] = {}
        self._ids = itertools.count(1)
        self._locks: Dict[int, asyncio.Lock] = {}
        self._lock_timeout = lock_timeout

    @asynccontextmanager
    async def resource_lock(self, resource_id: int) -> AsyncIterator[None]:
        """Per-resource mutual exclusion with an acquisition deadline"""
        lock = self._locks.setdefault(resource_id, asyncio.Lock())
        acquire = asyncio.ensure_future(lock.acquire())
        try:
            done, _ = await asyncio.wait({acquire}, timeout=self._lock_timeout)
        except asyncio.CancelledError:
            self._abandon(lock, acquire)
            raise
        if not done:
            self._abandon(lock, acquire)
            logger.warning("Timed out after %ss waiting for resource %s", self._lock_timeout, resource_id)
            raise PersistenceError(f"Calendar for resource {resource_id} is busy, try again")
        try:
            yield
        finally:
            lock.release()

    @staticmethod
    def _abandon(lock: asyncio.Lock, acquire: asyncio.Future) -> None:
        """Give up an acquisition attempt without leaving the lock held"""
        if acquire.done() and not acquire.cancelled():
            lock.release()
        else:
            acquire.cancel()

    async def create(self, reservation: Reservation) -> Reservation:
        """Save reservation to memory with a fresh id"""
        if reservation.status != ReservationStatus.PENDING:
            raise PersistenceError("Only pending reservations can be inserted")
        stored = reservation.model_copy(update={"reservation_id": next(self._ids)}, deep=True)
        self._storage[stored.reservation_id] = stored
        return stored.model_copy(deep=True)

    async def find_by_id(self, reservation_id: int) -> Optional[Reservation]:
        """Find reservation by ID"""
        stored = self._storage.get(reservation_id)
        return stored.model_copy(deep=True) if stored else None

    async def find_by_user(self, user_id: int) -> List[Reservation]:
        return self._select(lambda r: r.user_id == user_id)

    async def find_by_resource(self, resource_id: int) -> List[Reservation]:
        return self._select(lambda r: r.resource_id == resource_id)

    async def find_all(self) -> List[Reservation]:
        return self._select(lambda r: True)

    async def find_overlapping(
        self,
        resource_id: int,
        start: datetime,
        end: datetime,
        statuses: Iterable[ReservationStatus]
    ) -> List[Reservation]:
        wanted = set(statuses)
        return self._select(
            lambda r: r.resource_id == resource_id and r.status in wanted and r.overlaps(start, end)
        )

    async def find_confirmed(self, resource_ids: Optional[Iterable[int]] = None) -> List[Reservation]:
        scope = set(resource_ids) if resource_ids is not None else None
        return self._select(
            lambda r: r.status == ReservationStatus.CONFIRMED and (scope is None or r.resource_id in scope)
        )

    async def find_confirmed_slots(self, resource_id: int, window_start: datetime, window_end: datetime) -> List[Reservation]:
        slots = self._select(
            lambda r: r.resource_id == resource_id
            and r.status == ReservationStatus.CONFIRMED
            and window_start <= r.start_time < window_end
        )
        return sorted(slots, key=lambda r: r.start_time)

    async def find_stale_pending(self, cutoff: datetime) -> List[Reservation]:
        stale = self._select(lambda r: r.is_stale_hold(cutoff))
        return sorted(stale, key=lambda r: r.created_at)

    async def transition_status(
        self,
        reservation_id: int,
        expected: Iterable[ReservationStatus],
        new_status: ReservationStatus,
        user_id: Optional[int] = None
    ) -> Reservation:
        """Compare-and-swap on the stored record.

        No await between the read and the write, so concurrent callers on the
        event loop observe either the old or the new status, never a mix.
        """
        stored = self._storage.get(reservation_id)
        if stored is None:
            raise ReservationNotFound(f"Reservation {reservation_id} not found")
        if user_id is not None and stored.user_id != user_id:
            raise Forbidden(f"Reservation {reservation_id} does not belong to user {user_id}")
        if stored.status not in set(expected):
            raise InvalidTransition(
                f"Reservation {reservation_id} is {stored.status.value}, cannot move to {new_status.value}"
            )

        stored.transition_to(new_status)
        return stored.model_copy(deep=True)

    def _select(self, predicate) -> List[Reservation]:
        return _newest_first(r.model_copy(deep=True) for r in self._storage.values() if predicate(r))


class InMemoryResourceDirectory(ResourceDirectory):
    """In-memory implementation of ResourceDirectory"""

    def __init__(self, resources: Optional[Iterable[Resource]] = None):
        self._storage: Dict[int, Resource] = {}
        for resource in resources or []:
            self.add(resource)

    def add(self, resource: Resource) -> Resource:
        self._storage[resource.resource_id] = resource
        return resource

    async def get(self, resource_id: int) -> Optional[Resource]:
        return self._storage.get(resource_id)

    async def find_by_owner(self, owner_id: int) -> List[Resource]:
        return [r for r in self._storage.values() if r.owner_id == owner_id]

    async def find_all(self) -> List[Resource]:
        return list(self._storage.values())


class InMemoryUserDirectory(UserDirectory):
    """In-memory implementation of UserDirectory"""

    def __init__(self, users: Optional[Iterable[UserInDB]] = None):
        self._storage: Dict[int, UserInDB] = {}
        for user in users or []:
            self.add(user)

    def add(self, user: UserInDB) -> UserInDB:
        self._storage[user.user_id] = user
        return user

    async def find_by_id(self, user_id: int) -> Optional[UserInDB]:
        return self._storage.get(user_id)

    async def find_by_username(self, username: str) -> Optional[UserInDB]:
        for user in self._storage.values():
            if user.username == username:
                return user
        return None


class InMemoryNotificationSink(NotificationSink):
    """Keeps notifications in memory so users can list them"""

    def __init__(self):
        self._storage: Dict[int, Notification] = {}
        self._ids = itertools.count(1)

    async def notify(self, user_id: int, message: str, severity: NotificationSeverity) -> None:
        notification = Notification(
            notification_id=next(self._ids),
            user_id=user_id,
            message=message,
            severity=severity
        )
        self._storage[notification.notification_id] = notification
        logger.debug("Notification %s queued for user %s", notification.notification_id, user_id)

    async def find_by_user(self, user_id: int) -> List[Notification]:
        notifications = [n for n in self._storage.values() if n.user_id == user_id]
        return sorted(notifications, key=lambda n: n.notification_id, reverse=True)

    async def mark_read(self, notification_id: int, user_id: int) -> Notification:
        stored = self._storage.get(notification_id)
        if stored is None or stored.user_id != user_id:
            raise NotificationNotFound(f"Notification {notification_id} not found")
        stored.is_read = True
        return stored.model_copy()
