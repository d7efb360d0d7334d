"""Application Services - Business use cases"""
import logging
from collections import Counter
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional

from domain.auth import User
from domain.entities import (
    Reservation, Resource, Notification, ReservationDetails, ReservationAdminView, utcnow
)
from domain.enums import ReservationStatus, NotificationSeverity
from domain.exceptions import (
    ReservationError, SlotUnavailable, InvalidInterval, ResourceNotFound,
    ReservationNotFound, Forbidden, InvalidTransition, PersistenceError
)
from domain.repositories import ReservationRepository, ResourceDirectory, UserDirectory, NotificationSink
from domain.value_objects import TimeSlot, AggregateStat, ResourceStat

logger = logging.getLogger(__name__)

SLOT_UNAVAILABLE_MESSAGE = "Selected time slot is no longer available"


def ensure_can_manage(resource: Resource, viewer: User) -> None:
    """Owners manage their own resources, admins manage all of them"""
    if not viewer.is_admin and resource.owner_id != viewer.user_id:
        raise Forbidden(f"User {viewer.user_id} does not manage resource {resource.resource_id}")


def summarize_reservations(reservations: Iterable[Reservation], tz: tzinfo) -> AggregateStat:
    """Count, revenue and peak start hour over the confirmed reservations.

    Peak hour is the local hour in which most reservations start; equal counts
    resolve to the smallest hour.
    """
    confirmed = [r for r in reservations if r.status == ReservationStatus.CONFIRMED]
    if not confirmed:
        return AggregateStat.empty()

    revenue = sum((r.total_price for r in confirmed), Decimal("0"))
    starts_per_hour = Counter(r.start_time.astimezone(tz).hour for r in confirmed)
    peak_hour = min(starts_per_hour, key=lambda hour: (-starts_per_hour[hour], hour))

    return AggregateStat(
        total_bookings=len(confirmed),
        total_revenue=revenue,
        peak_hour=peak_hour,
        popular_time=AggregateStat.format_hour(peak_hour)
    )


class ResourceCalendar:
    """Answers whether an interval is free on a resource"""

    def __init__(self, repository: ReservationRepository):
        self.repository = repository

    async def is_free(
        self,
        resource_id: int,
        start: datetime,
        end: datetime,
        exclude_id: Optional[int] = None
    ) -> bool:
        """True iff no confirmed reservation on the resource overlaps [start, end)"""
        confirmed = await self.repository.find_overlapping(
            resource_id, start, end, [ReservationStatus.CONFIRMED]
        )
        return all(r.reservation_id == exclude_id for r in confirmed)

    async def live_holds(
        self,
        resource_id: int,
        start: datetime,
        end: datetime,
        hold_cutoff: datetime
    ) -> List[Reservation]:
        """Pending holds overlapping [start, end) that are younger than the cutoff"""
        pending = await self.repository.find_overlapping(
            resource_id, start, end, [ReservationStatus.PENDING]
        )
        return [r for r in pending if r.created_at > hold_cutoff]


class ReservationService:
    """Reservation lifecycle: hold, confirm, cancel, expire"""

    def __init__(self,
                 repository: ReservationRepository,
                 resources: ResourceDirectory,
                 notifier: NotificationSink,
                 users: Optional[UserDirectory] = None,
                 calendar: Optional[ResourceCalendar] = None,
                 hold_ttl: timedelta = timedelta(minutes=15),
                 holds_block_slots: bool = True,
                 tz: tzinfo = timezone.utc,
                 clock: Callable[[], datetime] = utcnow):
        self.repository = repository
        self.resources = resources
        self.notifier = notifier
        self.users = users
        self.calendar = calendar or ResourceCalendar(repository)
        self.hold_ttl = hold_ttl
        self.holds_block_slots = holds_block_slots
        self.tz = tz
        self.clock = clock

    # ==================== WRITE PATH ====================
    async def request_booking(
        self,
        user_id: int,
        resource_id: int,
        start: datetime,
        end: datetime
    ) -> Reservation:
        """Place a pending hold on a free interval"""
        slot = self._validate_interval(start, end)

        resource = await self.resources.get(resource_id)
        if resource is None or not resource.is_approved:
            raise ResourceNotFound(f"Resource {resource_id} not found")

        price = resource.quote(slot)

        async with self.repository.resource_lock(resource_id):
            if not await self.calendar.is_free(resource_id, slot.start, slot.end):
                raise SlotUnavailable(SLOT_UNAVAILABLE_MESSAGE)
            if self.holds_block_slots and await self.calendar.live_holds(
                resource_id, slot.start, slot.end, self._hold_cutoff()
            ):
                raise SlotUnavailable(SLOT_UNAVAILABLE_MESSAGE)

            reservation = await self._persist(
                Reservation.create(
                    user_id=user_id,
                    resource_id=resource_id,
                    slot=slot,
                    total_price=price,
                    created_at=self.clock()
                )
            )

        logger.info(
            "Hold %s placed on resource %s for user %s (%s - %s, price %s)",
            reservation.reservation_id, resource_id, user_id, slot.start.isoformat(), slot.end.isoformat(), price
        )
        await self._notify(
            user_id,
            f"Your booking for {resource.name} is on hold until payment is completed.",
            NotificationSeverity.INFO
        )
        return reservation

    async def confirm_payment(self, reservation_id: int, user_id: Optional[int] = None) -> Reservation:
        """Flip a pending hold to confirmed after a successful payment.

        When user_id is given the hold must belong to that user.
        """
        reservation = await self._get_or_raise(reservation_id)
        self._ensure_holder(reservation, user_id)

        async with self.repository.resource_lock(reservation.resource_id):
            # Re-read inside the write section
            current = await self._get_or_raise(reservation_id)
            if current.status != ReservationStatus.PENDING:
                raise InvalidTransition(
                    f"Reservation {reservation_id} is {current.status.value}, only pending holds can be confirmed"
                )

            if not await self.calendar.is_free(
                current.resource_id, current.start_time, current.end_time, exclude_id=reservation_id
            ):
                await self._release_losing_hold(current)
                raise SlotUnavailable(SLOT_UNAVAILABLE_MESSAGE)

            confirmed = await self.repository.transition_status(
                reservation_id, [ReservationStatus.PENDING], ReservationStatus.CONFIRMED, user_id=user_id
            )

        logger.info("Reservation %s confirmed on resource %s", reservation_id, confirmed.resource_id)
        await self._notify(
            confirmed.user_id,
            "Payment received, your booking is confirmed.",
            NotificationSeverity.SUCCESS
        )
        return confirmed

    async def reject_payment(self, reservation_id: int, user_id: Optional[int] = None) -> Reservation:
        """Payment collaborator reported a failure"""
        rejected = await self.repository.transition_status(
            reservation_id, [ReservationStatus.PENDING], ReservationStatus.REJECTED, user_id=user_id
        )
        logger.info("Reservation %s rejected after failed payment", reservation_id)
        await self._notify(
            rejected.user_id,
            "Payment failed, your booking hold was released.",
            NotificationSeverity.ERROR
        )
        return rejected

    async def cancel_by_user(self, reservation_id: int, user_id: int) -> Reservation:
        """User withdraws their own pending hold"""
        cancelled = await self.repository.transition_status(
            reservation_id, [ReservationStatus.PENDING], ReservationStatus.CANCELLED, user_id=user_id
        )
        logger.info("Reservation %s cancelled by user %s", reservation_id, user_id)
        await self._notify(user_id, "Your booking was cancelled.", NotificationSeverity.INFO)
        return cancelled

    async def expire_stale_holds(self, now: Optional[datetime] = None) -> int:
        """Cancel pending holds older than the hold TTL, returns how many were cancelled"""
        cutoff = (now or self.clock()) - self.hold_ttl
        expired = 0

        for hold in await self.repository.find_stale_pending(cutoff):
            try:
                await self.repository.transition_status(
                    hold.reservation_id, [ReservationStatus.PENDING], ReservationStatus.CANCELLED
                )
            except InvalidTransition:
                # Confirmed or cancelled since it was read
                continue
            expired += 1
            await self._notify(
                hold.user_id,
                "Your booking hold expired before payment was completed.",
                NotificationSeverity.WARNING
            )

        if expired:
            logger.info("Expired %s stale holds created before %s", expired, cutoff.isoformat())
        return expired

    # ==================== READ PATH ====================
    async def get_reservation(self, reservation_id: int, viewer: User) -> ReservationAdminView:
        """Visible to the booking user, the resource owner and admins"""
        reservation = await self._get_or_raise(reservation_id)
        resource = await self.resources.get(reservation.resource_id)

        if reservation.user_id != viewer.user_id:
            if resource is None:
                if not viewer.is_admin:
                    raise Forbidden(f"Reservation {reservation_id} is not visible to user {viewer.user_id}")
            else:
                ensure_can_manage(resource, viewer)

        views = await self._admin_views([reservation])
        return views[0]

    async def list_user_reservations(self, user_id: int) -> List[ReservationDetails]:
        """Reservations made by a user, newest start first"""
        reservations = await self.repository.find_by_user(user_id)
        resources = await self._resources_by_id()
        return [self._details(r, resources.get(r.resource_id)) for r in reservations]

    async def list_resource_reservations(self, resource_id: int, viewer: User) -> List[ReservationAdminView]:
        """Owner facing list for one resource"""
        resource = await self.resources.get(resource_id)
        if resource is None:
            raise ResourceNotFound(f"Resource {resource_id} not found")
        ensure_can_manage(resource, viewer)

        return await self._admin_views(await self.repository.find_by_resource(resource_id))

    async def list_all_reservations(self) -> List[ReservationAdminView]:
        return await self._admin_views(await self.repository.find_all())

    async def list_booked_slots(self, resource_id: int, day: date) -> List[TimeSlot]:
        """Confirmed intervals starting on a calendar day in the reporting timezone"""
        window_start = datetime.combine(day, time.min, tzinfo=self.tz)
        window_end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=self.tz)

        reservations = await self.repository.find_confirmed_slots(
            resource_id,
            window_start.astimezone(timezone.utc),
            window_end.astimezone(timezone.utc)
        )
        return [r.slot for r in reservations]

    async def list_notifications(self, user_id: int) -> List[Notification]:
        return await self.notifier.find_by_user(user_id)

    async def mark_notification_read(self, notification_id: int, user_id: int) -> Notification:
        return await self.notifier.mark_read(notification_id, user_id)

    # ==================== HELPERS ====================
    def _normalize(self, value: datetime) -> datetime:
        """Naive values are read in the reporting timezone, everything is kept in UTC"""
        if value.tzinfo is None or value.utcoffset() is None:
            value = value.replace(tzinfo=self.tz)
        try:
            return value.astimezone(timezone.utc)
        except OverflowError as e:
            raise InvalidInterval(f"{value.isoformat()} is outside the supported date range") from e

    @staticmethod
    def _ensure_holder(reservation: Reservation, user_id: Optional[int]) -> None:
        if user_id is not None and reservation.user_id != user_id:
            raise Forbidden(f"Reservation {reservation.reservation_id} does not belong to user {user_id}")

    def _validate_interval(self, start: datetime, end: datetime) -> TimeSlot:
        start = self._normalize(start)
        end = self._normalize(end)

        if start >= end:
            raise InvalidInterval("Start time must be before end time")
        if start <= self.clock():
            raise InvalidInterval("Cannot book a slot that has already started")

        return TimeSlot(start=start, end=end)

    def _hold_cutoff(self) -> datetime:
        return self.clock() - self.hold_ttl

    async def _get_or_raise(self, reservation_id: int) -> Reservation:
        reservation = await self.repository.find_by_id(reservation_id)
        if reservation is None:
            raise ReservationNotFound(f"Reservation {reservation_id} not found")
        return reservation

    async def _persist(self, reservation: Reservation) -> Reservation:
        try:
            return await self.repository.create(reservation)
        except PersistenceError:
            logger.exception(
                "Could not store hold on resource %s for user %s", reservation.resource_id, reservation.user_id
            )
            raise
        except Exception as e:
            logger.exception(
                "Could not store hold on resource %s for user %s", reservation.resource_id, reservation.user_id
            )
            raise PersistenceError("Could not store reservation") from e

    async def _release_losing_hold(self, reservation: Reservation) -> None:
        logger.warning(
            "Reservation %s lost resource %s to an already confirmed booking, cancelling hold",
            reservation.reservation_id, reservation.resource_id
        )
        try:
            await self.repository.transition_status(
                reservation.reservation_id, [ReservationStatus.PENDING], ReservationStatus.CANCELLED
            )
        except InvalidTransition:
            logger.info("Hold %s was already closed", reservation.reservation_id)
            return

        await self._notify(
            reservation.user_id,
            "Another booking was confirmed for this slot first, your hold was cancelled.",
            NotificationSeverity.WARNING
        )

    async def _notify(self, user_id: int, message: str, severity: NotificationSeverity) -> None:
        try:
            await self.notifier.notify(user_id, message, severity)
        except Exception:
            logger.warning("Notification to user %s failed", user_id, exc_info=True)

    async def _resources_by_id(self) -> Dict[int, Resource]:
        return {r.resource_id: r for r in await self.resources.find_all()}

    @staticmethod
    def _details(reservation: Reservation, resource: Optional[Resource]) -> ReservationDetails:
        return ReservationDetails(
            reservation_id=reservation.reservation_id,
            user_id=reservation.user_id,
            resource_id=reservation.resource_id,
            resource_name=resource.name if resource else "",
            category=resource.category if resource else "",
            start_time=reservation.start_time,
            end_time=reservation.end_time,
            total_price=reservation.total_price,
            status=reservation.status,
            created_at=reservation.created_at
        )

    async def _admin_views(self, reservations: List[Reservation]) -> List[ReservationAdminView]:
        resources = await self._resources_by_id()
        views = []
        for reservation in reservations:
            details = self._details(reservation, resources.get(reservation.resource_id))
            user = await self.users.find_by_id(reservation.user_id) if self.users else None
            views.append(ReservationAdminView(
                **details.model_dump(),
                user_first_name=user.first_name if user else "",
                user_last_name=user.last_name if user else ""
            ))
        return views


class StatisticsService:
    """Read-only statistics over confirmed reservations"""

    def __init__(self,
                 repository: ReservationRepository,
                 resources: ResourceDirectory,
                 tz: tzinfo = timezone.utc):
        self.repository = repository
        self.resources = resources
        self.tz = tz

    async def platform_stats(self) -> AggregateStat:
        return await self._aggregate(None)

    async def owner_stats(self, owner_id: int) -> AggregateStat:
        owned = await self.resources.find_by_owner(owner_id)
        return await self._aggregate([r.resource_id for r in owned])

    async def resource_stats(self, resource_id: int, viewer: User) -> AggregateStat:
        resource = await self.resources.get(resource_id)
        if resource is None:
            raise ResourceNotFound(f"Resource {resource_id} not found")
        ensure_can_manage(resource, viewer)
        return await self._aggregate([resource_id])

    async def platform_breakdown(self) -> List[ResourceStat]:
        """Approved resources, by category then highest revenue"""
        approved = [r for r in await self.resources.find_all() if r.is_approved]
        rows = await self._breakdown(approved)
        return sorted(rows, key=lambda row: (row.category, -row.total_revenue))

    async def owner_breakdown(self, owner_id: int) -> List[ResourceStat]:
        owned = await self.resources.find_by_owner(owner_id)
        return await self._breakdown(owned)

    async def _aggregate(self, resource_ids: Optional[List[int]]) -> AggregateStat:
        try:
            confirmed = await self.repository.find_confirmed(resource_ids)
        except ReservationError as e:
            raise PersistenceError(e.message, fallback=AggregateStat.empty()) from e
        except Exception as e:
            logger.exception("Statistics read failed for resources %s", resource_ids)
            raise PersistenceError("Statistics are temporarily unavailable", fallback=AggregateStat.empty()) from e
        return summarize_reservations(confirmed, self.tz)

    async def _breakdown(self, resources: List[Resource]) -> List[ResourceStat]:
        try:
            confirmed = await self.repository.find_confirmed([r.resource_id for r in resources])
        except Exception as e:
            logger.exception("Statistics breakdown read failed")
            raise PersistenceError("Statistics are temporarily unavailable", fallback=[]) from e

        rows = []
        for resource in resources:
            stat = summarize_reservations(
                (r for r in confirmed if r.resource_id == resource.resource_id), self.tz
            )
            rows.append(ResourceStat(
                resource_id=resource.resource_id,
                name=resource.name,
                category=resource.category,
                total_bookings=stat.total_bookings,
                total_revenue=stat.total_revenue
            ))
        return rows
