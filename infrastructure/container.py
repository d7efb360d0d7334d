"""Object graph for one application process"""
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from functools import lru_cache
from typing import List

from config import Settings
from application.services import ReservationService, StatisticsService, ResourceCalendar
from domain.auth import UserInDB
from domain.entities import Resource
from domain.enums import ResourceStatus, UserRole
from infrastructure.repositories.in_memory_repositories import (
    InMemoryReservationRepository, InMemoryResourceDirectory,
    InMemoryUserDirectory, InMemoryNotificationSink
)
from infrastructure.security import get_password_hash

# Mock identity provider
# In production, this would be the user service
SEED_USERS = [
    {"user_id": 1, "username": "admin", "plain_password": "admin123", "email": "admin@example.com",
     "first_name": "Admin", "last_name": "User", "role": UserRole.ADMIN},
    {"user_id": 2, "username": "owner", "plain_password": "owner123", "email": "owner@example.com",
     "first_name": "Venue", "last_name": "Owner", "role": UserRole.OWNER},
    {"user_id": 3, "username": "player", "plain_password": "player123", "email": "player@example.com",
     "first_name": "Asha", "last_name": "Rao", "role": UserRole.PLAYER},
    {"user_id": 4, "username": "player2", "plain_password": "player234", "email": "player2@example.com",
     "first_name": "Ravi", "last_name": "Menon", "role": UserRole.PLAYER},
]

DEMO_RESOURCES = [
    Resource(resource_id=1, owner_id=2, name="Centre Court", category="Badminton",
             price_per_hour=Decimal("400"), status=ResourceStatus.APPROVED),
    Resource(resource_id=2, owner_id=2, name="Turf A", category="Football",
             price_per_hour=Decimal("1200"), status=ResourceStatus.APPROVED),
    Resource(resource_id=3, owner_id=2, name="Court 7", category="Tennis",
             price_per_hour=Decimal("600"), status=ResourceStatus.PENDING),
]


@lru_cache(maxsize=None)
def _hashed(password: str) -> str:
    """bcrypt is slow, hash each seed password once per process"""
    return get_password_hash(password)


def seed_users() -> List[UserInDB]:
    users = []
    for record in SEED_USERS:
        user = dict(record)
        user["hashed_password"] = _hashed(user.pop("plain_password"))
        users.append(UserInDB(**user))
    return users


@dataclass
class Container:
    settings: Settings
    reservations: InMemoryReservationRepository
    resources: InMemoryResourceDirectory
    users: InMemoryUserDirectory
    notifications: InMemoryNotificationSink
    reservation_service: ReservationService
    statistics_service: StatisticsService


def build_container(settings: Settings) -> Container:
    reservations = InMemoryReservationRepository(lock_timeout=settings.storage_timeout_seconds)
    resources = InMemoryResourceDirectory(DEMO_RESOURCES if settings.seed_demo_data else [])
    users = InMemoryUserDirectory(seed_users())
    notifications = InMemoryNotificationSink()

    reservation_service = ReservationService(
        reservations,
        resources,
        notifications,
        users=users,
        calendar=ResourceCalendar(reservations),
        hold_ttl=timedelta(minutes=settings.hold_ttl_minutes),
        holds_block_slots=settings.holds_block_slots,
        tz=settings.tz
    )
    statistics_service = StatisticsService(reservations, resources, tz=settings.tz)

    return Container(
        settings=settings,
        reservations=reservations,
        resources=resources,
        users=users,
        notifications=notifications,
        reservation_service=reservation_service,
        statistics_service=statistics_service
    )
