import logging
from contextlib import asynccontextmanager
from datetime import date, timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder
from fastapi.security import OAuth2PasswordRequestForm

from api.schemas import (
    # Reservation
    CreateReservationRequest, ReservationResponse, ReservationDetailsResponse,
    ReservationAdminResponse, BookedSlotResponse, ExpireHoldsResponse,
    # Statistics
    StatsResponse, ResourceStatsResponse,
    # Notifications
    NotificationResponse,
    # Auth
    Token, UserResponse
)

from api.dependencies import (
    get_container, get_current_active_user, get_reservation_service,
    get_statistics_service, require_role
)
from infrastructure.container import Container, build_container
from infrastructure.scheduler import start_hold_sweeper
from infrastructure.security import verify_password, create_access_token, ACCESS_TOKEN_EXPIRE_MINUTES
from domain.auth import User
from domain.enums import ReservationStatus, StatsScope, UserRole
from domain.exceptions import ReservationError
from domain.value_objects import AggregateStat

from application.services import ReservationService, StatisticsService
from config import Settings, settings as default_settings

logger = logging.getLogger(__name__)

router = APIRouter()

# ============================================================================
# HEALTH & ENUM REFERENCE ENDPOINTS
# ============================================================================

@router.get("/api/health", tags=["Health"])
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "message": "API is running"}

@router.get("/api/enums/reservation-status", tags=["Enum Reference"])
async def get_reservation_statuses():
    """Get all ReservationStatus enum values"""
    return {
        "values": [item.value for item in ReservationStatus],
        "description": "Reservation status values: pending, confirmed, cancelled, rejected"
    }

# ============================================================================
# AUTH ENDPOINTS
# ============================================================================

@router.post("/token", response_model=Token, tags=["Auth"])
async def login_for_access_token(
    form_data: OAuth2PasswordRequestForm = Depends(),
    container: Container = Depends(get_container)
):
    user = await container.users.find_by_username(form_data.username)
    if not user or not verify_password(form_data.password, user.hashed_password):
        raise HTTPException(
            status_code=401,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    access_token_expires = timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    access_token = create_access_token(
        data={"sub": user.username}, expires_delta=access_token_expires
    )
    return {"access_token": access_token, "token_type": "bearer"}

@router.get("/users/me", response_model=UserResponse, tags=["Auth"])
async def read_users_me(current_user: User = Depends(get_current_active_user)):
    return _user_to_response(current_user)

# ============================================================================
# RESERVATION ENDPOINTS
# ============================================================================

@router.post("/api/reservations", response_model=ReservationResponse, status_code=201, tags=["Reservations"])
async def create_reservation(
    request: CreateReservationRequest,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_active_user)
):
    """Place a pending hold on a slot"""
    reservation = await service.request_booking(
        user_id=current_user.user_id,
        resource_id=request.resource_id,
        start=request.start_time,
        end=request.end_time
    )
    return _reservation_to_response(reservation)

@router.get("/api/reservations/me", response_model=List[ReservationDetailsResponse], tags=["Reservations"])
async def get_my_reservations(
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_active_user)
):
    """Reservations of the current user, newest start first"""
    reservations = await service.list_user_reservations(current_user.user_id)
    return [_view_to_response(r, ReservationDetailsResponse) for r in reservations]

@router.get("/api/reservations/{reservation_id}", response_model=ReservationAdminResponse, tags=["Reservations"])
async def get_reservation(
    reservation_id: int,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_active_user)
):
    """Get reservation by ID"""
    view = await service.get_reservation(reservation_id, current_user)
    return _view_to_response(view, ReservationAdminResponse)

@router.post("/api/reservations/{reservation_id}/confirm-payment", response_model=ReservationResponse, tags=["Reservations"])
async def confirm_payment(
    reservation_id: int,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_active_user)
):
    """Payment succeeded, confirm the hold"""
    reservation = await service.confirm_payment(reservation_id, _holder_scope(current_user))
    return _reservation_to_response(reservation)

@router.post("/api/reservations/{reservation_id}/payment-failed", response_model=ReservationResponse, tags=["Reservations"])
async def payment_failed(
    reservation_id: int,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_active_user)
):
    """Payment failed, reject the hold"""
    reservation = await service.reject_payment(reservation_id, _holder_scope(current_user))
    return _reservation_to_response(reservation)

@router.post("/api/reservations/{reservation_id}/cancel", response_model=ReservationResponse, tags=["Reservations"])
async def cancel_reservation(
    reservation_id: int,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_active_user)
):
    """Cancel own pending reservation"""
    reservation = await service.cancel_by_user(reservation_id, current_user.user_id)
    return _reservation_to_response(reservation)

# ============================================================================
# RESOURCE ENDPOINTS
# ============================================================================

@router.get("/api/resources/{resource_id}/reservations", response_model=List[ReservationAdminResponse], tags=["Resources"])
async def get_resource_reservations(
    resource_id: int,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(require_role(UserRole.OWNER, UserRole.ADMIN))
):
    """Reservations on one resource, for its owner"""
    views = await service.list_resource_reservations(resource_id, current_user)
    return [_view_to_response(v, ReservationAdminResponse) for v in views]

@router.get("/api/resources/{resource_id}/booked-slots", response_model=List[BookedSlotResponse], tags=["Resources"])
async def get_booked_slots(
    resource_id: int,
    day: date = Query(..., alias="date"),
    service: ReservationService = Depends(get_reservation_service)
):
    """Confirmed intervals on a day, earliest first"""
    slots = await service.list_booked_slots(resource_id, day)
    return [BookedSlotResponse(start_time=s.start, end_time=s.end) for s in slots]

# ============================================================================
# ADMIN ENDPOINTS
# ============================================================================

@router.get("/api/admin/reservations", response_model=List[ReservationAdminResponse], tags=["Admin"])
async def get_all_reservations(
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(require_role(UserRole.ADMIN))
):
    """Get all reservations"""
    views = await service.list_all_reservations()
    return [_view_to_response(v, ReservationAdminResponse) for v in views]

@router.post("/api/admin/maintenance/expire-holds", response_model=ExpireHoldsResponse, tags=["Admin"])
async def expire_holds(
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(require_role(UserRole.ADMIN))
):
    """Cancel holds older than the configured TTL"""
    return {"expired": await service.expire_stale_holds()}

# ============================================================================
# STATISTICS ENDPOINTS
# ============================================================================

@router.get("/api/stats/platform", response_model=StatsResponse, tags=["Statistics"])
async def get_platform_stats(
    service: StatisticsService = Depends(get_statistics_service),
    current_user: User = Depends(require_role(UserRole.ADMIN))
):
    return _stats_to_response(StatsScope.PLATFORM, await service.platform_stats())

@router.get("/api/stats/platform/resources", response_model=List[ResourceStatsResponse], tags=["Statistics"])
async def get_platform_resource_stats(
    service: StatisticsService = Depends(get_statistics_service),
    current_user: User = Depends(require_role(UserRole.ADMIN))
):
    return [ResourceStatsResponse(**row.model_dump()) for row in await service.platform_breakdown()]

@router.get("/api/stats/owner", response_model=StatsResponse, tags=["Statistics"])
async def get_owner_stats(
    service: StatisticsService = Depends(get_statistics_service),
    current_user: User = Depends(require_role(UserRole.OWNER))
):
    return _stats_to_response(StatsScope.OWNER, await service.owner_stats(current_user.user_id))

@router.get("/api/stats/owner/resources", response_model=List[ResourceStatsResponse], tags=["Statistics"])
async def get_owner_resource_stats(
    service: StatisticsService = Depends(get_statistics_service),
    current_user: User = Depends(require_role(UserRole.OWNER))
):
    return [ResourceStatsResponse(**row.model_dump()) for row in await service.owner_breakdown(current_user.user_id)]

@router.get("/api/stats/resources/{resource_id}", response_model=StatsResponse, tags=["Statistics"])
async def get_resource_stats(
    resource_id: int,
    service: StatisticsService = Depends(get_statistics_service),
    current_user: User = Depends(require_role(UserRole.OWNER, UserRole.ADMIN))
):
    return _stats_to_response(StatsScope.RESOURCE, await service.resource_stats(resource_id, current_user))

# ============================================================================
# NOTIFICATION ENDPOINTS
# ============================================================================

@router.get("/api/notifications/me", response_model=List[NotificationResponse], tags=["Notifications"])
async def get_my_notifications(
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_active_user)
):
    notifications = await service.list_notifications(current_user.user_id)
    return [_notification_to_response(n) for n in notifications]

@router.post("/api/notifications/{notification_id}/read", response_model=NotificationResponse, tags=["Notifications"])
async def mark_notification_read(
    notification_id: int,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_active_user)
):
    """Mark one of the current user's notifications as read"""
    notification = await service.mark_notification_read(notification_id, current_user.user_id)
    return _notification_to_response(notification)

# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def _holder_scope(current_user: User) -> Optional[int]:
    """Admins may settle any hold, everyone else only their own"""
    return None if current_user.is_admin else current_user.user_id

def _notification_to_response(notification) -> NotificationResponse:
    return NotificationResponse(
        notification_id=notification.notification_id,
        message=notification.message,
        severity=notification.severity.value,
        is_read=notification.is_read,
        created_at=notification.created_at
    )

def _reservation_to_response(reservation) -> ReservationResponse:
    """Convert Reservation entity to ReservationResponse"""
    return ReservationResponse(
        reservation_id=reservation.reservation_id,
        user_id=reservation.user_id,
        resource_id=reservation.resource_id,
        start_time=reservation.start_time,
        end_time=reservation.end_time,
        total_price=reservation.total_price,
        status=reservation.status.value,
        created_at=reservation.created_at,
        modified_at=reservation.modified_at,
        version=reservation.version
    )

def _view_to_response(view, response_cls):
    """Convert a read projection to its response DTO"""
    return response_cls(**view.model_dump(exclude={"status"}), status=view.status.value)

def _stats_to_response(scope: StatsScope, stat: AggregateStat) -> StatsResponse:
    return StatsResponse(
        scope=scope.value,
        total_bookings=stat.total_bookings,
        total_revenue=stat.total_revenue,
        peak_hour=stat.peak_hour,
        popular_time=stat.popular_time
    )

def _user_to_response(user: User) -> UserResponse:
    return UserResponse(
        user_id=user.user_id,
        username=user.username,
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
        role=user.role.value,
        disabled=user.disabled
    )

async def reservation_error_handler(request: Request, exc: ReservationError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
    content = {"detail": exc.message, "error": type(exc).__name__}
    fallback = getattr(exc, "fallback", None)
    if fallback is not None:
        content["fallback"] = jsonable_encoder(fallback)
    return JSONResponse(status_code=exc.status_code, content=content)

# ============================================================================
# APPLICATION FACTORY
# ============================================================================

def create_app(app_settings: Optional[Settings] = None) -> FastAPI:
    app_settings = app_settings or default_settings
    logging.basicConfig(
        level=app_settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        container = build_container(app_settings)
        app.state.container = container
        scheduler = start_hold_sweeper(container.reservation_service, app_settings.hold_sweep_interval_seconds)
        logger.info("Slot reservation API ready (reporting timezone %s)", app_settings.reporting_timezone)
        yield
        if scheduler is not None:
            scheduler.shutdown(wait=False)
        logger.info("Slot reservation API stopped")

    app = FastAPI(
        title="Slot Reservation API",
        description="Time-slot booking with payment-gated confirmation for courts and fields",
        version="1.0.0",
        lifespan=lifespan
    )
    app.add_exception_handler(ReservationError, reservation_error_handler)
    app.include_router(router)
    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
