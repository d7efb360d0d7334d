"""API Schemas - Request and Response DTOs"""
from pydantic import BaseModel
from datetime import datetime
from decimal import Decimal
from typing import Optional


# ============================================================================
# RESERVATION SCHEMAS
# ============================================================================

class CreateReservationRequest(BaseModel):
    """Create reservation request DTO, price is computed server side"""
    resource_id: int
    start_time: datetime
    end_time: datetime


class ReservationResponse(BaseModel):
    """Reservation response DTO"""
    reservation_id: int
    user_id: int
    resource_id: int
    start_time: datetime
    end_time: datetime
    total_price: Decimal
    status: str
    created_at: datetime
    modified_at: datetime
    version: int


class ReservationDetailsResponse(BaseModel):
    """Reservation joined with resource name and category"""
    reservation_id: int
    user_id: int
    resource_id: int
    resource_name: str
    category: str
    start_time: datetime
    end_time: datetime
    total_price: Decimal
    status: str
    created_at: datetime


class ReservationAdminResponse(ReservationDetailsResponse):
    """Owner/admin view with requester identity"""
    user_first_name: str
    user_last_name: str


class BookedSlotResponse(BaseModel):
    start_time: datetime
    end_time: datetime


class ExpireHoldsResponse(BaseModel):
    expired: int


# ============================================================================
# STATISTICS SCHEMAS
# ============================================================================

class StatsResponse(BaseModel):
    """Aggregate statistics DTO"""
    scope: str
    total_bookings: int
    total_revenue: Decimal
    peak_hour: Optional[int] = None
    popular_time: str


class ResourceStatsResponse(BaseModel):
    resource_id: int
    name: str
    category: str
    total_bookings: int
    total_revenue: Decimal


# ============================================================================
# NOTIFICATION SCHEMAS
# ============================================================================

class NotificationResponse(BaseModel):
    notification_id: int
    message: str
    severity: str
    is_read: bool
    created_at: datetime


# ============================================================================
# AUTH SCHEMAS
# ============================================================================

class Token(BaseModel):
    """Token response DTO"""
    access_token: str
    token_type: str

class TokenData(BaseModel):
    """Token payload DTO"""
    username: Optional[str] = None

class UserResponse(BaseModel):
    """User response DTO"""
    user_id: int
    username: str
    email: Optional[str] = None
    first_name: str
    last_name: str
    role: str
    disabled: bool
