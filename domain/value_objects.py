"""Domain Value Objects"""
from pydantic import BaseModel, Field, field_validator, model_validator
from datetime import datetime, time
from decimal import Decimal
from typing import Optional

NO_DATA = "no data"


class TimeSlot(BaseModel):
    """Value Object for a half-open interval [start, end)"""
    start: datetime
    end: datetime

    @field_validator('start', 'end')
    @classmethod
    def must_be_timezone_aware(cls, v: datetime) -> datetime:
        if v.tzinfo is None or v.utcoffset() is None:
            raise ValueError('Slot boundaries must be timezone-aware')
        return v

    @model_validator(mode='after')
    def end_after_start(self) -> "TimeSlot":
        if self.end <= self.start:
            raise ValueError('Slot end must be after slot start')
        return self

    def overlaps(self, start: datetime, end: datetime) -> bool:
        """Half-open overlap: s1 < e2 and s2 < e1"""
        return self.start < end and start < self.end

    def duration_hours(self) -> Decimal:
        """Length of the slot in hours"""
        return Decimal(int((self.end - self.start).total_seconds())) / Decimal(3600)

    class Config:
        frozen = True


class AggregateStat(BaseModel):
    """Statistics over confirmed reservations in a scope"""
    total_bookings: int = Field(ge=0, default=0)
    total_revenue: Decimal = Decimal("0")
    peak_hour: Optional[int] = Field(default=None, ge=0, le=23)
    popular_time: str = NO_DATA

    @staticmethod
    def empty() -> "AggregateStat":
        return AggregateStat()

    @staticmethod
    def format_hour(hour: int) -> str:
        """12-hour clock rendering of a bucket, e.g. 09:00 AM"""
        return time(hour=hour).strftime("%I:%M %p")

    class Config:
        frozen = True


class ResourceStat(BaseModel):
    """Per-resource breakdown row"""
    resource_id: int
    name: str
    category: str
    total_bookings: int = 0
    total_revenue: Decimal = Decimal("0")

    class Config:
        frozen = True
