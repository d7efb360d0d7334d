"""
Application settings (Pydantic Settings).
"""
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Auth
    secret_key: str = "change-me-in-production"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 30

    # Peak-hour buckets and day availability are computed in this zone
    reporting_timezone: str = "Asia/Kolkata"

    # Holds
    hold_ttl_minutes: int = 15
    hold_sweep_interval_seconds: int = 60  # 0 disables the scheduler
    holds_block_slots: bool = True

    # Deadline for the per-resource write section
    storage_timeout_seconds: float = 5.0

    seed_demo_data: bool = True
    log_level: str = "INFO"

    class Config:
        env_prefix = "SLOTBOOK_"
        env_file = ".env"
        extra = "ignore"

    @field_validator("reporting_timezone", mode="after")
    @classmethod
    def known_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.reporting_timezone)


settings = Settings()
