"""Domain Entities - Auth"""
from pydantic import BaseModel
from typing import Optional

from domain.enums import UserRole


class User(BaseModel):
    """User Entity"""
    user_id: int
    username: str
    email: Optional[str] = None
    first_name: str = ""
    last_name: str = ""
    role: UserRole = UserRole.PLAYER
    disabled: bool = False

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    class Config:
        from_attributes = True


class UserInDB(User):
    """User with hashed password for DB storage"""
    hashed_password: str
