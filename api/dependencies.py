"""API Dependencies - Authentication and service providers"""
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError

from application.services import ReservationService, StatisticsService
from domain.auth import User
from domain.enums import UserRole
from infrastructure.container import Container
from infrastructure.security import decode_access_token
from api.schemas import TokenData

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token")


def get_container(request: Request) -> Container:
    return request.app.state.container


def get_reservation_service(container: Container = Depends(get_container)) -> ReservationService:
    return container.reservation_service


def get_statistics_service(container: Container = Depends(get_container)) -> StatisticsService:
    return container.statistics_service


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    container: Container = Depends(get_container)
):
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = decode_access_token(token)
        username: str = payload.get("sub")
        if username is None:
            raise credentials_exception
        token_data = TokenData(username=username)
    except JWTError:
        raise credentials_exception

    user = await container.users.find_by_username(token_data.username)
    if user is None:
        raise credentials_exception
    return user

async def get_current_active_user(current_user: User = Depends(get_current_user)):
    if current_user.disabled:
        raise HTTPException(status_code=400, detail="Inactive user")
    return current_user


def require_role(*roles: UserRole):
    """Dependency factory restricting an endpoint to some roles"""
    async def checker(current_user: User = Depends(get_current_active_user)) -> User:
        if current_user.role not in roles:
            raise HTTPException(status_code=403, detail="Not enough permissions")
        return current_user
    return checker
