from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession
from datetime import timedelta
from typing import Optional
import uuid

from app.database.database import get_db
from app.exceptions.base_exception import ForbiddenException, UnauthorizedException
from app.models.user import User
from app.configs.settings import settings
from app.repositories.user_repository import UserRepository
from app.utils.time import get_utc_now

security = HTTPBearer(auto_error=False)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a signed JWT access token."""
    to_encode = data.copy()

    if expires_delta:
        expire = get_utc_now() + expires_delta
    else:
        expire = get_utc_now() + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


async def get_current_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
                           db: AsyncSession = Depends(get_db)) -> User:
    """Resolve the bearer token to an active user."""
    if not credentials or not credentials.credentials:
        raise UnauthorizedException("Missing authentication token")

    try:
        payload = jwt.decode(credentials.credentials, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        user_id: str = payload.get("sub")
        if user_id is None:
            raise UnauthorizedException()
        user_uuid = uuid.UUID(user_id)
    except (JWTError, ValueError):
        raise UnauthorizedException() from None

    user = await UserRepository.get_by_id(db, user_uuid)
    if user is None:
        raise UnauthorizedException()

    if not user.is_active:
        raise ForbiddenException("Account is disabled", error_code="ACCOUNT_DISABLED")

    return user
