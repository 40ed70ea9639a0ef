import logging
import uuid
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from app.dto.user_dto import UserCreate
from app.exceptions.verification_exceptions import StorageException
from app.models.user import User
from app.utils.security import hash_password

logger = logging.getLogger(__name__)


class UserRepository:
    """CRUD for User. Verified flags are deliberately not writable here."""

    @staticmethod
    async def create(db: AsyncSession, data: UserCreate) -> User:
        try:
            db_user = User(
                username=data.username,
                name=data.name,
                email=data.email.lower(),
                phone=data.phone,
                hashed_password=hash_password(data.password),
                role=data.role,
                email_verified=False,
                phone_verified=False,
            )
            db.add(db_user)
            await db.flush()
            await db.refresh(db_user)
            return db_user
        except SQLAlchemyError as e:
            logger.error("Error creating user %s: %s", data.username, e)
            raise StorageException("create_user") from e

    @staticmethod
    async def get_by_id(db: AsyncSession, user_id: uuid.UUID) -> Optional[User]:
        try:
            result = await db.execute(
                select(User)
                .where(User.id == user_id)
                .execution_options(populate_existing=True)
            )
            return result.scalars().first()
        except SQLAlchemyError as e:
            logger.error("Error loading user %s: %s", user_id, e)
            raise StorageException("get_user") from e

    @staticmethod
    async def get_by_username(db: AsyncSession, username: str) -> Optional[User]:
        result = await db.execute(select(User).where(User.username == username))
        return result.scalars().first()

    @staticmethod
    async def get_by_email(db: AsyncSession, email: str) -> Optional[User]:
        result = await db.execute(select(User).where(User.email == email.lower()))
        return result.scalars().first()

    @staticmethod
    async def get_by_login(db: AsyncSession, login: str) -> Optional[User]:
        """Look a user up by username or email."""
        result = await db.execute(
            select(User).where(or_(User.username == login, User.email == login.lower()))
        )
        return result.scalars().first()
