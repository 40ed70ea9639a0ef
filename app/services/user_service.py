import logging
import uuid
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.dto.user_dto import UserCreate
from app.exceptions.base_exception import BadRequestException
from app.exceptions.verification_exceptions import StorageException, UserNotFoundException
from app.models.user import User
from app.repositories.user_repository import UserRepository
from app.repositories.verification_state_repository import VerificationStateRepository
from app.services.verification_service import VerificationService
from app.utils.security import validate_password, verify_password

logger = logging.getLogger(__name__)


class UserService:
    """
    Account creation and login.
    """

    @staticmethod
    async def register_user(db: AsyncSession, data: UserCreate) -> User:
        """
        Create the account with every channel unverified.

        The chosen verification method is validated up front so that a bad
        method or a phone channel without a phone number never leaves a
        half-registered user behind.
        """
        if await UserRepository.get_by_username(db, data.username):
            raise BadRequestException("Username is already taken.")
        if await UserRepository.get_by_email(db, data.email):
            raise BadRequestException("Email is already registered.")

        channel = VerificationService.parse_channel(data.verification_method)
        if channel.uses_phone and not data.phone:
            raise BadRequestException(
                f"A phone number is required to verify via {channel.value}.",
                error_code="INVALID_CHANNEL",
            )

        if not validate_password(data.password):
            raise BadRequestException("Password must be at least 8 characters long.")

        user = await UserRepository.create(db, data)
        await VerificationStateRepository.create_initial(db, user.id)
        try:
            await db.commit()
        except SQLAlchemyError as e:
            logger.error("Failed to store registration for %s: %s", data.username, e)
            await db.rollback()
            raise StorageException("commit_registration") from e
        logger.info("Registered user %s (%s), verification via %s", user.id, user.role, channel.value)
        return user

    @staticmethod
    async def get_user(db: AsyncSession, user_id: uuid.UUID) -> User:
        user = await UserRepository.get_by_id(db, user_id)
        if not user:
            raise UserNotFoundException()
        return user

    @staticmethod
    async def authenticate_user(db: AsyncSession, login: str, password: str) -> Optional[User]:
        user = await UserRepository.get_by_login(db, login.strip())
        if not user or not verify_password(password, user.hashed_password) or not user.is_active:
            return None
        return user
