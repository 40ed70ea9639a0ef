import logging
import uuid
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from app.exceptions.verification_exceptions import StorageException
from app.models.verification_state import VerificationChannel, VerificationState, VerificationStatus

logger = logging.getLogger(__name__)


class VerificationStateRepository:

    @staticmethod
    async def create_initial(db: AsyncSession, user_id: uuid.UUID) -> List[VerificationState]:
        """Every channel starts out unverified."""
        try:
            states = [
                VerificationState(
                    user_id=user_id,
                    channel=channel.value,
                    status=VerificationStatus.UNVERIFIED.value,
                )
                for channel in VerificationChannel
            ]
            db.add_all(states)
            await db.flush()
            return states
        except SQLAlchemyError as e:
            logger.error("Error creating verification states for user %s: %s", user_id, e)
            raise StorageException("create_verification_states") from e

    @staticmethod
    async def get(db: AsyncSession, user_id: uuid.UUID, channel: str) -> Optional[VerificationState]:
        try:
            result = await db.execute(
                select(VerificationState)
                .where(VerificationState.user_id == user_id, VerificationState.channel == channel)
                .execution_options(populate_existing=True)
            )
            return result.scalars().first()
        except SQLAlchemyError as e:
            logger.error("Error loading verification state (user_id=%s, channel=%s): %s", user_id, channel, e)
            raise StorageException("get_verification_state") from e

    @staticmethod
    async def get_for_update(db: AsyncSession, user_id: uuid.UUID, channel: str) -> VerificationState:
        """
        Load the state row with a row lock, creating it when missing.

        Holding the lock until commit serializes issuers for the same
        (user, channel) across processes. SQLite ignores FOR UPDATE.
        """
        try:
            result = await db.execute(
                select(VerificationState)
                .where(VerificationState.user_id == user_id, VerificationState.channel == channel)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            state = result.scalars().first()
            if state is None:
                state = VerificationState(
                    user_id=user_id,
                    channel=channel,
                    status=VerificationStatus.UNVERIFIED.value,
                )
                db.add(state)
                await db.flush()
            return state
        except SQLAlchemyError as e:
            logger.error("Error locking verification state (user_id=%s, channel=%s): %s", user_id, channel, e)
            raise StorageException("lock_verification_state") from e

    @staticmethod
    async def list_for_user(db: AsyncSession, user_id: uuid.UUID) -> List[VerificationState]:
        try:
            result = await db.execute(
                select(VerificationState).where(VerificationState.user_id == user_id)
            )
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error("Error listing verification states for user %s: %s", user_id, e)
            raise StorageException("list_verification_states") from e
