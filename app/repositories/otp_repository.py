import logging
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import delete, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from app.dto.verification_dto import OtpRecordCreate
from app.exceptions.verification_exceptions import StorageException
from app.models.otp_record import OtpRecord

logger = logging.getLogger(__name__)


class OtpRepository:
    """
    Persistence for OTP records.

    Methods flush but never commit; the caller owns the transaction so that
    consuming a code and verifying the user land together.
    """

    @staticmethod
    def _fail(operation: str, exc: Exception, user_id=None, channel: Optional[str] = None) -> StorageException:
        # The code itself is never part of the log line
        logger.error(
            "OTP storage failure during %s (user_id=%s, channel=%s): %s",
            operation, user_id, channel, exc,
        )
        return StorageException(operation)

    @staticmethod
    async def create(db: AsyncSession, data: OtpRecordCreate) -> OtpRecord:
        try:
            record = OtpRecord(
                user_id=data.user_id,
                channel=data.channel,
                code=data.code,
                expires_at=data.expires_at,
                consumed=False,
                attempts=0,
            )
            db.add(record)
            await db.flush()
            await db.refresh(record)
            return record
        except SQLAlchemyError as e:
            raise OtpRepository._fail("create", e, data.user_id, data.channel) from e

    @staticmethod
    async def get_active(db: AsyncSession, user_id: uuid.UUID, channel: str) -> Optional[OtpRecord]:
        """Most recent unconsumed record for the pair, expired or not."""
        try:
            result = await db.execute(
                select(OtpRecord)
                .where(
                    OtpRecord.user_id == user_id,
                    OtpRecord.channel == channel,
                    OtpRecord.consumed.is_(False),
                )
                .order_by(OtpRecord.created_at.desc())
                .limit(1)
                .execution_options(populate_existing=True)
            )
            return result.scalars().first()
        except SQLAlchemyError as e:
            raise OtpRepository._fail("get_active", e, user_id, channel) from e

    @staticmethod
    async def get_latest(db: AsyncSession, user_id: uuid.UUID, channel: str) -> Optional[OtpRecord]:
        """Most recent record for the pair in any state."""
        try:
            result = await db.execute(
                select(OtpRecord)
                .where(OtpRecord.user_id == user_id, OtpRecord.channel == channel)
                .order_by(OtpRecord.created_at.desc())
                .limit(1)
                .execution_options(populate_existing=True)
            )
            return result.scalars().first()
        except SQLAlchemyError as e:
            raise OtpRepository._fail("get_latest", e, user_id, channel) from e

    @staticmethod
    async def invalidate(db: AsyncSession, record_id: uuid.UUID, now: datetime) -> bool:
        """
        Retire a record that was never matched (superseded by a new code).

        Idempotent: returns False when the record was already consumed.
        """
        try:
            result = await db.execute(
                update(OtpRecord)
                .where(OtpRecord.id == record_id, OtpRecord.consumed.is_(False))
                .values(consumed=True, superseded_at=now)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1
        except SQLAlchemyError as e:
            raise OtpRepository._fail("invalidate", e) from e

    @staticmethod
    async def invalidate_active(db: AsyncSession, user_id: uuid.UUID, channel: str, now: datetime) -> int:
        """Retire every unconsumed record for the pair; returns how many were retired."""
        try:
            result = await db.execute(
                update(OtpRecord)
                .where(
                    OtpRecord.user_id == user_id,
                    OtpRecord.channel == channel,
                    OtpRecord.consumed.is_(False),
                )
                .values(consumed=True, superseded_at=now)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount
        except SQLAlchemyError as e:
            raise OtpRepository._fail("invalidate_active", e, user_id, channel) from e

    @staticmethod
    async def mark_consumed(db: AsyncSession, record_id: uuid.UUID, now: datetime) -> bool:
        """
        Consume a record after a successful match.

        Conditional update, so among concurrent callers exactly one gets True.
        Calling it again on a consumed record changes nothing.
        """
        try:
            result = await db.execute(
                update(OtpRecord)
                .where(OtpRecord.id == record_id, OtpRecord.consumed.is_(False))
                .values(consumed=True, consumed_at=now)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1
        except SQLAlchemyError as e:
            raise OtpRepository._fail("mark_consumed", e) from e

    @staticmethod
    async def register_failed_attempt(db: AsyncSession, record_id: uuid.UUID) -> int:
        """Atomically bump the failed-attempt counter; returns the new value."""
        try:
            await db.execute(
                update(OtpRecord)
                .where(OtpRecord.id == record_id)
                .values(attempts=OtpRecord.attempts + 1)
                .execution_options(synchronize_session=False)
            )
            result = await db.execute(select(OtpRecord.attempts).where(OtpRecord.id == record_id))
            return result.scalar_one()
        except SQLAlchemyError as e:
            raise OtpRepository._fail("register_failed_attempt", e) from e

    @staticmethod
    async def count_active(db: AsyncSession, user_id: uuid.UUID, channel: str, now: datetime) -> int:
        """Unconsumed and unexpired records for the pair."""
        try:
            result = await db.execute(
                select(OtpRecord.id).where(
                    OtpRecord.user_id == user_id,
                    OtpRecord.channel == channel,
                    OtpRecord.consumed.is_(False),
                    OtpRecord.expires_at >= now,
                )
            )
            return len(result.scalars().all())
        except SQLAlchemyError as e:
            raise OtpRepository._fail("count_active", e, user_id, channel) from e

    @staticmethod
    async def purge_expired(db: AsyncSession, older_than: datetime) -> int:
        """Delete records that expired before ``older_than``. Storage hygiene only."""
        try:
            result = await db.execute(
                delete(OtpRecord)
                .where(OtpRecord.expires_at < older_than)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount
        except SQLAlchemyError as e:
            raise OtpRepository._fail("purge_expired", e) from e
