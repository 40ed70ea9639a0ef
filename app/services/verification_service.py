"""
Account verification over email, WhatsApp and SMS with one-time codes.

Entry points are ``request_verification``, ``resend_verification`` and
``confirm_verification``; they coordinate the OTP policy, the OTP store, the
per-channel state machine and the notification sender.
"""

import logging
import uuid
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.configs.settings import settings
from app.dto.user_dto import UserRead
from app.dto.verification_dto import ChannelStatusRead, ConfirmRead, DispatchRead, OtpRecordCreate
from app.exceptions.verification_exceptions import (
    DispatchFailureException,
    InvalidChannelException,
    InvalidCodeFormatException,
    InvalidOrExpiredCodeException,
    NoActiveCodeException,
    StorageException,
    UserNotFoundException,
)
from app.models.user import User
from app.models.verification_state import VerificationChannel, VerificationStatus
from app.repositories.otp_repository import OtpRepository
from app.repositories.user_repository import UserRepository
from app.repositories.verification_state_repository import VerificationStateRepository
from app.services.notification_service import NotificationError, NotificationSender
from app.services.otp_policy import OtpPolicy
from app.services.verification_state_machine import VerificationEvent, VerificationStateMachine
from app.utils.locks import KeyedLock
from app.utils.time import get_utc_now

logger = logging.getLogger(__name__)

# Serializes request/resend/confirm per (user, channel) within this process
verification_locks = KeyedLock()


class VerificationService:

    def __init__(
        self,
        db: AsyncSession,
        sender: NotificationSender,
        policy: Optional[OtpPolicy] = None,
        clock: Callable[[], datetime] = get_utc_now,
        echo_code: Optional[bool] = None,
    ):
        self.db = db
        self.sender = sender
        self.policy = policy or OtpPolicy()
        self.clock = clock
        self.echo_code = settings.otp_echo_enabled if echo_code is None else echo_code

    # ------------------------------------------------------------------
    # input checks
    # ------------------------------------------------------------------

    @staticmethod
    def parse_channel(channel: str) -> VerificationChannel:
        try:
            return VerificationChannel((channel or "").strip().lower())
        except ValueError:
            raise InvalidChannelException(
                f"Invalid verification channel '{channel}'. "
                f"Supported channels: {', '.join(VerificationChannel.values())}"
            ) from None

    async def _load_user(self, user_id: uuid.UUID) -> User:
        user = await UserRepository.get_by_id(self.db, user_id)
        if user is None:
            raise UserNotFoundException()
        return user

    async def _commit(self, operation: str, user_id: uuid.UUID, channel: str) -> None:
        """Commit, or roll back and raise StorageException with the failing step logged."""
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            logger.error(
                "Verification storage failure during %s (user_id=%s, channel=%s): %s",
                operation, user_id, channel, e,
            )
            await self.db.rollback()
            raise StorageException(operation) from e

    @staticmethod
    def recipient_for(user: User, channel: VerificationChannel) -> str:
        if not channel.uses_phone:
            return user.email
        if not (user.phone or "").strip():
            raise InvalidChannelException(
                f"{channel.value} verification requires a phone number on your account"
            )
        return user.phone.strip()

    # ------------------------------------------------------------------
    # issuing codes
    # ------------------------------------------------------------------

    async def request_verification(self, user_id: uuid.UUID, channel: str) -> DispatchRead:
        """Issue a fresh code on ``channel`` and send it."""
        parsed = self.parse_channel(channel)
        async with verification_locks.hold((user_id, parsed.value)):
            return await self._issue(user_id, parsed, resend=False)

    async def resend_verification(self, user_id: uuid.UUID, channel: str) -> DispatchRead:
        """
        Like ``request_verification`` but only for a channel that already had
        a code issued (pending, or a previous dispatch failed). The previous
        code is superseded.
        """
        parsed = self.parse_channel(channel)
        async with verification_locks.hold((user_id, parsed.value)):
            return await self._issue(user_id, parsed, resend=True)

    async def _issue(self, user_id: uuid.UUID, channel: VerificationChannel, resend: bool) -> DispatchRead:
        user = await self._load_user(user_id)
        recipient = self.recipient_for(user, channel)

        state = await VerificationStateRepository.get_for_update(self.db, user.id, channel.value)
        VerificationStateMachine.ensure_can_issue(user, state)
        if resend:
            latest = await OtpRepository.get_latest(self.db, user.id, channel.value)
            VerificationStateMachine.ensure_can_resend(state, has_prior_code=latest is not None)

        now = self.clock()
        code = self.policy.generate_code()
        superseded = await OtpRepository.invalidate_active(self.db, user.id, channel.value, now)
        record = await OtpRepository.create(
            self.db,
            OtpRecordCreate(
                user_id=user.id,
                channel=channel.value,
                code=code,
                expires_at=self.policy.compute_expiry(now),
            ),
        )
        # The record must be durable before anything is sent
        await self._commit("commit_issue", user.id, channel.value)
        if superseded:
            logger.info("Superseded %d earlier %s code(s) for user %s", superseded, channel.value, user.id)

        try:
            await self.sender.send(recipient, code, channel.value)
        except NotificationError as e:
            logger.error(
                "Dispatch of %s code failed for user %s: %s", channel.value, user.id, e.reason
            )
            raise DispatchFailureException(channel.value) from e

        state = await VerificationStateRepository.get_for_update(self.db, user.id, channel.value)
        await VerificationStateMachine.apply(self.db, user, state, VerificationEvent.CODE_DISPATCHED, now)
        await self._commit("commit_dispatched", user.id, channel.value)

        logger.info(
            "%s code %s for user %s (record %s)",
            channel.value, "re-sent" if resend else "sent", user.id, record.id,
        )
        return DispatchRead(
            channel=channel.value,
            expires_at=record.expires_at,
            code=code if self.echo_code else None,
        )

    # ------------------------------------------------------------------
    # confirming codes
    # ------------------------------------------------------------------

    async def confirm_verification(self, user_id: uuid.UUID, channel: str, code: str) -> ConfirmRead:
        """
        Check ``code`` against the active record for ``channel``; on success
        the record is consumed and the channel becomes verified in one commit.
        """
        parsed = self.parse_channel(channel)
        if not self.policy.is_well_formed(code):
            raise InvalidCodeFormatException()

        async with verification_locks.hold((user_id, parsed.value)):
            return await self._confirm(user_id, parsed, code)

    async def _confirm(self, user_id: uuid.UUID, channel: VerificationChannel, code: str) -> ConfirmRead:
        user = await self._load_user(user_id)
        record = await OtpRepository.get_active(self.db, user.id, channel.value)
        if record is None:
            logger.info("Confirm without an active %s code for user %s", channel.value, user.id)
            raise NoActiveCodeException()

        now = self.clock()
        if not self.policy.is_valid(record, code, now):
            await self._reject(record, now)
            raise InvalidOrExpiredCodeException()

        state = await VerificationStateRepository.get_for_update(self.db, user.id, channel.value)
        if VerificationStatus(state.status) is VerificationStatus.VERIFIED:
            # Leftover code on a channel that is already done
            await OtpRepository.invalidate(self.db, record.id, now)
            await self._commit("commit_invalidate", user.id, channel.value)
            logger.warning("Active %s code found on verified channel for user %s", channel.value, user.id)
            raise NoActiveCodeException()

        if not await OtpRepository.mark_consumed(self.db, record.id, now):
            # Another confirm consumed it first
            await self.db.rollback()
            logger.info("Lost consume race on %s code for user %s", channel.value, user.id)
            raise NoActiveCodeException()

        await VerificationStateMachine.apply(self.db, user, state, VerificationEvent.CODE_CONFIRMED, now)
        await self._commit("commit_confirm", user.id, channel.value)
        await self.db.refresh(user)

        logger.info("User %s verified %s", user.id, channel.value)
        return ConfirmRead(channel=channel.value, user=UserRead.model_validate(user))

    async def _reject(self, record, now: datetime) -> None:
        """Count a failed attempt; retire the record once attempts run out."""
        if self.policy.is_expired(record, now):
            logger.info("Expired %s code submitted for user %s", record.channel, record.user_id)
            return
        attempts = await OtpRepository.register_failed_attempt(self.db, record.id)
        if self.policy.attempts_exhausted(attempts):
            await OtpRepository.invalidate(self.db, record.id, now)
            logger.warning(
                "Too many wrong %s codes for user %s; code retired", record.channel, record.user_id
            )
        else:
            logger.info("Wrong %s code for user %s (attempt %d)", record.channel, record.user_id, attempts)
        await self._commit("commit_failed_attempt", record.user_id, record.channel)

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------

    async def get_status(self, user_id: uuid.UUID) -> List[ChannelStatusRead]:
        user = await self._load_user(user_id)
        states = {s.channel: s for s in await VerificationStateRepository.list_for_user(self.db, user.id)}
        now = self.clock()
        result = []
        for channel in VerificationChannel:
            state = states.get(channel.value)
            status = VerificationStatus(state.status) if state else VerificationStatus.UNVERIFIED
            if status is not VerificationStatus.VERIFIED and getattr(user, VerificationStateMachine.flag_name(channel)):
                status = VerificationStatus.VERIFIED
            active = 0
            if status is not VerificationStatus.VERIFIED:
                active = await OtpRepository.count_active(self.db, user.id, channel.value, now)
            result.append(ChannelStatusRead(channel=channel.value, status=status.value, has_active_code=active > 0))
        return result
