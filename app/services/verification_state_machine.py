"""
Per-user, per-channel verification status.

    unverified   --code_dispatched-->  pending_code
    pending_code --code_dispatched-->  pending_code
    pending_code --code_confirmed--->  verified
    unverified   --code_confirmed--->  verified

``verified`` is terminal. This module is the only writer of the user's
``email_verified`` / ``phone_verified`` flags.
"""

import enum
import logging
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions.verification_exceptions import (
    AlreadyVerifiedException,
    ResendNotAllowedException,
    StorageException,
)
from app.models.user import User
from app.models.verification_state import VerificationChannel, VerificationState, VerificationStatus

logger = logging.getLogger(__name__)


class VerificationEvent(str, enum.Enum):
    CODE_DISPATCHED = "code_dispatched"
    CODE_CONFIRMED = "code_confirmed"


class InvalidTransitionError(Exception):
    def __init__(self, status: VerificationStatus, event: VerificationEvent):
        self.status = status
        self.event = event
        super().__init__(f"No transition from {status.value} on {event.value}")


_TRANSITIONS = {
    (VerificationStatus.UNVERIFIED, VerificationEvent.CODE_DISPATCHED): VerificationStatus.PENDING_CODE,
    (VerificationStatus.PENDING_CODE, VerificationEvent.CODE_DISPATCHED): VerificationStatus.PENDING_CODE,
    (VerificationStatus.PENDING_CODE, VerificationEvent.CODE_CONFIRMED): VerificationStatus.VERIFIED,
    # A code reported as undelivered may still have arrived; possession is what counts
    (VerificationStatus.UNVERIFIED, VerificationEvent.CODE_CONFIRMED): VerificationStatus.VERIFIED,
}

_VERIFIED_FLAG = {
    VerificationChannel.EMAIL: "email_verified",
    VerificationChannel.WHATSAPP: "phone_verified",
    VerificationChannel.SMS: "phone_verified",
}


class VerificationStateMachine:

    @staticmethod
    def next_status(current: VerificationStatus, event: VerificationEvent) -> VerificationStatus:
        try:
            return _TRANSITIONS[(VerificationStatus(current), event)]
        except KeyError:
            raise InvalidTransitionError(VerificationStatus(current), event) from None

    @staticmethod
    def flag_name(channel: VerificationChannel) -> str:
        return _VERIFIED_FLAG[VerificationChannel(channel)]

    @staticmethod
    def is_verified(user: User, state: VerificationState) -> bool:
        """Verified when the channel itself is, or its contact was proven via another channel."""
        if VerificationStatus(state.status) is VerificationStatus.VERIFIED:
            return True
        return bool(getattr(user, VerificationStateMachine.flag_name(state.channel)))

    @staticmethod
    def ensure_can_issue(user: User, state: VerificationState) -> None:
        if VerificationStateMachine.is_verified(user, state):
            raise AlreadyVerifiedException(state.channel)

    @staticmethod
    def ensure_can_resend(state: VerificationState, has_prior_code: bool) -> None:
        """A resend needs a pending code or at least one earlier issue (e.g. a failed dispatch)."""
        if VerificationStatus(state.status) is VerificationStatus.PENDING_CODE:
            return
        if not has_prior_code:
            raise ResendNotAllowedException(state.channel)

    @staticmethod
    async def apply(
        db: AsyncSession,
        user: User,
        state: VerificationState,
        event: VerificationEvent,
        now: datetime,
    ) -> VerificationStatus:
        """Move ``state`` along ``event``; reaching verified also sets the user's flag."""
        current = VerificationStatus(state.status)
        user_id, channel = user.id, state.channel
        new_status = VerificationStateMachine.next_status(current, event)

        state.status = new_status.value
        state.updated_at = now
        if new_status is VerificationStatus.VERIFIED:
            setattr(user, VerificationStateMachine.flag_name(state.channel), True)
            user.updated_at = now

        try:
            await db.flush()
        except SQLAlchemyError as e:
            logger.error(
                "Failed to store %s transition for user %s channel %s: %s",
                event.value, user_id, channel, e,
            )
            raise StorageException("apply_transition") from e
        logger.info(
            "Verification state for user %s channel %s: %s -> %s",
            user_id, channel, current.value, new_status.value,
        )
        return new_status
