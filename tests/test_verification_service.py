import asyncio
import uuid
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import OperationalError

from app.exceptions.verification_exceptions import (
    AlreadyVerifiedException,
    DispatchFailureException,
    GENERIC_CODE_ERROR_MESSAGE,
    InvalidChannelException,
    InvalidCodeFormatException,
    InvalidOrExpiredCodeException,
    NoActiveCodeException,
    ResendNotAllowedException,
    StorageException,
    UserNotFoundException,
)
from app.repositories.otp_repository import OtpRepository
from app.repositories.user_repository import UserRepository
from app.repositories.verification_state_repository import VerificationStateRepository
from app.services.verification_service import verification_locks


async def _status(db, user, channel):
    return (await VerificationStateRepository.get(db, user.id, channel)).status


@pytest.mark.asyncio
async def test_request_then_confirm_verifies_email(db, service, sender, make_user):
    user = await make_user()

    result = await service.request_verification(user.id, "email")
    assert result.dispatched is True
    assert result.code is None
    assert sender.sent[-1].recipient == "asha@example.com"
    assert await _status(db, user, "email") == "pending_code"

    confirmed = await service.confirm_verification(user.id, "email", sender.last_code("email"))
    assert confirmed.verified is True
    assert confirmed.user.email_verified is True
    assert confirmed.user.phone_verified is False
    assert await _status(db, user, "email") == "verified"

    latest = await OtpRepository.get_latest(db, user.id, "email")
    assert latest.consumed is True


@pytest.mark.asyncio
async def test_second_request_supersedes_the_first_code(db, service, sender, clock, make_user):
    user = await make_user()

    await service.request_verification(user.id, "email")
    first = sender.last_code()
    await service.resend_verification(user.id, "email")
    second = sender.last_code()
    assert len(sender.sent) == 2

    assert await OtpRepository.count_active(db, user.id, "email", clock()) == 1
    if first != second:
        with pytest.raises(InvalidOrExpiredCodeException):
            await service.confirm_verification(user.id, "email", first)
    await service.confirm_verification(user.id, "email", second)


@pytest.mark.asyncio
async def test_code_cannot_be_used_twice(service, sender, make_user):
    user = await make_user()
    await service.request_verification(user.id, "sms")
    code = sender.last_code()

    await service.confirm_verification(user.id, "sms", code)
    with pytest.raises(NoActiveCodeException):
        await service.confirm_verification(user.id, "sms", code)


@pytest.mark.asyncio
async def test_phone_channel_requires_a_phone_number(db, service, sender, make_user):
    user = await make_user(phone=None)

    with pytest.raises(InvalidChannelException):
        await service.request_verification(user.id, "sms")
    assert sender.sent == []
    assert await OtpRepository.get_latest(db, user.id, "sms") is None


@pytest.mark.asyncio
async def test_verified_channel_cannot_be_requested_again(db, service, sender, make_user):
    user = await make_user()
    await service.request_verification(user.id, "email")
    await service.confirm_verification(user.id, "email", sender.last_code())

    with pytest.raises(AlreadyVerifiedException):
        await service.request_verification(user.id, "email")
    with pytest.raises(AlreadyVerifiedException):
        await service.resend_verification(user.id, "email")
    assert len(sender.sent) == 1
    assert await _status(db, user, "email") == "verified"
    assert await OtpRepository.get_active(db, user.id, "email") is None


@pytest.mark.asyncio
async def test_whatsapp_verification_covers_sms(service, sender, make_user):
    user = await make_user()
    await service.request_verification(user.id, "whatsapp")
    assert sender.sent[-1].recipient == "+919812345678"
    confirmed = await service.confirm_verification(user.id, "whatsapp", sender.last_code())
    assert confirmed.user.phone_verified is True

    with pytest.raises(AlreadyVerifiedException):
        await service.request_verification(user.id, "sms")


@pytest.mark.asyncio
async def test_correct_code_one_millisecond_after_expiry_is_rejected(db, service, sender, clock, make_user):
    user = await make_user()
    await service.request_verification(user.id, "email")

    clock.advance(minutes=10, milliseconds=1)
    with pytest.raises(InvalidOrExpiredCodeException):
        await service.confirm_verification(user.id, "email", sender.last_code())
    assert await _status(db, user, "email") == "pending_code"


@pytest.mark.asyncio
async def test_correct_code_at_the_expiry_instant_is_accepted(service, sender, clock, make_user):
    user = await make_user()
    await service.request_verification(user.id, "email")

    clock.advance(minutes=10)
    confirmed = await service.confirm_verification(user.id, "email", sender.last_code())
    assert confirmed.verified is True


@pytest.mark.asyncio
async def test_confirm_without_a_code_reports_no_active_code(service, make_user):
    user = await make_user()
    with pytest.raises(NoActiveCodeException) as exc_info:
        await service.confirm_verification(user.id, "email", "123456")
    assert exc_info.value.message == GENERIC_CODE_ERROR_MESSAGE


@pytest.mark.asyncio
@pytest.mark.parametrize("code", ["12345", "abcdef", "1234567", ""])
async def test_malformed_code_is_rejected_before_lookup(service, make_user, code):
    user = await make_user()
    with pytest.raises(InvalidCodeFormatException):
        await service.confirm_verification(user.id, "email", code)


@pytest.mark.asyncio
@pytest.mark.parametrize("channel", ["telegram", "", "e-mail"])
async def test_unknown_channel_is_rejected(service, make_user, channel):
    user = await make_user()
    with pytest.raises(InvalidChannelException):
        await service.request_verification(user.id, channel)


@pytest.mark.asyncio
async def test_channel_names_are_case_insensitive(service, sender, make_user):
    user = await make_user()
    result = await service.request_verification(user.id, " SMS ")
    assert result.channel == "sms"


@pytest.mark.asyncio
async def test_unknown_user(service):
    with pytest.raises(UserNotFoundException):
        await service.request_verification(uuid.uuid4(), "email")


@pytest.mark.asyncio
async def test_dispatch_failure_keeps_the_record_but_not_the_state(db, service, sender, make_user):
    user = await make_user()
    sender.fail = True

    with pytest.raises(DispatchFailureException):
        await service.request_verification(user.id, "sms")

    assert await _status(db, user, "sms") == "unverified"
    record = await OtpRepository.get_active(db, user.id, "sms")
    assert record is not None

    # the failed issue counts as a prior code, so resend is allowed
    sender.fail = False
    await service.resend_verification(user.id, "sms")
    assert await _status(db, user, "sms") == "pending_code"
    assert (await OtpRepository.get_active(db, user.id, "sms")).id != record.id


@pytest.mark.asyncio
async def test_resend_without_a_prior_request_is_refused(db, service, sender, make_user):
    user = await make_user()
    with pytest.raises(ResendNotAllowedException):
        await service.resend_verification(user.id, "email")
    assert sender.sent == []
    assert await OtpRepository.get_latest(db, user.id, "email") is None


@pytest.mark.asyncio
async def test_wrong_codes_retire_the_record_after_max_attempts(db, service, sender, make_user):
    user = await make_user()
    await service.request_verification(user.id, "email")
    code = sender.last_code()

    # never generated: codes start at 100000
    for _ in range(5):
        with pytest.raises(InvalidOrExpiredCodeException):
            await service.confirm_verification(user.id, "email", "000000")

    with pytest.raises(NoActiveCodeException):
        await service.confirm_verification(user.id, "email", code)
    assert (await UserRepository.get_by_id(db, user.id)).email_verified is False


@pytest.mark.asyncio
async def test_wrong_code_below_the_limit_keeps_the_record(db, service, sender, make_user):
    user = await make_user()
    await service.request_verification(user.id, "email")

    with pytest.raises(InvalidOrExpiredCodeException):
        await service.confirm_verification(user.id, "email", "000000")
    assert (await OtpRepository.get_active(db, user.id, "email")).attempts == 1

    confirmed = await service.confirm_verification(user.id, "email", sender.last_code())
    assert confirmed.verified is True


@pytest.mark.asyncio
async def test_concurrent_confirms_have_exactly_one_winner(session_factory, service, make_service, sender, make_user):
    user = await make_user()
    await service.request_verification(user.id, "email")
    code = sender.last_code()

    async def attempt():
        async with session_factory() as session:
            return await make_service(session).confirm_verification(user.id, "email", code)

    results = await asyncio.gather(*(attempt() for _ in range(4)), return_exceptions=True)

    successes = [r for r in results if not isinstance(r, Exception)]
    failures = [r for r in results if isinstance(r, Exception)]
    assert len(successes) == 1
    assert all(isinstance(f, NoActiveCodeException) for f in failures)
    assert len(verification_locks) == 0


@pytest.mark.asyncio
async def test_concurrent_requests_leave_one_active_record(session_factory, make_service, sender, clock, db, make_user):
    user = await make_user()

    async def attempt():
        async with session_factory() as session:
            return await make_service(session).request_verification(user.id, "email")

    await asyncio.gather(*(attempt() for _ in range(3)))

    assert len(sender.sent) == 3
    assert await OtpRepository.count_active(db, user.id, "email", clock()) == 1
    # the last issued code is the live one
    active = await OtpRepository.get_active(db, user.id, "email")
    assert active.code == sender.last_code()


@pytest.mark.asyncio
async def test_echo_code_returns_the_generated_code(db, make_service, sender, make_user):
    user = await make_user()
    result = await make_service(db, echo_code=True).request_verification(user.id, "email")
    assert result.code == sender.last_code()


@pytest.mark.asyncio
async def test_status_reports_every_channel(db, service, sender, make_user):
    user = await make_user()
    await service.request_verification(user.id, "whatsapp")
    await service.confirm_verification(user.id, "whatsapp", sender.last_code())
    await service.request_verification(user.id, "email")

    statuses = {s.channel: s.status for s in await service.get_status(user.id)}
    assert statuses == {"email": "pending_code", "whatsapp": "verified", "sms": "verified"}


def _failing_commit():
    return AsyncMock(side_effect=OperationalError("COMMIT", None, Exception("connection lost")))


@pytest.mark.asyncio
async def test_failed_confirm_commit_leaves_code_and_state_untouched(
    db, service, sender, session_factory, monkeypatch, make_user
):
    user = await make_user()
    user_id = user.id
    await service.request_verification(user_id, "email")
    code = sender.last_code()

    monkeypatch.setattr(db, "commit", _failing_commit())
    with pytest.raises(StorageException) as exc_info:
        await service.confirm_verification(user_id, "email", code)
    assert exc_info.value.operation == "commit_confirm"

    async with session_factory() as other:
        record = await OtpRepository.get_active(other, user_id, "email")
        assert record is not None
        assert record.consumed is False
        state = await VerificationStateRepository.get(other, user_id, "email")
        assert state.status == "pending_code"
        assert (await UserRepository.get_by_id(other, user_id)).email_verified is False


@pytest.mark.asyncio
async def test_failed_issue_commit_sends_nothing(db, service, sender, session_factory, monkeypatch, make_user):
    user = await make_user()
    user_id = user.id

    monkeypatch.setattr(db, "commit", _failing_commit())
    with pytest.raises(StorageException) as exc_info:
        await service.request_verification(user_id, "sms")
    assert exc_info.value.operation == "commit_issue"
    assert sender.sent == []

    async with session_factory() as other:
        assert await OtpRepository.get_latest(other, user_id, "sms") is None
        state = await VerificationStateRepository.get(other, user_id, "sms")
        assert state.status == "unverified"


@pytest.mark.asyncio
async def test_status_shows_whether_a_code_is_waiting(service, sender, clock, make_user):
    user = await make_user()
    await service.request_verification(user.id, "email")
    await service.request_verification(user.id, "sms")
    await service.confirm_verification(user.id, "sms", sender.last_code("sms"))

    waiting = {s.channel: s.has_active_code for s in await service.get_status(user.id)}
    assert waiting == {"email": True, "whatsapp": False, "sms": False}

    clock.advance(minutes=11)
    statuses = {s.channel: (s.status, s.has_active_code) for s in await service.get_status(user.id)}
    assert statuses["email"] == ("pending_code", False)
