from datetime import timedelta

import pytest

from app.celery_app import celery_app
from app.dto.verification_dto import OtpRecordCreate
from app.repositories.otp_repository import OtpRepository
from app.tasks.otp_cleanup_tasks import _purge_expired_otp_records
from tests.conftest import T0


def test_purge_is_scheduled_hourly():
    entries = {entry["task"] for entry in celery_app.conf.beat_schedule.values()}
    assert "purge_expired_otp_records" in entries
    assert "purge_expired_otp_records" in celery_app.tasks


@pytest.mark.asyncio
async def test_purge_respects_retention(db, session_factory, make_user):
    user = await make_user()
    for channel, expires_at in [
        ("email", T0 - timedelta(hours=30)),
        ("sms", T0 - timedelta(hours=2)),
        ("whatsapp", T0 + timedelta(minutes=5)),
    ]:
        await OtpRepository.create(
            db, OtpRecordCreate(user_id=user.id, channel=channel, code="483920", expires_at=expires_at)
        )
    await db.commit()

    deleted = await _purge_expired_otp_records(now=T0, session_factory=session_factory)

    assert deleted == 1
    assert await OtpRepository.get_latest(db, user.id, "email") is None
    assert await OtpRepository.get_latest(db, user.id, "sms") is not None
