"""
otp_cleanup_tasks.py
Periodic deletion of OTP records that expired more than OTP_RETENTION_HOURS
ago. Expired codes are already rejected at confirm time; this only keeps the
table small. Scheduled hourly in app.celery_app.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Dict, Optional

from app.celery_app import celery_app
from app.configs.settings import settings
from app.database.database import async_session
from app.repositories.otp_repository import OtpRepository
from app.utils.time import get_utc_now

logger = logging.getLogger(__name__)


def _get_loop() -> asyncio.AbstractEventLoop:
    """Make sure the Celery worker always has an event loop."""
    try:
        return asyncio.get_event_loop()
    except RuntimeError:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        return loop


@celery_app.task(name="purge_expired_otp_records")
def purge_expired_otp_records() -> Dict[str, int]:
    """Celery task: returns how many OTP records were deleted."""
    loop = _get_loop()
    deleted = loop.run_until_complete(_purge_expired_otp_records())
    return {"deleted": deleted}


async def _purge_expired_otp_records(now: Optional[datetime] = None, session_factory=async_session) -> int:
    cutoff = (now or get_utc_now()) - timedelta(hours=settings.OTP_RETENTION_HOURS)
    async with session_factory() as db:
        deleted = await OtpRepository.purge_expired(db, cutoff)
        await db.commit()
    logger.info("Purged %d OTP record(s) that expired before %s", deleted, cutoff.isoformat())
    return deleted
