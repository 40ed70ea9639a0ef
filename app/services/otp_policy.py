"""
Rules for one-time verification codes: how they are generated, how long they
live and when a submitted code matches. Pure functions, no I/O.
"""

import hmac
import secrets
from datetime import datetime, timedelta
from typing import Optional

from app.configs.settings import settings
from app.utils.time import ensure_utc

CODE_LENGTH = 6
CODE_MIN = 10 ** (CODE_LENGTH - 1)  # 100000
CODE_MAX = 10 ** CODE_LENGTH - 1  # 999999


class OtpPolicy:

    def __init__(self, ttl_minutes: Optional[int] = None, max_attempts: Optional[int] = None):
        self.ttl = timedelta(minutes=ttl_minutes if ttl_minutes is not None else settings.OTP_EXPIRE_MINUTES)
        self.max_attempts = max_attempts if max_attempts is not None else settings.OTP_MAX_ATTEMPTS

    @staticmethod
    def generate_code() -> str:
        """Uniform over [100000, 999999], drawn from the OS CSPRNG."""
        return str(CODE_MIN + secrets.randbelow(CODE_MAX - CODE_MIN + 1))

    def compute_expiry(self, now: datetime) -> datetime:
        return ensure_utc(now) + self.ttl

    @staticmethod
    def is_well_formed(code) -> bool:
        return (
            isinstance(code, str)
            and len(code) == CODE_LENGTH
            and code.isascii()
            and code.isdigit()
        )

    @staticmethod
    def is_expired(record, now: datetime) -> bool:
        return ensure_utc(now) > ensure_utc(record.expires_at)

    @staticmethod
    def is_valid(record, supplied_code: str, now: datetime) -> bool:
        """
        True iff the record is unconsumed, not past ``expires_at`` and its code
        equals ``supplied_code``. The comparison runs in constant time.
        """
        if record.consumed:
            return False
        if OtpPolicy.is_expired(record, now):
            return False
        return hmac.compare_digest(record.code.encode("utf-8"), supplied_code.encode("utf-8"))

    def attempts_exhausted(self, attempts: int) -> bool:
        return attempts >= self.max_attempts
