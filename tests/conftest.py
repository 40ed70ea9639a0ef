import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Optional

# Set env vars BEFORE any app imports so Settings picks them up
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["ENVIRONMENT"] = "test"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["OTP_ECHO_CODE"] = "false"
os.environ["MAIL_SERVER"] = ""
os.environ["TWILIO_ACCOUNT_SID"] = ""

import httpx  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402

from app.database.database import Base, get_db  # noqa: E402
from app.dto.user_dto import UserCreate  # noqa: E402
import app.models  # noqa: E402,F401
from app.services.notification_service import (  # noqa: E402
    NotificationError,
    NotificationSender,
    get_notification_sender,
)
from app.services.otp_policy import OtpPolicy  # noqa: E402
from app.services.user_service import UserService  # noqa: E402
from app.services.verification_service import VerificationService  # noqa: E402

T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@dataclass
class SentCode:
    recipient: str
    code: str
    channel: str


class RecordingSender(NotificationSender):
    """Keeps every code it is asked to deliver; ``fail = True`` simulates an outage."""

    def __init__(self):
        self.sent: List[SentCode] = []
        self.fail = False

    async def send(self, recipient: str, code: str, channel: str) -> None:
        if self.fail:
            raise NotificationError(channel, "simulated provider outage")
        self.sent.append(SentCode(recipient, code, channel))

    def last_code(self, channel: Optional[str] = None) -> str:
        for item in reversed(self.sent):
            if channel is None or item.channel == channel:
                return item.code
        raise AssertionError(f"nothing sent on {channel}")


class FrozenClock:

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest_asyncio.fixture
async def engine(tmp_path):
    # A file database so separate sessions see each other's commits
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def policy():
    return OtpPolicy(ttl_minutes=10, max_attempts=5)


@pytest.fixture
def make_service(sender, clock, policy):
    def _make(session: AsyncSession, echo_code: bool = False) -> VerificationService:
        return VerificationService(session, sender, policy=policy, clock=clock, echo_code=echo_code)
    return _make


@pytest.fixture
def service(db, make_service):
    return make_service(db)


@pytest.fixture
def make_user(db):
    async def _make(username: str = "asha", phone: Optional[str] = "+919812345678", **overrides):
        data = UserCreate(
            username=username,
            name=overrides.pop("name", username.title()),
            email=overrides.pop("email", f"{username}@example.com"),
            phone=phone,
            password=overrides.pop("password", "correct-horse"),
            **overrides,
        )
        return await UserService.register_user(db, data)
    return _make


@pytest_asyncio.fixture
async def client(session_factory, sender):
    from main import app

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notification_sender] = lambda: sender
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
