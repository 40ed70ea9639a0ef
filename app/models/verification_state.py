import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.database.database import Base


class VerificationChannel(str, enum.Enum):
    EMAIL = "email"
    WHATSAPP = "whatsapp"
    SMS = "sms"

    @classmethod
    def values(cls):
        return [c.value for c in cls]

    @property
    def uses_phone(self) -> bool:
        return self is not VerificationChannel.EMAIL


class VerificationStatus(str, enum.Enum):
    UNVERIFIED = "unverified"
    PENDING_CODE = "pending_code"
    VERIFIED = "verified"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class VerificationState(Base):
    """Verification status of one contact channel of one user."""
    __tablename__ = "verification_states"
    __table_args__ = (
        UniqueConstraint("user_id", "channel", name="uq_verification_state_user_channel"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    channel = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False, default=VerificationStatus.UNVERIFIED.value)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    user = relationship("User", back_populates="verification_states")

    def __repr__(self):
        return f"<VerificationState(user_id='{self.user_id}', channel='{self.channel}', status='{self.status}')>"
