import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, DateTime, Boolean, Integer, ForeignKey, Index, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.database.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OtpRecord(Base):
    __tablename__ = "otp_records"
    __table_args__ = (
        # At most one unconsumed code per (user, channel)
        Index(
            "uq_otp_records_active_user_channel",
            "user_id",
            "channel",
            unique=True,
            postgresql_where=text("NOT consumed"),
            sqlite_where=text("consumed = 0"),
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    code = Column(String(10), nullable=False)
    channel = Column(String(20), nullable=False)  # email, whatsapp, sms
    expires_at = Column(DateTime(timezone=True), nullable=False)
    consumed = Column(Boolean, nullable=False, default=False)
    consumed_at = Column(DateTime(timezone=True), nullable=True)  # matched by the user
    superseded_at = Column(DateTime(timezone=True), nullable=True)  # replaced by a newer code
    attempts = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=_utcnow, index=True)

    user = relationship("User", back_populates="otp_records")

    def __repr__(self):
        # never include the code
        return f"<OtpRecord(user_id='{self.user_id}', channel='{self.channel}', consumed={self.consumed})>"
