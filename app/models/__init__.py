# Import every model so SQLAlchemy metadata is populated
from app.models.user import User
from app.models.verification_state import VerificationState, VerificationChannel, VerificationStatus
from app.models.otp_record import OtpRecord

__all__ = [
    "User",
    "VerificationState",
    "VerificationChannel",
    "VerificationStatus",
    "OtpRecord",
]
