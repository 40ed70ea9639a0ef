from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Optional
from datetime import datetime
import uuid

from app.utils.security import MIN_PASSWORD_LENGTH


class UserCreate(BaseModel):
    """DTO for the registration request."""
    username: str = Field(..., min_length=3, max_length=50)
    name: str = Field(..., min_length=1, max_length=120)
    email: EmailStr
    phone: Optional[str] = Field(None, description="Phone number in international format, e.g. +919812345678")
    password: str = Field(..., min_length=MIN_PASSWORD_LENGTH)
    role: str = Field("buyer", description="buyer | owner | agent")
    # Plain string: parse_channel gives unsupported values a specific INVALID_CHANNEL message
    verification_method: str = Field("email", description="email | whatsapp | sms")

    @field_validator("username", "name")
    @classmethod
    def strip_text(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("phone")
    @classmethod
    def normalize_phone(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip().replace(" ", "").replace("-", "")
        return v or None

    @field_validator("role")
    @classmethod
    def check_role(cls, v: str) -> str:
        if v not in ("buyer", "owner", "agent"):
            raise ValueError("role must be one of buyer, owner, agent")
        return v


class UserRead(BaseModel):
    """DTO returned to clients; never carries the password hash."""
    id: uuid.UUID
    username: str
    name: str
    email: str
    phone: Optional[str] = None
    role: str
    is_active: bool
    email_verified: bool
    phone_verified: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class TokenRead(BaseModel):
    access_token: str
    token_type: str = "bearer"


class RegistrationRead(TokenRead):
    user: UserRead
    otp_sent: bool
    verification_method: str
    # Only populated outside production when OTP_ECHO_CODE is on
    code: Optional[str] = None
