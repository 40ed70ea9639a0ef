from datetime import datetime
from typing import Optional
import uuid

from pydantic import BaseModel, Field

from app.dto.user_dto import UserRead


class OtpRecordCreate(BaseModel):
    user_id: uuid.UUID
    channel: str
    code: str
    expires_at: datetime


class VerificationRequestBody(BaseModel):
    # Plain strings: the service owns channel and code validation
    channel: str = Field(..., description="email | whatsapp | sms")


class VerificationConfirmBody(BaseModel):
    channel: str = Field(..., description="email | whatsapp | sms")
    code: str = Field(..., description="6-digit code received on the channel")


class DispatchRead(BaseModel):
    dispatched: bool = True
    channel: str
    expires_at: datetime
    code: Optional[str] = None


class ConfirmRead(BaseModel):
    verified: bool = True
    channel: str
    user: UserRead


class ChannelStatusRead(BaseModel):
    channel: str
    status: str
    # An unexpired, unconsumed code is waiting to be confirmed
    has_active_code: bool = False
