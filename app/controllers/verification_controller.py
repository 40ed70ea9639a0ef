from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.database.database import get_db
from app.dto.response import ResponseModel
from app.dto.verification_dto import (
    ChannelStatusRead,
    ConfirmRead,
    DispatchRead,
    VerificationConfirmBody,
    VerificationRequestBody,
)
from app.middlewares.auth_middleware import get_current_user
from app.models.user import User
from app.services.notification_service import NotificationSender, get_notification_sender
from app.services.verification_service import VerificationService

router = APIRouter(prefix="/verification", tags=["Verification"])


def get_verification_service(
    db: AsyncSession = Depends(get_db),
    sender: NotificationSender = Depends(get_notification_sender),
) -> VerificationService:
    return VerificationService(db, sender)


@router.post("/request", response_model=ResponseModel[DispatchRead])
async def request_code(
    body: VerificationRequestBody,
    current_user: User = Depends(get_current_user),
    service: VerificationService = Depends(get_verification_service),
):
    """
    Send a new code on the given channel. Any earlier code for the channel
    stops working.
    """
    result = await service.request_verification(current_user.id, body.channel)
    return ResponseModel.success(data=result, message=f"Verification code sent via {result.channel}")


@router.post("/resend", response_model=ResponseModel[DispatchRead])
async def resend_code(
    body: VerificationRequestBody,
    current_user: User = Depends(get_current_user),
    service: VerificationService = Depends(get_verification_service),
):
    result = await service.resend_verification(current_user.id, body.channel)
    return ResponseModel.success(data=result, message=f"Verification code re-sent via {result.channel}")


@router.post("/confirm", response_model=ResponseModel[ConfirmRead])
async def confirm_code(
    body: VerificationConfirmBody,
    current_user: User = Depends(get_current_user),
    service: VerificationService = Depends(get_verification_service),
):
    result = await service.confirm_verification(current_user.id, body.channel, body.code)
    return ResponseModel.success(data=result, message=f"{result.channel} verified")


@router.get("/status", response_model=ResponseModel[List[ChannelStatusRead]])
async def verification_status(
    current_user: User = Depends(get_current_user),
    service: VerificationService = Depends(get_verification_service),
):
    return ResponseModel.success(data=await service.get_status(current_user.id))
