import logging

from fastapi import APIRouter, Depends, Form, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database.database import get_db
from app.dto.response import ResponseModel
from app.dto.user_dto import RegistrationRead, TokenRead, UserCreate, UserRead
from app.exceptions.base_exception import UnauthorizedException
from app.exceptions.verification_exceptions import DispatchFailureException
from app.middlewares.auth_middleware import create_access_token, get_current_user
from app.models.user import User
from app.services.notification_service import NotificationSender, get_notification_sender
from app.services.user_service import UserService
from app.services.verification_service import VerificationService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/register", response_model=ResponseModel[RegistrationRead], status_code=status.HTTP_201_CREATED)
async def register(
    data: UserCreate,
    db: AsyncSession = Depends(get_db),
    sender: NotificationSender = Depends(get_notification_sender),
):
    """
    Create an account, log it in and send the first verification code.

    - **verification_method**: email | whatsapp | sms (phone required for the last two)

    The account exists even if the code could not be delivered; ``otp_sent``
    is then false and the client should offer a resend.
    """
    user = await UserService.register_user(db, data)
    access_token = create_access_token(data={"sub": str(user.id)})

    otp_sent, code = True, None
    try:
        dispatch = await VerificationService(db, sender).request_verification(user.id, data.verification_method)
        code = dispatch.code
    except DispatchFailureException:
        otp_sent = False
        logger.warning("Registered user %s but the first %s code was not delivered", user.id, data.verification_method)

    user = await UserService.get_user(db, user.id)
    return ResponseModel.success(
        data=RegistrationRead(
            access_token=access_token,
            user=UserRead.model_validate(user),
            otp_sent=otp_sent,
            verification_method=VerificationService.parse_channel(data.verification_method).value,
            code=code,
        ),
        message="Registration successful" if otp_sent else "Registration successful, but the verification code could not be sent",
        status_code=status.HTTP_201_CREATED,
    )


@router.post("/login", response_model=TokenRead)
async def login(
    username: str = Form(...),
    password: str = Form(...),
    db: AsyncSession = Depends(get_db)
):
    """
    Log in and receive an access token.

    - **username**: username or email
    - **password**: password
    """
    user = await UserService.authenticate_user(db=db, login=username, password=password)

    if not user:
        raise UnauthorizedException("Incorrect username or password", error_code="INVALID_CREDENTIALS")

    return TokenRead(access_token=create_access_token(data={"sub": str(user.id)}))


@router.get("/me", response_model=ResponseModel[UserRead])
async def read_me(current_user: User = Depends(get_current_user)):
    return ResponseModel.success(data=UserRead.model_validate(current_user))
