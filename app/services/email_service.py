from fastapi_mail import FastMail, MessageSchema, ConnectionConfig, MessageType
from pydantic import EmailStr
from typing import List, Optional

from app.configs.settings import settings


def build_mail_config() -> ConnectionConfig:
    return ConnectionConfig(
        MAIL_USERNAME=settings.MAIL_USERNAME,
        MAIL_PASSWORD=settings.MAIL_PASSWORD,
        MAIL_FROM=settings.MAIL_FROM,
        MAIL_PORT=settings.MAIL_PORT,
        MAIL_SERVER=settings.MAIL_SERVER,
        MAIL_FROM_NAME=settings.MAIL_FROM_NAME,
        MAIL_STARTTLS=settings.MAIL_STARTTLS,
        MAIL_SSL_TLS=settings.MAIL_SSL_TLS,
        USE_CREDENTIALS=True,
        VALIDATE_CERTS=True,
    )


class EmailService:

    def __init__(self, conf: Optional[ConnectionConfig] = None):
        self._conf = conf

    @property
    def conf(self) -> ConnectionConfig:
        if self._conf is None:
            self._conf = build_mail_config()
        return self._conf

    async def send_email(self, subject: str, recipients: List[EmailStr], body: str):
        message = MessageSchema(
            subject=subject,
            recipients=recipients,
            body=body,
            subtype=MessageType.html,
        )
        fm = FastMail(self.conf)
        await fm.send_message(message)

    async def send_verification_code(self, email: EmailStr, code: str, expire_minutes: int):
        subject = "Your verification code"
        body = (
            f'<h2 style="color: #4a6ee0;">{settings.APP_NAME} - Verification</h2>'
            f'<p>Thank you for registering with us. '
            f'Use the code below to verify your email address:</p>'
            f'<p style="font-size: 28px; font-weight: 600; letter-spacing: 0.2em;">{code}</p>'
            f'<p>This code expires in {expire_minutes} minutes.</p>'
            f"<p>If you didn't request this, you can ignore this email.</p>"
        )
        await self.send_email(subject, [email], body)
