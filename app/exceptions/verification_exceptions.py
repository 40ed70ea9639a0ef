from fastapi import status

from app.exceptions.base_exception import (
    AppException,
    BadRequestException,
    ConflictException,
    ExternalAPIException,
    NotFoundException,
)

# Shared by every code-related failure so responses never reveal which check failed
GENERIC_CODE_ERROR_MESSAGE = "Invalid or expired code. Please try again."


class InvalidChannelException(BadRequestException):
    def __init__(self, message: str = "Unsupported verification channel"):
        super().__init__(message=message, error_code="INVALID_CHANNEL")


class InvalidCodeFormatException(BadRequestException):
    def __init__(self, message: str = "Verification code must be exactly 6 digits"):
        super().__init__(message=message, error_code="INVALID_CODE_FORMAT")


class AlreadyVerifiedException(ConflictException):
    def __init__(self, channel: str):
        super().__init__(message=f"Your {channel} is already verified", error_code="ALREADY_VERIFIED")


class ResendNotAllowedException(ConflictException):
    def __init__(self, channel: str):
        super().__init__(
            message=f"No {channel} verification has been requested yet. Request a code first.",
            error_code="RESEND_NOT_ALLOWED",
        )


class DispatchFailureException(ExternalAPIException):
    def __init__(self, channel: str):
        super().__init__(
            message=f"We could not send your code via {channel}. Please try again.",
            error_code="DISPATCH_FAILURE",
        )


class NoActiveCodeException(NotFoundException):
    def __init__(self):
        super().__init__(message=GENERIC_CODE_ERROR_MESSAGE, error_code="NO_ACTIVE_CODE")


class InvalidOrExpiredCodeException(AppException):
    def __init__(self):
        super().__init__(
            message=GENERIC_CODE_ERROR_MESSAGE,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code="INVALID_OR_EXPIRED_CODE",
        )


class UserNotFoundException(NotFoundException):
    def __init__(self):
        super().__init__(message="User not found", error_code="USER_NOT_FOUND")


class StorageException(AppException):
    """Persistence failure; the request must not report success."""
    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(
            message="A storage error occurred. Please try again later.",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            error_code="STORAGE_ERROR",
        )
