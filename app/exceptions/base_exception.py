from typing import Dict, Optional

from fastapi import status


class AppException(Exception):
    """
    Base exception for every application error.

    ``error_code`` is the stable, machine-readable kind of the failure; the
    error handler serializes it next to ``message`` so clients branch on it
    instead of on status codes or transport details.
    """
    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code: str = "INTERNAL_ERROR",
        headers: Optional[Dict[str, str]] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.headers = headers
        super().__init__(self.message)


class NotFoundException(AppException):
    """Resource not found"""
    def __init__(self, message: str = "Resource not found", error_code: str = "NOT_FOUND"):
        super().__init__(message=message, status_code=status.HTTP_404_NOT_FOUND, error_code=error_code)


class BadRequestException(AppException):
    """Invalid request"""
    def __init__(self, message: str = "Bad request", error_code: str = "BAD_REQUEST"):
        super().__init__(message=message, status_code=status.HTTP_400_BAD_REQUEST, error_code=error_code)


class UnauthorizedException(AppException):
    """Missing or invalid credentials"""
    def __init__(self, message: str = "Could not validate credentials", error_code: str = "UNAUTHORIZED"):
        super().__init__(
            message=message,
            status_code=status.HTTP_401_UNAUTHORIZED,
            error_code=error_code,
            headers={"WWW-Authenticate": "Bearer"},
        )


class ForbiddenException(AppException):
    """Access denied"""
    def __init__(self, message: str = "Forbidden", error_code: str = "FORBIDDEN"):
        super().__init__(message=message, status_code=status.HTTP_403_FORBIDDEN, error_code=error_code)


class ConflictException(AppException):
    """Request conflicts with the current state of the resource"""
    def __init__(self, message: str = "Conflict", error_code: str = "CONFLICT"):
        super().__init__(message=message, status_code=status.HTTP_409_CONFLICT, error_code=error_code)


class ExternalAPIException(AppException):
    """An external provider call failed"""
    def __init__(self, message: str = "External API error", error_code: str = "EXTERNAL_API_ERROR"):
        super().__init__(message=message, status_code=status.HTTP_502_BAD_GATEWAY, error_code=error_code)
