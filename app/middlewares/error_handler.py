import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.dto.response import ErrorResponse
from app.exceptions.base_exception import AppException
from app.exceptions.verification_exceptions import InvalidChannelException, InvalidCodeFormatException

logger = logging.getLogger(__name__)

# Body fields whose validation failures map onto a verification error kind
_FIELD_ERRORS = {
    "code": InvalidCodeFormatException,
    "channel": InvalidChannelException,
    "verification_method": InvalidChannelException,
}


def _error_response(body: ErrorResponse, headers=None) -> JSONResponse:
    return JSONResponse(status_code=body.status_code, content=body.model_dump(), headers=headers)


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Serialize application errors as ``{error_code, message, status_code}``."""
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s (%s)", request.method, request.url.path, exc.message, exc.error_code)
    body = ErrorResponse(error_code=exc.error_code, message=exc.message, status_code=exc.status_code)
    return _error_response(body, exc.headers)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    Malformed bodies are client errors (400) with the same tagged shape as
    every other failure. 422 stays reserved for a wrong or expired code.
    """
    errors = exc.errors()
    for error in errors:
        field = error.get("loc", ())[-1] if error.get("loc") else None
        if field in _FIELD_ERRORS:
            return await app_exception_handler(request, _FIELD_ERRORS[field]())

    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"{location}: {first.get('msg')}" if location else (first.get("msg") or "Invalid request body")
    body = ErrorResponse(error_code="VALIDATION_ERROR", message=message, status_code=status.HTTP_400_BAD_REQUEST)
    return _error_response(body)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    body = ErrorResponse(
        error_code="INTERNAL_SERVER_ERROR",
        message="Internal server error",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    return _error_response(body)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
