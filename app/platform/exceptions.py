import logging
from typing import Any, Optional

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.platform.config import settings
from app.platform.response import error_response

logger = logging.getLogger(__name__)


class AppException(Exception):
    """Base for every error the API reports on purpose."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "Something went wrong"
    error_code: Optional[str] = None
    # detail is internal-only for server faults
    expose_detail: bool = True

    def __init__(
        self,
        message: Optional[str] = None,
        detail: Optional[Any] = None,
        status_code: Optional[int] = None,
    ):
        self.message = message or self.default_message
        self.detail = detail
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class ValidationError(AppException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Validation failed"


class InvalidCodeError(ValidationError):
    default_message = "Invalid OTP"


class AlreadyVerifiedError(AppException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "User already verified"


class NotVerifiedError(AppException):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "User not verified. Please verify your email first."


class InvalidCredentialError(AppException):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Invalid credentials"


class NotFoundError(AppException):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class ConflictError(AppException):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Resource already exists"


class RateLimitedError(AppException):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "Too many requests"


class UnauthorizedError(AppException):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Unauthorized"
    error_code = "UNAUTHORIZED"


class TokenExpiredError(UnauthorizedError):
    default_message = "Unauthorized - Token expired"
    error_code = "TOKEN_EXPIRED"


class TokenInvalidError(UnauthorizedError):
    default_message = "Unauthorized - Invalid token"
    error_code = "TOKEN_INVALID"


class ServerConfigError(AppException):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Server configuration error"
    expose_detail = False


class InternalError(AppException):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Something went wrong"
    expose_detail = False


def add_exception_handlers(app):
    @app.exception_handler(AppException)
    async def app_exception_handler(request: Request, exc: AppException):
        if exc.status_code >= 500:
            logger.error(
                f"{type(exc).__name__} on {request.method} {request.url.path}: "
                f"{exc.message} (detail: {exc.detail})"
            )
        detail = exc.detail if exc.expose_detail or settings.DEBUG else None
        return error_response(
            message=exc.message,
            status_code=exc.status_code,
            detail=detail,
            error_code=exc.error_code,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        # drop "input"/"ctx": they may echo passwords or hold exception objects
        errors = [
            {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
            for err in exc.errors()
        ]
        message = "Validation failed"
        if errors:
            field = ".".join(str(part) for part in errors[0].get("loc", ()) if part != "body")
            if errors[0].get("type") == "missing" and field:
                message = f"{field} is required"
        return error_response(
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=errors,
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return error_response(message=str(exc.detail) or "Error", status_code=exc.status_code)

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logging.exception(f"Unhandled exception: {exc}")
        return error_response(
            message=InternalError.default_message,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(exc) if settings.DEBUG else None,
        )
