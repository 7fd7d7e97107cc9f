from typing import Any

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse


class AppError(Exception):
    """Base application error with consistent schema.

    ``retriable`` tells callers whether repeating the same call can succeed
    without anything else changing first.
    """

    retriable = False

    def __init__(
        self,
        message: str,
        code: str = "ERROR",
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class NotFoundError(AppError):
    def __init__(self, message: str = "Not found"):
        super().__init__(message, code="NOT_FOUND", status_code=status.HTTP_404_NOT_FOUND)


class ConflictError(AppError):
    def __init__(self, message: str = "Conflict", details: dict[str, Any] | None = None):
        super().__init__(message, code="CONFLICT", status_code=status.HTTP_409_CONFLICT, details=details)


class InvalidRequestError(AppError):
    def __init__(self, message: str = "Invalid request", details: dict[str, Any] | None = None):
        super().__init__(message, code="INVALID_REQUEST", status_code=status.HTTP_400_BAD_REQUEST, details=details)


class InsufficientFundsError(AppError):
    """Business-rule rejection of a debit; the store itself is healthy."""

    def __init__(self, message: str = "Insufficient run tokens", details: dict[str, Any] | None = None):
        super().__init__(message, code="INSUFFICIENT_FUNDS", status_code=status.HTTP_402_PAYMENT_REQUIRED, details=details)


class CodeInvalidError(AppError):
    def __init__(self, message: str = "Redeem code is invalid or already used"):
        super().__init__(message, code="CODE_INVALID", status_code=status.HTTP_409_CONFLICT)


class StoreUnavailableError(AppError):
    retriable = True

    def __init__(self, message: str = "Run token store unavailable"):
        super().__init__(message, code="STORE_UNAVAILABLE", status_code=status.HTTP_503_SERVICE_UNAVAILABLE)


class CreditFailedAfterClaimError(AppError):
    """Code was claimed but the balance credit did not go through.

    The code is spent; an operator has to credit ``amount`` to ``user_id`` by hand.
    """

    def __init__(self, code: str, amount: int, user_id: str, reason: str = ""):
        super().__init__(
            "Redeem code was consumed but the credit failed; contact support",
            code="CREDIT_FAILED_AFTER_CLAIM",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details={"code": code, "amount": amount, "user_id": user_id, "reason": reason},
        )


def error_response(request: Request, exc: AppError) -> ORJSONResponse:
    body = {
        "success": False,
        "error": {
            "message": exc.message,
            "code": exc.code,
            "details": exc.details,
        },
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(status_code=exc.status_code, content=body)


async def app_exception_handler(request: Request, exc: AppError) -> ORJSONResponse:
    return error_response(request, exc)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> ORJSONResponse:
    body = {
        "success": False,
        "error": {
            "message": "Validation error",
            "code": "VALIDATION_ERROR",
            "details": {"errors": jsonable_errors(exc)},
        },
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(
        status_code=422,
        content=body,
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict[str, Any]]:
    from fastapi.encoders import jsonable_encoder
    return jsonable_encoder(exc.errors())


async def generic_exception_handler(request: Request, exc: Exception) -> ORJSONResponse:
    from runtokens.core.logging import get_logger
    get_logger(__name__).exception("unhandled_exception", exc_info=exc)
    body = {
        "success": False,
        "error": {
            "message": "Internal server error",
            "code": "INTERNAL_ERROR",
            "details": {},
        },
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=body,
    )
