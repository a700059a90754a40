from __future__ import annotations

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = structlog.get_logger(__name__)


class AppError(Exception):
    """Base error carrying a stable machine-readable kind and an HTTP status."""

    kind = "app_error"
    status_code = 500
    default_message = "Application error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}


class ValidationError(AppError):
    kind = "validation_error"
    status_code = 400
    default_message = "Validation failed"


class CouponIneligible(ValidationError):
    kind = "coupon_ineligible"
    default_message = "Coupon code is not valid"

    def __init__(self, message: str | None = None, reason: str | None = None):
        super().__init__(message)
        self.reason = reason


class InsufficientFunds(AppError):
    kind = "insufficient_funds"
    status_code = 400
    default_message = "Insufficient wallet balance"


class CouponAlreadyUsed(AppError):
    kind = "coupon_already_used"
    status_code = 400
    default_message = "You have already used this coupon"


class NotFound(AppError):
    kind = "not_found"
    status_code = 404
    default_message = "Resource not found"


class UserNotFound(NotFound):
    kind = "user_not_found"
    default_message = "User not found"


class NotCancellable(AppError):
    kind = "not_cancellable"
    status_code = 404
    default_message = "Order not found or cannot be cancelled"


class NotRefundable(AppError):
    kind = "not_refundable"
    status_code = 400
    default_message = "Only completed or processing orders can be refunded"


class AlreadyRefunded(AppError):
    kind = "already_refunded"
    status_code = 400
    default_message = "Order is already refunded"


class NotDeletable(AppError):
    kind = "not_deletable"
    status_code = 400
    default_message = "Only cancelled or failed orders can be deleted"


class Conflict(AppError):
    kind = "conflict"
    status_code = 409
    default_message = "Resource already exists"


class InvalidTransition(AppError):
    kind = "invalid_transition"
    status_code = 409
    default_message = "Order status change is not allowed"


class AuthError(AppError):
    kind = "authentication_error"
    status_code = 401
    default_message = "Authentication required"


class Forbidden(AppError):
    kind = "forbidden"
    status_code = 403
    default_message = "Insufficient permissions"


class UpstreamError(AppError):
    kind = "upstream_error"
    status_code = 502
    default_message = "Payment gateway is unavailable"


class UpstreamTimeout(UpstreamError):
    kind = "upstream_timeout"
    status_code = 504
    default_message = "Payment gateway timed out"


def _error_response(status_code: int, kind: str, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": {"kind": kind, "message": message}})


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    log = logger.warning if exc.status_code < 500 else logger.error
    log("request_failed", path=request.url.path, kind=exc.kind, error=exc.message)
    return _error_response(exc.status_code, exc.kind, exc.message)


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _error_response(exc.status_code, "http_error", str(exc.detail))


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    loc = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"{loc}: {first.get('msg')}" if loc else str(first.get("msg", "Invalid request"))
    return _error_response(422, "validation_error", message)


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_error", path=request.url.path)
    return _error_response(500, "internal_error", "Internal server error")


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
