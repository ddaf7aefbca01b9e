"""
Error Handling Module for the POS Returns Engine

Exception hierarchy for the return lifecycle and the FastAPI handlers that
turn it into the {"detail": {...}} envelope:

- 422 for guard failures (ReturnValidationError and subclasses)
- 404 for unknown returns
- 409 for illegal transitions and lost races
- 502 for collaborator and dispatch failures
"""

from datetime import datetime, timezone
from enum import Enum
from time import perf_counter
from typing import Any, Dict, Optional, Union
from uuid import UUID
import logging

from fastapi import FastAPI, Request, HTTPException, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from sqlalchemy.exc import (
    SQLAlchemyError,
    IntegrityError,
    OperationalError,
    DataError,
)
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger("returns.errors")


class ErrorCode(str, Enum):
    """Error codes carried in the envelope's detail.code"""

    # 422
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"
    MISSING_FIELD = "MISSING_FIELD"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    INVALID_DATE_RANGE = "INVALID_DATE_RANGE"

    # 404 / 405 / 409
    NOT_FOUND = "NOT_FOUND"
    RETURN_NOT_FOUND = "RETURN_NOT_FOUND"
    METHOD_NOT_ALLOWED = "METHOD_NOT_ALLOWED"
    RESOURCE_CONFLICT = "RESOURCE_CONFLICT"
    VERSION_CONFLICT = "VERSION_CONFLICT"
    ILLEGAL_TRANSITION = "ILLEGAL_TRANSITION"

    # 502 / 503
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"
    DISPATCH_FAILED = "DISPATCH_FAILED"
    DATABASE_UNAVAILABLE = "DATABASE_UNAVAILABLE"

    # 500
    DATABASE_ERROR = "DATABASE_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class AppException(Exception):
    """Base exception for all application exceptions"""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None,
        field: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.field = field
        self.original_error = original_error
        self.timestamp = datetime.now(timezone.utc)
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Body of the envelope's detail object"""
        result = {
            "code": self.code.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.field:
            result["field"] = self.field
        if self.details:
            result["details"] = self.details
        return result


# ============================================================================
# Validation Exceptions
# ============================================================================

class ValidationException(AppException):
    """Base validation exception"""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        code: ErrorCode = ErrorCode.VALIDATION_ERROR,
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details,
            field=field,
        )


class ReturnValidationError(ValidationException):
    """A return payload failed a lifecycle guard"""


class MissingFieldException(ReturnValidationError):
    """Required field is missing or blank"""

    def __init__(self, field: str, message: Optional[str] = None):
        super().__init__(
            message=message or f"'{field}' is required",
            field=field,
            code=ErrorCode.MISSING_FIELD,
        )


class InvalidAmountException(ReturnValidationError):
    """Money value out of range"""

    def __init__(self, amount: Any, field: str = "amount", message: Optional[str] = None):
        super().__init__(
            message=message or f"Invalid amount for {field}: {amount}",
            field=field,
            code=ErrorCode.INVALID_AMOUNT,
            details={"provided_amount": str(amount)},
        )


class InvalidDateRangeException(ValidationException):
    """start_date after end_date on a list or report query"""

    def __init__(self, start_date: Any, end_date: Any):
        super().__init__(
            message=f"Invalid date range: start_date ({start_date}) must not be after end_date ({end_date})",
            field="start_date",
            code=ErrorCode.INVALID_DATE_RANGE,
            details={"start_date": str(start_date), "end_date": str(end_date)},
        )


# ============================================================================
# Lookup and State Exceptions
# ============================================================================

class ReturnNotFoundError(AppException):
    """Product return not found by id or return number"""

    def __init__(self, return_id: Optional[Union[str, UUID]] = None, return_number: Optional[str] = None):
        key = return_number or (str(return_id) if return_id else None)
        lookup = "return_number" if return_number else "id"
        super().__init__(
            code=ErrorCode.RETURN_NOT_FOUND,
            message=f"Return '{key}' not found" if key else "Return not found",
            status_code=status.HTTP_404_NOT_FOUND,
            details={lookup: key},
        )


class ConflictException(AppException):
    """The return is not in a state that allows the request"""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.RESOURCE_CONFLICT,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            details=details,
        )


class IllegalTransitionError(ConflictException):
    """Requested operation is not allowed from the record's current status"""

    def __init__(self, operation: str, current_status: Any, allowed_from: Optional[list] = None):
        current = getattr(current_status, "value", current_status)
        details: Dict[str, Any] = {"operation": operation, "current_status": current}
        if allowed_from is not None:
            details["allowed_from"] = [getattr(s, "value", s) for s in allowed_from]
        super().__init__(
            message=f"Cannot {operation} a return in status {current}",
            code=ErrorCode.ILLEGAL_TRANSITION,
            details=details,
        )


class ConflictingStateError(ConflictException):
    """Another transition on the same record won the race"""

    def __init__(self, return_id: Union[str, UUID], message: Optional[str] = None):
        super().__init__(
            message=message or f"Return '{return_id}' was modified concurrently; refetch and retry",
            code=ErrorCode.VERSION_CONFLICT,
            details={"return_id": str(return_id)},
        )


# ============================================================================
# Collaborator Exceptions
# ============================================================================

class ExternalServiceException(AppException):
    """A service outside this engine failed"""

    def __init__(
        self,
        service_name: str,
        message: str,
        code: ErrorCode = ErrorCode.EXTERNAL_SERVICE_ERROR,
        original_error: Optional[Exception] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        _details = details or {}
        _details["service"] = service_name
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_502_BAD_GATEWAY,
            details=_details,
            original_error=original_error,
        )


class CollaboratorError(ExternalServiceException):
    """A collaborator call failed, timed out or was refused"""

    def __init__(
        self,
        service_name: str,
        message: str,
        original_error: Optional[Exception] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            service_name=service_name,
            message=f"{service_name} error: {message}",
            original_error=original_error,
            details=details,
        )
        self.reason = message


class DispatchFailure(ExternalServiceException):
    """Resolution side effect failed; the return stays APPROVED and Process may be retried"""

    def __init__(
        self,
        return_id: Union[str, UUID],
        resolution_type: Any,
        service_name: str,
        reason: str,
        original_error: Optional[Exception] = None,
    ):
        resolution = getattr(resolution_type, "value", resolution_type)
        super().__init__(
            service_name=service_name,
            message=f"Could not complete {resolution} for return '{return_id}': {reason}",
            code=ErrorCode.DISPATCH_FAILED,
            original_error=original_error,
            details={
                "return_id": str(return_id),
                "resolution_type": resolution,
                "collaborator_error": reason,
                "retryable": True,
            },
        )


# ============================================================================
# Exception Handlers
# ============================================================================

def create_error_response(
    code: ErrorCode,
    message: str,
    status_code: int,
    details: Optional[Dict[str, Any]] = None,
    field: Optional[str] = None,
) -> JSONResponse:
    """Envelope for errors that did not start as an AppException"""
    content = {
        "detail": {
            "code": code.value,
            "message": message,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
    }
    if field:
        content["detail"]["field"] = field
    if details:
        content["detail"]["details"] = details

    return JSONResponse(status_code=status_code, content=jsonable_encoder(content))


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        f"{request.method} {request.url.path} -> {exc.status_code} {exc.code.value}: {exc.message}",
        extra={"code": exc.code.value, "details": exc.details},
        exc_info=exc.original_error,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=jsonable_encoder({"detail": exc.to_dict()}),
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Routing-level errors (unknown path, wrong method)"""
    code_map = {
        404: ErrorCode.NOT_FOUND,
        405: ErrorCode.METHOD_NOT_ALLOWED,
        409: ErrorCode.RESOURCE_CONFLICT,
        422: ErrorCode.VALIDATION_ERROR,
    }
    error_code = code_map.get(exc.status_code)
    if error_code is None:
        error_code = ErrorCode.INVALID_INPUT if exc.status_code < 500 else ErrorCode.INTERNAL_ERROR
    message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)

    logger.warning(f"{request.method} {request.url.path} -> {exc.status_code}: {message}")
    return create_error_response(code=error_code, message=message, status_code=exc.status_code)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Schema errors, one entry per offending field"""
    errors = []
    for error in exc.errors():
        location = error["loc"][0] if error["loc"] else "body"
        field = ".".join(str(part) for part in error["loc"][1:]) or str(location)
        errors.append({
            "location": location,
            "field": field,
            "message": error["msg"],
            "type": error["type"],
        })

    logger.warning(f"{request.method} {request.url.path} -> 422: {len(errors)} invalid field(s)")
    return create_error_response(
        code=ErrorCode.VALIDATION_ERROR,
        message="Request validation failed",
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        details={"errors": errors},
        field=errors[0]["field"] if len(errors) == 1 else None,
    )


async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Database errors that escaped the services"""
    if isinstance(exc, IntegrityError):
        # Unique return number / event sequence collisions from parallel writers
        status_code = status.HTTP_409_CONFLICT
        error_code = ErrorCode.RESOURCE_CONFLICT
        message = "The return was changed by another request; refetch and retry"
    elif isinstance(exc, OperationalError):
        status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        error_code = ErrorCode.DATABASE_UNAVAILABLE
        message = "Returns database is unavailable"
    elif isinstance(exc, DataError):
        status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
        error_code = ErrorCode.INVALID_INPUT
        message = "Value does not fit the returns schema"
    else:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
        error_code = ErrorCode.DATABASE_ERROR
        message = "A database error occurred"

    logger.error(
        f"{request.method} {request.url.path} -> {status_code} {type(exc).__name__}: {exc}",
        exc_info=status_code >= 500,
    )
    return create_error_response(code=error_code, message=message, status_code=status_code)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.critical(
        f"{request.method} {request.url.path} -> 500 {type(exc).__name__}: {exc}",
        exc_info=True,
    )
    # Internal details stay in the log
    return create_error_response(
        code=ErrorCode.INTERNAL_ERROR,
        message="An unexpected error occurred. Please try again later.",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI application"""
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(SQLAlchemyError, sqlalchemy_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)


# ============================================================================
# Error Tracking Middleware
# ============================================================================

class ErrorTrackingMiddleware:
    """Logs requests that escape every handler, with the acting user and timing"""

    def __init__(self, app: FastAPI):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        started = perf_counter()
        try:
            await self.app(scope, receive, send)
        except Exception as exc:
            headers = dict(scope.get("headers") or [])
            actor = headers.get(b"x-actor-id", b"-").decode("latin-1")
            elapsed_ms = (perf_counter() - started) * 1000
            logger.error(
                f"{scope.get('method')} {scope.get('path')} failed after {elapsed_ms:.0f}ms "
                f"(actor={actor}): {type(exc).__name__}",
                exc_info=True,
            )
            raise


__all__ = [
    "AppException",
    "ErrorCode",
    "ValidationException",
    "ReturnValidationError",
    "MissingFieldException",
    "InvalidAmountException",
    "InvalidDateRangeException",
    "ReturnNotFoundError",
    "ConflictException",
    "IllegalTransitionError",
    "ConflictingStateError",
    "ExternalServiceException",
    "CollaboratorError",
    "DispatchFailure",
    "setup_exception_handlers",
    "create_error_response",
    "ErrorTrackingMiddleware",
]
