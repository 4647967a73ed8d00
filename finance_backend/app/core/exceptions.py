"""
Custom exceptions and error handlers for consistent error responses.

Provides standardized error codes, the store error taxonomy and global
exception handlers.
"""

import enum
import logging
from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import SQLAlchemyError, DBAPIError, InterfaceError, OperationalError, ProgrammingError
from typing import Any, Dict

logger = logging.getLogger(__name__)


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class ResourceNotFoundError(AppException):
    """Raised when requested resource is not found."""

    def __init__(self, resource: str, resource_id: Any = None):
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} with ID {resource_id} not found"
        super().__init__(
            message=message,
            error_code="ERR_NOT_FOUND_001",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "id": resource_id}
        )


class ImmutableEntryError(AppException):
    """Raised when deleting an entry the application treats as undeletable."""

    def __init__(self, entry_type: str, entry_id: str, reason: str):
        super().__init__(
            message=f"{entry_type} {entry_id} cannot be deleted: {reason}",
            error_code="ERR_FIN_001",
            status_code=status.HTTP_409_CONFLICT,
            details={"entry_type": entry_type, "id": entry_id, "reason": reason}
        )


class InsufficientBalanceError(AppException):
    """Raised when a transfer exceeds the source account balance."""

    def __init__(self, account_id: str, balance: float, amount: float):
        super().__init__(
            message="Insufficient balance in source account",
            error_code="ERR_FIN_002",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"account_id": account_id, "balance": balance, "amount": amount}
        )


class InvalidTransferError(AppException):
    """Raised for transfers that cannot be posted."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_FIN_003",
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details
        )


class InvalidPaymentError(AppException):
    """Raised for liability payments that cannot be posted."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_FIN_004",
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details
        )


class ReconciliationStateError(AppException):
    """Raised when a reconciliation session cannot move to the requested state."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_REC_001",
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details
        )


class StoreUnavailableError(AppException):
    """Raised when the database cannot be reached. Fatal for the request."""

    def __init__(self, message: str = "Data store unavailable", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_STORE_001",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details=details
        )


class SchemaUnavailableError(AppException):
    """Raised when every fallback for a missing table/column/procedure failed."""

    def __init__(self, message: str = "Ledger schema is not available", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_STORE_002",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details=details
        )


# Store error taxonomy

class StoreErrorKind(str, enum.Enum):
    UNAVAILABLE = "unavailable"  # connection/auth failure
    SCHEMA_MISMATCH = "schema_mismatch"  # missing table/column/procedure
    OTHER = "other"


_UNAVAILABLE_MARKERS = (
    "connection refused",
    "could not connect",
    "connection is closed",
    "password authentication failed",
    "unable to open database",
    "server closed the connection",
)


def classify_store_error(exc: BaseException) -> StoreErrorKind:
    """
    Map a database exception onto the store error taxonomy.

    Connection and authentication failures are UNAVAILABLE; missing
    tables/columns/functions and other statement-level errors are
    SCHEMA_MISMATCH.
    """
    if isinstance(exc, (ConnectionError, OSError)):
        return StoreErrorKind.UNAVAILABLE

    if isinstance(exc, DBAPIError):
        if exc.connection_invalidated or isinstance(exc, InterfaceError):
            return StoreErrorKind.UNAVAILABLE
        text = str(exc.orig if exc.orig is not None else exc).lower()
        if isinstance(exc.orig, (ConnectionError, OSError)) or any(m in text for m in _UNAVAILABLE_MARKERS):
            return StoreErrorKind.UNAVAILABLE
        if isinstance(exc, (OperationalError, ProgrammingError)):
            return StoreErrorKind.SCHEMA_MISMATCH

    if isinstance(exc, SQLAlchemyError):
        return StoreErrorKind.SCHEMA_MISMATCH

    return StoreErrorKind.OTHER


def raise_if_unavailable(exc: BaseException) -> None:
    """Re-raise store unavailability as StoreUnavailableError; ignore other kinds."""
    if classify_store_error(exc) == StoreErrorKind.UNAVAILABLE:
        raise StoreUnavailableError(details={"error": str(exc)}) from exc


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": exc.details
        }
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for FastAPI HTTPException with standardized format."""
    error_code_map = {
        400: "ERR_BAD_REQUEST",
        401: "ERR_UNAUTHORIZED",
        403: "ERR_FORBIDDEN",
        404: "ERR_NOT_FOUND",
        500: "ERR_INTERNAL_SERVER"
    }

    error_code = error_code_map.get(exc.status_code, "ERR_UNKNOWN")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": error_code,
            "message": exc.detail,
            "details": {}
        },
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error_code": "ERR_VALIDATION",
            "message": "Validation error",
            "details": {
                "errors": jsonable_errors(exc)
            }
        }
    )


def jsonable_errors(exc: RequestValidationError) -> list:
    """Validation errors with non-serializable context values stringified."""
    errors = []
    for error in exc.errors():
        error = dict(error)
        if "ctx" in error:
            error["ctx"] = {k: str(v) for k, v in error["ctx"].items()}
        errors.append(error)
    return errors


async def store_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Handler for database errors that escaped the service layer."""
    kind = classify_store_error(exc)
    logger.error("Unhandled store error (%s) on %s: %s", kind.value, request.url.path, exc)

    if kind == StoreErrorKind.UNAVAILABLE:
        status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        error_code = "ERR_STORE_001"
        message = "Data store unavailable"
    else:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
        error_code = "ERR_STORE_003"
        message = "Data store error"

    return JSONResponse(
        status_code=status_code,
        content={
            "error_code": error_code,
            "message": message,
            "details": {"error": str(exc.orig) if isinstance(exc, DBAPIError) else str(exc)}
        }
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception("Unhandled exception: %s: %s", type(exc).__name__, exc)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )
