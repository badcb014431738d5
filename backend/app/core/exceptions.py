"""
Custom exceptions and error handlers for consistent error responses.

Every reservation engine failure maps to a distinct, stable error code
that callers can branch on.
"""

import logging
from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from typing import Any, Dict

logger = logging.getLogger("reservations.errors")


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class InsufficientPermissionsError(AppException):
    """Raised when the actor lacks the role or ownership for an action."""

    def __init__(self, message: str = "Insufficient permissions", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_PERM_001",
            status_code=status.HTTP_403_FORBIDDEN,
            details=details
        )


class ResourceNotFoundError(AppException):
    """
    Raised when requested resource is not found.

    Also used for cross-tenant lookups so other tenants' ids never leak.
    """

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


class ResourceConflictError(AppException):
    """Raised when a write clashes with existing records (duplicate, still referenced)."""

    def __init__(self, resource: str, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_CONFLICT_001",
            status_code=status.HTTP_409_CONFLICT,
            details={"resource": resource, **(details or {})}
        )


class InvalidChecklistTemplateError(AppException):
    """Raised when a checklist template cannot be used for a reservation."""

    def __init__(self, template_id: Any, message: str = None):
        super().__init__(
            message=message or f"Checklist template {template_id} is not valid for this tenant",
            error_code="ERR_CHECKLIST_TEMPLATE_INVALID",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"template_id": template_id}
        )


class InvalidWindowError(AppException):
    """Raised for a malformed or non-positive reservation time window."""

    def __init__(self, message: str = "Invalid reservation window", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_RES_INVALID_WINDOW",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details
        )


class ResourceUnavailableError(AppException):
    """Raised when a vehicle cannot be bound in its current status."""

    def __init__(self, vehicle_id: Any, vehicle_status: str = None, message: str = None):
        super().__init__(
            message=message or f"Vehicle {vehicle_id} is not available",
            error_code="ERR_RES_UNAVAILABLE",
            status_code=status.HTTP_409_CONFLICT,
            details={"vehicle_id": vehicle_id, "vehicle_status": vehicle_status}
        )


class ScheduleConflictError(AppException):
    """Raised when another active hold overlaps the requested window."""

    def __init__(self, vehicle_id: Any, conflicts: int = 1, message: str = None):
        super().__init__(
            message=message or f"Vehicle {vehicle_id} is already reserved in this period",
            error_code="ERR_RES_SCHEDULE_CONFLICT",
            status_code=status.HTTP_409_CONFLICT,
            details={"vehicle_id": vehicle_id, "conflicts": conflicts}
        )


class InvalidTransitionError(AppException):
    """Raised when the current status does not permit the requested move."""

    error_code = "ERR_RES_INVALID_TRANSITION"
    http_status = status.HTTP_400_BAD_REQUEST

    def __init__(self, reservation_id: Any, current_status: str, action: str, message: str = None):
        super().__init__(
            message=message or f"Cannot {action} reservation {reservation_id} in status {current_status}",
            error_code=self.error_code,
            status_code=self.http_status,
            details={"reservation_id": reservation_id, "status": current_status, "action": action}
        )


class AlreadyFinalizedError(InvalidTransitionError):
    """Raised when a reservation is already in a terminal status."""

    error_code = "ERR_RES_ALREADY_FINALIZED"
    http_status = status.HTTP_409_CONFLICT


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    logger.warning("%s %s: %s", request.method, request.url.path, exc.error_code)
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
    # Map status code to error code
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
        headers=getattr(exc, "headers", None)
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error_code": "ERR_VALIDATION",
            "message": "Validation error",
            "details": {
                "errors": exc.errors()
            }
        }
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception("Unhandled exception: %s", type(exc).__name__)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )
