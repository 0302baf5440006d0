"""
Custom exceptions and error handlers for consistent error responses.

Provides standardized error codes for the tracking engine and the
global exception handlers registered on the FastAPI app.
"""

import logging

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from typing import Any, Dict, List

logger = logging.getLogger("tracking.errors")


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class TripNotFoundError(AppException):
    """Raised when a trip is not being tracked."""

    def __init__(self, trip_id: str):
        super().__init__(
            message=f"Trip {trip_id} is not being tracked",
            error_code="TRIP_NOT_FOUND",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"trip_id": trip_id}
        )
        self.trip_id = trip_id


class AlreadyTrackingError(AppException):
    """Raised when starting a trip that already has a live entry."""

    def __init__(self, trip_id: str):
        super().__init__(
            message=f"Trip {trip_id} is already being tracked",
            error_code="TRIP_ALREADY_TRACKING",
            status_code=status.HTTP_409_CONFLICT,
            details={"trip_id": trip_id}
        )
        self.trip_id = trip_id


class InvalidTripDataError(AppException):
    """Raised when a trip-start payload is missing required fields."""

    def __init__(self, errors: List[str]):
        super().__init__(
            message=f"Invalid trip data: {', '.join(errors)}",
            error_code="INVALID_TRIP_DATA",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"errors": errors}
        )
        self.errors = errors


class InvalidLocationError(AppException):
    """Raised when a location sample is out of range. Nothing is mutated."""

    def __init__(self, errors: List[str]):
        super().__init__(
            message=f"Invalid location data: {', '.join(errors)}",
            error_code="INVALID_LOCATION",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"errors": errors}
        )
        self.errors = errors


class InvalidHistoryQueryError(AppException):
    """Raised for history queries outside the supported bounds."""

    def __init__(self, message: str):
        super().__init__(
            message=message,
            error_code="INVALID_HISTORY_QUERY",
            status_code=status.HTTP_400_BAD_REQUEST
        )


class InvalidCleanupAgeError(AppException):
    """Raised when a cleanup max age is below the configured minimum."""

    def __init__(self, max_age_seconds: float, minimum_seconds: float):
        super().__init__(
            message=f"Max age must be at least {minimum_seconds} seconds",
            error_code="INVALID_CLEANUP_AGE",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"max_age_seconds": max_age_seconds, "minimum_seconds": minimum_seconds}
        )


class RouteProviderError(Exception):
    """Raised by remote route providers. Never leaves the route planning boundary."""
    pass


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
    # Map status code to error code
    error_code_map = {
        400: "ERR_BAD_REQUEST",
        404: "ERR_NOT_FOUND",
        409: "ERR_CONFLICT",
        500: "ERR_INTERNAL_SERVER"
    }

    error_code = error_code_map.get(exc.status_code, "ERR_UNKNOWN")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": error_code,
            "message": exc.detail,
            "details": {}
        }
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error_code": "ERR_VALIDATION",
            "message": "Validation error",
            "details": {
                "errors": [
                    {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
                    for err in exc.errors()
                ]
            }
        }
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception("Unhandled exception", extra={"path": request.url.path})

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )
