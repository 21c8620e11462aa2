"""
Custom exception classes and error handling.

This module provides custom exceptions and utilities for consistent
error handling across the application.
"""
import logging
from typing import Any, Dict, Optional
from fastapi import Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class CoyaException(Exception):
    """Base exception for all Coya-specific errors."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(CoyaException):
    """Raised when input validation fails."""

    def __init__(self, message: str, field: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, status.HTTP_400_BAD_REQUEST, details)
        self.field = field


class MissingCallIdError(ValidationError):
    """Raised when a webhook event carries no call identifier."""

    def __init__(self, message_type: Optional[str] = None):
        super().__init__(
            "Missing call_id",
            field="call_id",
            details={"message_type": message_type} if message_type else None,
        )
        self.message_type = message_type


class UnauthorizedError(CoyaException):
    """Raised when a shared secret does not match."""

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message, status.HTTP_401_UNAUTHORIZED)


# =============================================================================
# Exception Handlers
# =============================================================================

async def coya_exception_handler(request: Request, exc: CoyaException) -> JSONResponse:
    """Handle CoyaException instances."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "error": exc.message,
            "details": exc.details
        }
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle uncaught exceptions."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "success": False,
            "error": "Internal server error",
            "details": {"message": str(exc)}
        }
    )


def register_exception_handlers(app):
    """
    Register all custom exception handlers with the FastAPI app.

    Call this during app initialization:
        from src.exceptions import register_exception_handlers
        register_exception_handlers(app)
    """
    app.add_exception_handler(CoyaException, coya_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
