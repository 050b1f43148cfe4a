"""
Error handling utilities for the CRM search engine.

This module provides the exception hierarchy shared by the query engine,
the backend clients and the HTTP surface, plus the FastAPI handlers that
render those exceptions as standardized error responses.
"""

from enum import Enum
from typing import Any, List, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from crm_search.utils.logging import get_logger

logger = get_logger(__name__)


class ErrorCode(str, Enum):
    """Enumeration of error codes for consistent error responses."""

    # Server errors (1xxx)
    SERVER_ERROR = "1000"
    TIMEOUT = "1003"

    # Authentication errors (2xxx)
    UNAUTHORIZED = "2000"
    SESSION_INVALID = "2002"
    TOKEN_REFRESH_FAILED = "2004"
    NOT_CONNECTED = "2005"

    # Request errors (3xxx)
    VALIDATION_ERROR = "3001"
    NOT_FOUND = "3002"

    # Backend errors (4xxx)
    BACKEND_ERROR = "4000"
    BACKEND_RATE_LIMITED = "4001"
    MALFORMED_QUERY = "4004"

    # Search errors (6xxx)
    QUERY_COMPILATION_ERROR = "6000"
    ANALYSIS_UNAVAILABLE = "6003"


class ErrorDetail(BaseModel):
    """Model representing detailed error information."""

    location: Optional[str] = None
    param: Optional[str] = None
    value: Optional[Any] = None
    message: str


class ErrorResponse(BaseModel):
    """Model representing a standardized error response."""

    code: str
    message: str
    details: Optional[List[ErrorDetail]] = None
    request_id: Optional[str] = None


class SearchEngineError(Exception):
    """Base exception class for CRM search errors."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[List[ErrorDetail]] = None,
    ):
        """
        Initialize a new search engine error.

        Args:
            code: Error code
            message: Error message
            status_code: HTTP status code to return
            details: Optional list of error details
        """
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or []
        super().__init__(self.message)


class ValidationError(SearchEngineError):
    """Exception for validation errors."""

    def __init__(
        self,
        message: str = "Validation error",
        details: Optional[List[ErrorDetail]] = None,
    ):
        """Initialize a new validation error."""
        super().__init__(
            code=ErrorCode.VALIDATION_ERROR,
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details,
        )


class NotFoundError(SearchEngineError):
    """Exception for resource not found errors."""

    def __init__(
        self,
        message: str = "Resource not found",
        details: Optional[List[ErrorDetail]] = None,
    ):
        """Initialize a new not found error."""
        super().__init__(
            code=ErrorCode.NOT_FOUND,
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            details=details,
        )


class UnauthorizedError(SearchEngineError):
    """Exception for authentication errors."""

    def __init__(
        self,
        message: str = "Unauthorized",
        details: Optional[List[ErrorDetail]] = None,
    ):
        """Initialize a new unauthorized error."""
        super().__init__(
            code=ErrorCode.UNAUTHORIZED,
            message=message,
            status_code=status.HTTP_401_UNAUTHORIZED,
            details=details,
        )


class NotConnectedError(SearchEngineError):
    """Raised when a team has no usable CRM session or transport."""

    def __init__(self, message: str = "CRM backend not connected for this team"):
        super().__init__(
            code=ErrorCode.NOT_CONNECTED,
            message=message,
            status_code=status.HTTP_401_UNAUTHORIZED,
        )


class BackendError(SearchEngineError):
    """Exception for errors reported by a search backend."""

    def __init__(
        self,
        message: str = "Backend error",
        details: Optional[List[ErrorDetail]] = None,
        status_code: int = status.HTTP_502_BAD_GATEWAY,
        code: ErrorCode = ErrorCode.BACKEND_ERROR,
    ):
        """Initialize a new backend error."""
        super().__init__(
            code=code,
            message=message,
            status_code=status_code,
            details=details,
        )


class SessionInvalidError(BackendError):
    """The backend rejected the access token; a refresh may recover."""

    def __init__(self, message: str = "Session expired or invalid"):
        super().__init__(
            message=message,
            status_code=status.HTTP_401_UNAUTHORIZED,
            code=ErrorCode.SESSION_INVALID,
        )


class RateLimitedError(BackendError):
    """The backend refused the request because of request limits."""

    def __init__(self, message: str = "Backend rate limit exceeded"):
        super().__init__(
            message=message,
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            code=ErrorCode.BACKEND_RATE_LIMITED,
        )


class TokenRefreshError(SearchEngineError):
    """Exception raised when an access token cannot be refreshed."""

    def __init__(self, message: str = "Token refresh failed"):
        super().__init__(
            code=ErrorCode.TOKEN_REFRESH_FAILED,
            message=message,
            status_code=status.HTTP_401_UNAUTHORIZED,
        )


class QueryCompilationError(SearchEngineError):
    """A query builder was called with inputs it cannot render."""

    def __init__(self, message: str = "Query could not be compiled"):
        super().__init__(
            code=ErrorCode.QUERY_COMPILATION_ERROR,
            message=message,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )


def setup_error_handlers(app: FastAPI) -> None:
    """
    Configure error handlers for FastAPI application.

    Args:
        app: FastAPI application
    """

    @app.exception_handler(SearchEngineError)
    async def search_error_handler(request: Request, exc: SearchEngineError) -> JSONResponse:
        """Handle search engine errors and return standardized error responses."""
        logger.error(
            f"Search error: {exc.code.value} - {exc.message}",
            extra={
                "request_id": getattr(request.state, "request_id", None),
                "status_code": exc.status_code,
                "error_code": exc.code.value,
            },
        )

        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(
                code=exc.code.value,
                message=exc.message,
                details=exc.details,
                request_id=getattr(request.state, "request_id", None),
            ).model_dump(),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Handle FastAPI request validation errors."""
        details = []
        for error in exc.errors():
            location = ".".join(str(loc) for loc in error.get("loc", []))
            details.append(
                ErrorDetail(
                    location=location,
                    message=error.get("msg", "Validation error"),
                    param=str(error["loc"][-1]) if error.get("loc") else None,
                )
            )

        logger.error(
            "Request validation error",
            extra={"request_id": getattr(request.state, "request_id", None)},
        )

        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=ErrorResponse(
                code=ErrorCode.VALIDATION_ERROR.value,
                message="Request validation error",
                details=details,
                request_id=getattr(request.state, "request_id", None),
            ).model_dump(),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle unhandled exceptions and return standardized error responses."""
        logger.exception(
            f"Unhandled exception: {exc}",
            extra={
                "request_id": getattr(request.state, "request_id", None),
                "exception_type": type(exc).__name__,
            },
        )

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=ErrorResponse(
                code=ErrorCode.SERVER_ERROR.value,
                message="An unexpected error occurred",
                request_id=getattr(request.state, "request_id", None),
            ).model_dump(),
        )
