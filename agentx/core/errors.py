"""
AgentX Engine - Error Handling

Domain error taxonomy and structured error responses.
Provides clear distinction between 4xx (client) and 5xx (server) errors so a
caller can decide whether to correct its input or retry.
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from .middleware import get_request_id

logger = logging.getLogger(__name__)


# =============================================================================
# Error Response Models
# =============================================================================


class ErrorDetail(BaseModel):
    """Detailed error information for debugging."""

    field: str | None = None
    message: str
    code: str | None = None


class ErrorResponse(BaseModel):
    """
    Standardized error response format.

    All API errors return this structure for consistency.
    """

    error: str  # Machine-readable error code
    message: str  # Human-readable error message
    status_code: int
    request_id: str | None = None
    details: list[ErrorDetail] | None = None


# =============================================================================
# Error Codes
# =============================================================================

# Client errors (4xx)
ERROR_VALIDATION = "validation_error"
ERROR_BAD_REQUEST = "bad_request"
ERROR_EMPTY_INPUT = "empty_input"
ERROR_INVALID_SCHEMA = "invalid_schema"
ERROR_UNSUPPORTED_FILE_TYPE = "unsupported_file_type"
ERROR_NO_ACTIVE_AGENTS = "no_active_agents"
ERROR_UNAUTHORIZED = "unauthorized"
ERROR_FORBIDDEN = "forbidden"
ERROR_NOT_ASSIGNED = "not_assigned"
ERROR_NOT_FOUND = "not_found"
ERROR_CONFLICT = "conflict"
ERROR_PAYLOAD_TOO_LARGE = "payload_too_large"

# Server errors (5xx)
ERROR_INTERNAL = "internal_error"
ERROR_DATABASE = "database_error"


# =============================================================================
# Domain Exceptions
# =============================================================================


class AgentXError(Exception):
    """Base exception for AgentX business logic errors."""

    def __init__(
        self,
        message: str,
        error_code: str = ERROR_INTERNAL,
        status_code: int = 500,
        details: list[ErrorDetail] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details

    @property
    def is_client_error(self) -> bool:
        return self.status_code < 500


class EmptyInputError(AgentXError):
    """Uploaded table has zero data rows."""

    def __init__(self, message: str = "File is empty or invalid"):
        super().__init__(message, error_code=ERROR_EMPTY_INPUT, status_code=400)


class SchemaError(AgentXError):
    """Uploaded table is missing required columns or cannot be parsed."""

    def __init__(self, message: str, details: list[ErrorDetail] | None = None):
        super().__init__(
            message,
            error_code=ERROR_INVALID_SCHEMA,
            status_code=400,
            details=details,
        )


class UnsupportedFileTypeError(AgentXError):
    """Upload content type is not CSV, XLS or XLSX."""

    def __init__(self, message: str = "Only CSV, XLS, XLSX files are allowed"):
        super().__init__(message, error_code=ERROR_UNSUPPORTED_FILE_TYPE, status_code=400)


class NoAgentsError(AgentXError):
    """A distribution round was requested with zero active agents."""

    def __init__(self, message: str = "No agents available to distribute tasks"):
        super().__init__(message, error_code=ERROR_NO_ACTIVE_AGENTS, status_code=400)


class AuthenticationError(AgentXError):
    """Missing, invalid or expired credentials."""

    def __init__(self, message: str = "Not authorized"):
        super().__init__(message, error_code=ERROR_UNAUTHORIZED, status_code=401)


class PermissionDeniedError(AgentXError):
    """Authenticated caller lacks the required role or token type."""

    def __init__(self, message: str = "Forbidden"):
        super().__init__(message, error_code=ERROR_FORBIDDEN, status_code=403)


class NotAssignedError(AgentXError):
    """
    Task is not in any batch owned by the caller.

    Forbidden-class rather than not-found: the task may exist but belong to
    another agent.
    """

    def __init__(self, message: str = "Task not found or not assigned to this agent"):
        super().__init__(message, error_code=ERROR_NOT_ASSIGNED, status_code=403)


class NotFoundError(AgentXError):
    """Resource not found."""

    def __init__(self, message: str = "Resource not found"):
        super().__init__(message, error_code=ERROR_NOT_FOUND, status_code=404)


class ConflictError(AgentXError):
    """Write rejected by a uniqueness constraint."""

    def __init__(self, message: str = "Resource already exists"):
        super().__init__(message, error_code=ERROR_CONFLICT, status_code=409)


class PayloadTooLargeError(AgentXError):
    """Upload exceeds MAX_UPLOAD_BYTES."""

    def __init__(self, message: str = "Uploaded file is too large"):
        super().__init__(message, error_code=ERROR_PAYLOAD_TOO_LARGE, status_code=413)


class PersistenceError(AgentXError):
    """Storage-layer failure (connection, query, or transaction)."""

    def __init__(self, message: str = "Database operation failed"):
        super().__init__(message, error_code=ERROR_DATABASE, status_code=503)


# =============================================================================
# Exception Handlers
# =============================================================================


def create_error_response(
    status_code: int,
    error: str,
    message: str,
    details: list[ErrorDetail] | None = None,
) -> JSONResponse:
    """Create a standardized error response."""
    request_id = get_request_id()

    response = ErrorResponse(
        error=error,
        message=message,
        status_code=status_code,
        request_id=request_id if request_id else None,
        details=details,
    )

    return JSONResponse(
        status_code=status_code,
        content=response.model_dump(exclude_none=True),
    )


async def agentx_exception_handler(request: Request, exc: AgentXError) -> JSONResponse:
    """Map domain exceptions onto the error envelope."""
    if exc.is_client_error:
        logger.info(
            f"{exc.error_code} on {request.url.path}: {exc.message}",
            extra={"path": request.url.path, "error_code": exc.error_code},
        )
    else:
        logger.error(
            f"{exc.error_code} on {request.url.path}: {exc.message}",
            extra={"path": request.url.path, "error_code": exc.error_code},
        )

    return create_error_response(
        status_code=exc.status_code,
        error=exc.error_code,
        message=exc.message,
        details=exc.details,
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """
    Handle FastAPI/Starlette HTTP exceptions.

    Maps standard HTTP errors to our error format.
    """
    error_map = {
        400: ERROR_BAD_REQUEST,
        401: ERROR_UNAUTHORIZED,
        403: ERROR_FORBIDDEN,
        404: ERROR_NOT_FOUND,
        409: ERROR_CONFLICT,
        413: ERROR_PAYLOAD_TOO_LARGE,
        500: ERROR_INTERNAL,
        503: ERROR_DATABASE,
    }

    error_code = error_map.get(exc.status_code, ERROR_INTERNAL)

    if exc.status_code >= 500:
        logger.error(
            f"HTTP {exc.status_code}: {exc.detail}",
            extra={"path": request.url.path, "status_code": exc.status_code},
        )

    if isinstance(exc.detail, dict):
        message = exc.detail.get("message", str(exc.detail))
    else:
        message = str(exc.detail)

    return create_error_response(
        status_code=exc.status_code,
        error=error_code,
        message=message,
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """
    Handle Pydantic validation errors.

    Converts validation errors to structured format with field-level details.
    """
    details = []
    for error in exc.errors():
        loc = error.get("loc", [])
        field = ".".join(str(x) for x in loc) if loc else None

        details.append(
            ErrorDetail(
                field=field,
                message=error.get("msg", "Validation error"),
                code=error.get("type", "validation"),
            )
        )

    logger.warning(
        f"Validation error on {request.url.path}: {len(details)} errors",
        extra={"path": request.url.path},
    )

    return create_error_response(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        error=ERROR_VALIDATION,
        message="Request validation failed",
        details=details,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Catch-all handler for unhandled exceptions.

    Logs the full traceback but returns a generic error to the client.
    """
    logger.error(
        f"Unhandled exception: {type(exc).__name__}: {exc}",
        extra={"path": request.url.path, "method": request.method},
        exc_info=True,
    )

    return create_error_response(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        error=ERROR_INTERNAL,
        message="An unexpected error occurred. Please try again later.",
    )


def setup_error_handlers(app: FastAPI) -> None:
    """
    Register all error handlers with the FastAPI app.

    Call this in create_app() after creating the FastAPI instance.
    """
    app.add_exception_handler(AgentXError, agentx_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    logger.info("Error handlers registered")
