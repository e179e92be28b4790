"""
AgentX Engine - Core Module

Contains security, errors, middleware, logging and shared models.
"""

from .errors import (
    AgentXError,
    AuthenticationError,
    ErrorResponse,
    NotFoundError,
    PermissionDeniedError,
    PersistenceError,
    setup_error_handlers,
)
from .middleware import RequestLoggingMiddleware, get_request_id
from .security import AuthContext, get_current_user, require_admin

__all__ = [
    # Security
    "AuthContext",
    "get_current_user",
    "require_admin",
    # Middleware
    "RequestLoggingMiddleware",
    "get_request_id",
    # Errors
    "ErrorResponse",
    "AgentXError",
    "AuthenticationError",
    "PermissionDeniedError",
    "NotFoundError",
    "PersistenceError",
    "setup_error_handlers",
]
