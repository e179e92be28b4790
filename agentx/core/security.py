"""
AgentX Engine - Security Layer

Cookie-based authentication for API endpoints:
- Password hashing (PBKDF2-HMAC-SHA256, constant-time comparison)
- Short-lived access tokens and longer-lived refresh tokens (HS256 JWT)
- httpOnly cookie helpers
- FastAPI dependencies resolving the caller identity and role
"""

import base64
import hashlib
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Literal
from uuid import UUID

import jwt
from fastapi import Cookie, Depends, Response
from loguru import logger

from ..config import Settings, get_settings
from .errors import AuthenticationError, PermissionDeniedError
from .models import UserRole

ACCESS_COOKIE = "accessToken"
REFRESH_COOKIE = "refreshToken"
JWT_ALGORITHM = "HS256"

PASSWORD_SCHEME = "pbkdf2_sha256"
PASSWORD_ITERATIONS = 260_000

TokenType = Literal["access", "refresh"]


# =============================================================================
# Passwords
# =============================================================================


def hash_password(password: str, iterations: int = PASSWORD_ITERATIONS) -> str:
    """
    Hash a password for storage.

    Format: pbkdf2_sha256$<iterations>$<salt>$<hash> (salt/hash urlsafe base64)
    """
    salt = secrets.token_bytes(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iterations)
    return "$".join(
        (
            PASSWORD_SCHEME,
            str(iterations),
            base64.urlsafe_b64encode(salt).decode("ascii"),
            base64.urlsafe_b64encode(digest).decode("ascii"),
        )
    )


def verify_password(password: str, stored: str) -> bool:
    """Check a candidate password against a stored hash."""
    try:
        scheme, iterations, salt_b64, hash_b64 = stored.split("$")
        if scheme != PASSWORD_SCHEME:
            return False
        salt = base64.urlsafe_b64decode(salt_b64)
        expected = base64.urlsafe_b64decode(hash_b64)
        rounds = int(iterations)
    except ValueError:
        logger.warning("Stored password hash is malformed")
        return False

    candidate = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, rounds)
    return secrets.compare_digest(candidate, expected)


# =============================================================================
# Tokens
# =============================================================================


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


def _encode_token(
    user_id: UUID,
    role: UserRole,
    token_type: TokenType,
    secret: str,
    ttl: timedelta,
) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "role": role.value,
        "type": token_type,
        "iat": now,
        "exp": now + ttl,
    }
    return jwt.encode(payload, secret, algorithm=JWT_ALGORITHM)


def create_token_pair(
    user_id: UUID,
    role: UserRole,
    settings: Settings | None = None,
) -> TokenPair:
    """Issue a fresh access/refresh token pair for a user."""
    settings = settings or get_settings()
    return TokenPair(
        access_token=_encode_token(
            user_id,
            role,
            "access",
            settings.JWT_SECRET,
            timedelta(minutes=settings.ACCESS_TOKEN_TTL_MINUTES),
        ),
        refresh_token=_encode_token(
            user_id,
            role,
            "refresh",
            settings.JWT_REFRESH_SECRET,
            timedelta(days=settings.REFRESH_TOKEN_TTL_DAYS),
        ),
    )


def _decode_token(token: str, secret: str, expected_type: TokenType) -> dict[str, Any]:
    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=[JWT_ALGORITHM],
            options={"require": ["sub", "exp", "type"]},
        )
    except jwt.ExpiredSignatureError:
        logger.debug(f"{expected_type} token has expired")
        raise AuthenticationError("Token expired") from None
    except jwt.InvalidTokenError as e:
        logger.warning(f"Invalid {expected_type} token: {type(e).__name__}")
        raise AuthenticationError("Not authorized, token failed") from e

    if payload.get("type") != expected_type:
        logger.warning(f"Token type mismatch: expected {expected_type}")
        raise AuthenticationError("Not authorized, token failed")

    return payload


def decode_access_token(token: str, settings: Settings | None = None) -> dict[str, Any]:
    settings = settings or get_settings()
    return _decode_token(token, settings.JWT_SECRET, "access")


def decode_refresh_token(token: str, settings: Settings | None = None) -> dict[str, Any]:
    settings = settings or get_settings()
    return _decode_token(token, settings.JWT_REFRESH_SECRET, "refresh")


def subject_of(payload: dict[str, Any]) -> UUID:
    """Extract the user id from a decoded token payload."""
    try:
        return UUID(str(payload["sub"]))
    except (KeyError, ValueError):
        raise AuthenticationError("Not authorized, token failed") from None


# =============================================================================
# Cookies
# =============================================================================


def set_auth_cookies(
    response: Response,
    tokens: TokenPair,
    settings: Settings | None = None,
) -> None:
    settings = settings or get_settings()
    common: dict[str, Any] = {
        "httponly": True,
        "secure": settings.is_production,
        "samesite": "strict",
        "path": "/",
    }
    response.set_cookie(
        ACCESS_COOKIE,
        tokens.access_token,
        max_age=settings.ACCESS_TOKEN_TTL_MINUTES * 60,
        **common,
    )
    response.set_cookie(
        REFRESH_COOKIE,
        tokens.refresh_token,
        max_age=settings.REFRESH_TOKEN_TTL_DAYS * 24 * 3600,
        **common,
    )


def clear_auth_cookies(response: Response) -> None:
    response.delete_cookie(ACCESS_COOKIE, path="/")
    response.delete_cookie(REFRESH_COOKIE, path="/")


# =============================================================================
# Request Dependencies
# =============================================================================


@dataclass(frozen=True)
class AuthContext:
    """
    Authentication context for the current request.

    Attributes:
        user_id: The authenticated user ID (token subject)
        role: Role claim carried by the access token
        via: How the user was authenticated
    """

    user_id: UUID
    role: UserRole
    via: Literal["cookie"] = "cookie"

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


async def get_current_user(
    access_token: str | None = Cookie(default=None, alias=ACCESS_COOKIE),
) -> AuthContext:
    """
    FastAPI dependency for authenticating requests from the access cookie.

    Raises:
        AuthenticationError: cookie missing, invalid, expired or of the wrong type
    """
    if not access_token:
        raise AuthenticationError("Not authorized, no token")

    payload = decode_access_token(access_token)
    user_id = subject_of(payload)

    try:
        role = UserRole(payload.get("role", UserRole.AGENT.value))
    except ValueError:
        raise AuthenticationError("Not authorized, token failed") from None

    return AuthContext(user_id=user_id, role=role)


async def require_admin(auth: AuthContext = Depends(get_current_user)) -> AuthContext:
    """Dependency that only lets administrators through."""
    if not auth.is_admin:
        logger.warning(f"Admin-only endpoint denied for user {auth.user_id}")
        raise PermissionDeniedError("Administrator role required")
    return auth
