"""
AgentX Engine - Auth Router

Cookie-session endpoints. Access and refresh tokens travel only as httpOnly
cookies; response bodies carry the role, never a token.

Endpoints:
    POST /api/auth/register   - Register an agent (inactive until approved)
    POST /api/auth/login      - Check credentials, set both cookies
    POST /api/auth/refresh    - Rotate both cookies from a refresh token
    GET  /api/auth/verify     - Resolve the access cookie to {id, role}
    POST /api/auth/logout     - Clear both cookies
    POST /api/auth/add-agent  - Create an active agent (admin)
"""

from __future__ import annotations

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Cookie, Depends, Response
from pydantic import BaseModel, Field

from ..core.errors import ErrorResponse
from ..core.models import User, UserRole
from ..core.security import (
    REFRESH_COOKIE,
    AuthContext,
    clear_auth_cookies,
    get_current_user,
    require_admin,
    set_auth_cookies,
)
from ..services import identity_service
from ..services.store import PostgresStore, get_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Auth"])


# ---------------------------------------------------------------------------
# Request/Response Models
# ---------------------------------------------------------------------------


class AgentRegistration(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    email: str = Field(..., min_length=3, max_length=320)
    password: str = Field(..., min_length=6, max_length=256)
    mobile_number: str = Field(..., alias="mobileNumber", min_length=1, max_length=32)
    country_code: str = Field(..., alias="countryCode", min_length=1, max_length=8)

    model_config = {"populate_by_name": True}


class LoginRequest(BaseModel):
    email: str
    password: str


class RefreshRequest(BaseModel):
    token: Optional[str] = None


class MessageResponse(BaseModel):
    message: str


class SessionResponse(BaseModel):
    message: str
    role: UserRole


class VerifiedUser(BaseModel):
    id: UUID
    role: UserRole


class VerifyResponse(BaseModel):
    user: VerifiedUser


class AgentCreatedResponse(BaseModel):
    message: str
    agent: User


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post(
    "/register",
    response_model=MessageResponse,
    status_code=201,
    responses={409: {"model": ErrorResponse}},
)
async def register(
    body: AgentRegistration,
    store: PostgresStore = Depends(get_store),
) -> MessageResponse:
    await identity_service.register_agent(
        store,
        name=body.name,
        email=body.email,
        password=body.password,
        mobile_number=body.mobile_number,
        country_code=body.country_code,
    )
    return MessageResponse(message="User registered successfully")


@router.post(
    "/login",
    response_model=SessionResponse,
    responses={401: {"model": ErrorResponse}},
)
async def login(
    body: LoginRequest,
    response: Response,
    store: PostgresStore = Depends(get_store),
) -> SessionResponse:
    session = await identity_service.login(store, body.email, body.password)
    set_auth_cookies(response, session.tokens)
    return SessionResponse(message="Logged in successfully", role=session.user.role)


@router.post(
    "/refresh",
    response_model=SessionResponse,
    responses={401: {"model": ErrorResponse}},
)
async def refresh(
    response: Response,
    body: Optional[RefreshRequest] = None,
    refresh_cookie: Optional[str] = Cookie(default=None, alias=REFRESH_COOKIE),
    store: PostgresStore = Depends(get_store),
) -> SessionResponse:
    """Body token wins over the cookie when both are present."""
    token = (body.token if body else None) or refresh_cookie
    session = await identity_service.refresh(store, token)
    set_auth_cookies(response, session.tokens)
    return SessionResponse(message="Token refreshed successfully", role=session.user.role)


@router.get(
    "/verify",
    response_model=VerifyResponse,
    responses={401: {"model": ErrorResponse}},
)
async def verify(auth: AuthContext = Depends(get_current_user)) -> VerifyResponse:
    return VerifyResponse(user=VerifiedUser(id=auth.user_id, role=auth.role))


@router.post("/logout", response_model=MessageResponse)
async def logout(response: Response) -> MessageResponse:
    clear_auth_cookies(response)
    return MessageResponse(message="Logged out successfully")


@router.post(
    "/add-agent",
    response_model=AgentCreatedResponse,
    status_code=201,
    responses={403: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def add_agent(
    body: AgentRegistration,
    auth: AuthContext = Depends(require_admin),
    store: PostgresStore = Depends(get_store),
) -> AgentCreatedResponse:
    agent = await identity_service.add_agent(
        store,
        name=body.name,
        email=body.email,
        password=body.password,
        mobile_number=body.mobile_number,
        country_code=body.country_code,
    )
    logger.info(f"Admin {auth.user_id} added agent {agent.id}")
    return AgentCreatedResponse(message="Agent added successfully", agent=agent)
