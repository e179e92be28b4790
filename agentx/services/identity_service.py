"""
AgentX Engine - Identity Service

User lifecycle on top of the store and the security primitives:
registration, agent provisioning, login, token refresh, profile lookup and
agent activation.

Self-registered agents start inactive and take no work until an
administrator activates them. Administrators are only created from the
command line.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from uuid import UUID

from ..core.errors import AuthenticationError, ConflictError, NotFoundError
from ..core.models import User, UserCreate, UserRole
from ..core.security import (
    TokenPair,
    create_token_pair,
    decode_refresh_token,
    hash_password,
    subject_of,
    verify_password,
)
from .store import PostgresStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Session:
    """Authenticated user plus freshly issued tokens."""

    user: User
    tokens: TokenPair


async def _create_user(
    store: PostgresStore,
    *,
    name: str,
    email: str,
    password: str,
    mobile_number: str,
    country_code: str,
    role: UserRole,
    active: bool,
) -> User:
    new_user = UserCreate(
        name=name,
        email=email,
        password_hash=hash_password(password),
        role=role,
        mobile_number=mobile_number,
        country_code=country_code,
        active=active,
    )

    async with store.transaction() as session:
        if await session.get_user_by_email(new_user.email) is not None:
            raise ConflictError("User already exists")
        record = await session.insert_user(new_user)

    logger.info(f"Created {role.value} user {record.id} (active={active})")
    return record.public()


async def register_agent(
    store: PostgresStore,
    *,
    name: str,
    email: str,
    password: str,
    mobile_number: str,
    country_code: str,
) -> User:
    """Self-service registration. The agent starts inactive."""
    return await _create_user(
        store,
        name=name,
        email=email,
        password=password,
        mobile_number=mobile_number,
        country_code=country_code,
        role=UserRole.AGENT,
        active=False,
    )


async def add_agent(
    store: PostgresStore,
    *,
    name: str,
    email: str,
    password: str,
    mobile_number: str,
    country_code: str,
) -> User:
    """Administrator-provisioned agent, active immediately."""
    return await _create_user(
        store,
        name=name,
        email=email,
        password=password,
        mobile_number=mobile_number,
        country_code=country_code,
        role=UserRole.AGENT,
        active=True,
    )


async def create_admin(
    store: PostgresStore,
    *,
    name: str,
    email: str,
    password: str,
    mobile_number: str = "-",
    country_code: str = "-",
) -> User:
    return await _create_user(
        store,
        name=name,
        email=email,
        password=password,
        mobile_number=mobile_number,
        country_code=country_code,
        role=UserRole.ADMIN,
        active=True,
    )


async def login(store: PostgresStore, email: str, password: str) -> Session:
    """
    Check credentials and issue a token pair.

    Raises:
        AuthenticationError: unknown email or wrong password (same message)
    """
    async with store.session() as session:
        record = await session.get_user_by_email(email)

    if record is None or not verify_password(password, record.password_hash):
        logger.info("Login failed: invalid credentials")
        raise AuthenticationError("Invalid credentials")

    logger.info(f"User {record.id} logged in")
    return Session(user=record.public(), tokens=create_token_pair(record.id, record.role))


async def refresh(store: PostgresStore, refresh_token: str | None) -> Session:
    """
    Rotate both tokens from a valid refresh token.

    The role claim is re-read from the user row so role changes apply on
    the next refresh.

    Raises:
        AuthenticationError: token missing/invalid, or user no longer exists
    """
    if not refresh_token:
        raise AuthenticationError("Refresh token not provided")

    user_id = subject_of(decode_refresh_token(refresh_token))

    async with store.session() as session:
        record = await session.get_user(user_id)

    if record is None:
        raise AuthenticationError("User not found")

    return Session(user=record.public(), tokens=create_token_pair(record.id, record.role))


async def get_profile(store: PostgresStore, user_id: UUID) -> User:
    async with store.session() as session:
        record = await session.get_user(user_id)
    if record is None:
        raise NotFoundError("User not found")
    return record.public()


async def list_agents(store: PostgresStore) -> list[User]:
    async with store.session() as session:
        records = await session.list_agents()
    return [record.public() for record in records]


async def set_agent_active(store: PostgresStore, agent_id: UUID, active: bool) -> User:
    """
    Activate or deactivate an agent.

    Deactivation only affects future rounds; existing batches stay with
    their owner.
    """
    async with store.session() as session:
        record = await session.set_agent_active(agent_id, active)
    if record is None:
        raise NotFoundError("Agent not found")

    logger.info(f"Agent {agent_id} active={active}")
    return record.public()
