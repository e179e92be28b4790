"""
AgentX Engine - Agents Router

Administrator view of the agent pool. Only active agents take part in a
distribution round; toggling the flag affects future rounds only.
"""

from __future__ import annotations

import logging
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ..core.errors import ErrorResponse
from ..core.models import User
from ..core.security import AuthContext, require_admin
from ..services import identity_service
from ..services.store import PostgresStore, get_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/agents", tags=["Agents"])


class AgentActivationRequest(BaseModel):
    active: bool


@router.get("", response_model=list[User], responses={403: {"model": ErrorResponse}})
async def list_agents(
    auth: AuthContext = Depends(require_admin),
    store: PostgresStore = Depends(get_store),
) -> list[User]:
    return await identity_service.list_agents(store)


@router.patch(
    "/{agent_id}",
    response_model=User,
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def set_agent_active(
    agent_id: UUID,
    body: AgentActivationRequest,
    auth: AuthContext = Depends(require_admin),
    store: PostgresStore = Depends(get_store),
) -> User:
    agent = await identity_service.set_agent_active(store, agent_id, body.active)
    logger.info(f"Admin {auth.user_id} set agent {agent_id} active={body.active}")
    return agent
