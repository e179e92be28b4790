"""
AgentX Engine - Dashboard Router

Landing payload for the signed-in user.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ..core.models import User, UserRole
from ..core.security import AuthContext, get_current_user
from ..services import identity_service
from ..services.store import PostgresStore, get_store

router = APIRouter(prefix="/dashboard", tags=["Dashboard"])


class DashboardResponse(BaseModel):
    message: str
    role: UserRole
    user: User


@router.get("", response_model=DashboardResponse)
async def dashboard(
    auth: AuthContext = Depends(get_current_user),
    store: PostgresStore = Depends(get_store),
) -> DashboardResponse:
    user = await identity_service.get_profile(store, auth.user_id)
    return DashboardResponse(
        message=f"Welcome to the {user.role.value} dashboard",
        role=user.role,
        user=user,
    )
