"""
AgentX Engine - Core Data Models

Pydantic models shared by the store, the services and the routers:
- Tasks and assignment batches
- Users (agents and administrators)
- Distribution round results

Records read back from Postgres are immutable (frozen); inputs destined for a
write are validated on construction.

Usage:
    from agentx.core.models import Task, AssignmentBatch

    task = Task.model_validate(row)
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

# =============================================================================
# Enums
# =============================================================================


class UserRole(str, Enum):
    """Roles resolved by the identity layer."""

    AGENT = "agent"
    ADMIN = "admin"


# =============================================================================
# Base Configuration
# =============================================================================


class RecordModel(BaseModel):
    """Base model for rows read from the database."""

    model_config = ConfigDict(frozen=True, from_attributes=True)


# =============================================================================
# Task Models
# =============================================================================


class TaskCreate(BaseModel):
    """One validated spreadsheet row, ready for insertion."""

    model_config = ConfigDict(frozen=True)

    first_name: str
    phone: str
    notes: str


class Task(RecordModel):
    """A single contact/work item."""

    id: UUID
    first_name: str
    phone: str
    notes: str
    completed: bool = False
    created_at: datetime | None = None


# =============================================================================
# Assignment Models
# =============================================================================


class AssignmentBatch(RecordModel):
    """Tasks handed to one agent in one distribution round."""

    id: UUID
    agent_id: UUID
    task_ids: tuple[UUID, ...] = ()
    upload_date: datetime


class AssignmentBatchWithTasks(RecordModel):
    """Assignment batch with its tasks inlined, in assignment order."""

    id: UUID
    agent_id: UUID
    upload_date: datetime
    tasks: tuple[Task, ...] = ()


class DistributionResult(RecordModel):
    """Outcome of one distribution round."""

    batches: tuple[AssignmentBatch, ...]
    task_count: int
    agent_count: int

    @property
    def upload_date(self) -> datetime | None:
        return self.batches[0].upload_date if self.batches else None


# =============================================================================
# User Models
# =============================================================================


class User(RecordModel):
    """Public view of a user (never carries the password hash)."""

    id: UUID
    name: str
    email: str
    role: UserRole = UserRole.AGENT
    mobile_number: str
    country_code: str
    active: bool = False
    created_at: datetime | None = None


class UserRecord(User):
    """User row including the stored password hash. Internal only."""

    password_hash: str

    def public(self) -> User:
        return User.model_validate(self.model_dump(exclude={"password_hash"}))


class UserCreate(BaseModel):
    """Validated input for a new user row."""

    name: str = Field(..., min_length=1, max_length=200)
    email: str = Field(..., min_length=3, max_length=320)
    password_hash: str
    role: UserRole = UserRole.AGENT
    mobile_number: str = Field(..., min_length=1, max_length=32)
    country_code: str = Field(..., min_length=1, max_length=8)
    active: bool = False

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: str) -> str:
        value = value.strip().lower()
        if "@" not in value or value.startswith("@") or value.endswith("@"):
            raise ValueError("email must look like name@domain")
        return value
