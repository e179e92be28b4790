"""
tests/helpers.py

In-memory stand-in for PostgresStore.

InMemoryStore exposes the same session()/transaction() units and
InMemorySession mirrors every StoreSession query, including the ordering
rules (agents by registration, batches newest first, tasks by position)
and the one-batch-per-task constraint. A transaction snapshots state on
entry and restores it if the block raises.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Sequence
from uuid import UUID, uuid4

from agentx.core.errors import ConflictError, PersistenceError
from agentx.core.models import (
    AssignmentBatch,
    AssignmentBatchWithTasks,
    Task,
    TaskCreate,
    UserCreate,
    UserRecord,
    UserRole,
)
from agentx.core.security import hash_password

# Fast hash for seeded users; verify_password reads the rounds from the hash
TEST_HASH_ITERATIONS = 1_000

EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)


@dataclass
class StoreState:
    users: dict[UUID, UserRecord] = field(default_factory=dict)
    tasks: dict[UUID, Task] = field(default_factory=dict)
    batches: dict[UUID, AssignmentBatch] = field(default_factory=dict)

    def copy(self) -> "StoreState":
        # Records are frozen models, so copying the containers is enough
        return StoreState(
            users=dict(self.users),
            tasks=dict(self.tasks),
            batches=dict(self.batches),
        )


class InMemorySession:
    def __init__(self, store: "InMemoryStore"):
        self._store = store

    @property
    def _state(self) -> StoreState:
        return self._store.state

    # Users

    async def insert_user(self, user: UserCreate) -> UserRecord:
        if any(u.email == user.email for u in self._state.users.values()):
            raise ConflictError("Resource already exists")
        record = UserRecord(
            id=uuid4(),
            created_at=EPOCH + timedelta(seconds=len(self._state.users)),
            **user.model_dump(),
        )
        self._state.users[record.id] = record
        return record

    async def get_user(self, user_id: UUID) -> UserRecord | None:
        return self._state.users.get(user_id)

    async def get_user_by_email(self, email: str) -> UserRecord | None:
        email = email.strip().lower()
        return next((u for u in self._state.users.values() if u.email == email), None)

    async def list_agents(self) -> list[UserRecord]:
        agents = [u for u in self._state.users.values() if u.role == UserRole.AGENT]
        return sorted(agents, key=lambda u: (u.created_at, str(u.id)))

    async def set_agent_active(self, agent_id: UUID, active: bool) -> UserRecord | None:
        record = self._state.users.get(agent_id)
        if record is None or record.role != UserRole.AGENT:
            return None
        updated = record.model_copy(update={"active": active})
        self._state.users[agent_id] = updated
        return updated

    async def list_active_agent_ids(self) -> list[UUID]:
        self._store.agent_reads += 1
        return [u.id for u in await self.list_agents() if u.active]

    # Tasks

    async def insert_tasks(self, tasks: Sequence[TaskCreate]) -> list[Task]:
        if self._store.fail_task_insert:
            raise PersistenceError("Database operation failed: OperationalError")
        created_at = datetime.now(timezone.utc)
        records = [
            Task(
                id=uuid4(),
                first_name=t.first_name,
                phone=t.phone,
                notes=t.notes,
                created_at=created_at,
            )
            for t in tasks
        ]
        for record in records:
            self._state.tasks[record.id] = record
        return records

    async def set_task_completed(self, task_id: UUID, completed: bool) -> Task | None:
        task = self._state.tasks.get(task_id)
        if task is None:
            return None
        updated = task.model_copy(update={"completed": completed})
        self._state.tasks[task_id] = updated
        return updated

    async def list_unassigned_task_ids(self) -> list[UUID]:
        assigned = self._store.assigned_task_ids()
        return [task_id for task_id in self._state.tasks if task_id not in assigned]

    # Assignment batches

    async def insert_assignment_batches(self, batches: Sequence[AssignmentBatch]) -> None:
        if self._store.fail_batch_insert:
            raise PersistenceError("Database operation failed: OperationalError")
        assigned = self._store.assigned_task_ids()
        for batch in batches:
            for task_id in batch.task_ids:
                if task_id in assigned:
                    raise ConflictError("Resource already exists")
                assigned.add(task_id)
            self._state.batches[batch.id] = batch

    async def is_task_assigned_to(self, agent_id: UUID, task_id: UUID) -> bool:
        return any(
            b.agent_id == agent_id and task_id in b.task_ids
            for b in self._state.batches.values()
        )

    async def list_batches_for_agent(self, agent_id: UUID) -> list[AssignmentBatchWithTasks]:
        owned = [b for b in self._state.batches.values() if b.agent_id == agent_id]
        owned.sort(key=lambda b: str(b.id))
        owned.sort(key=lambda b: b.upload_date, reverse=True)
        return [
            AssignmentBatchWithTasks(
                id=b.id,
                agent_id=b.agent_id,
                upload_date=b.upload_date,
                tasks=tuple(
                    self._state.tasks[t] for t in b.task_ids if t in self._state.tasks
                ),
            )
            for b in owned
        ]


class InMemoryStore:
    """Drop-in replacement for PostgresStore in service and API tests."""

    def __init__(self) -> None:
        self.state = StoreState()
        self.fail_task_insert = False
        self.fail_batch_insert = False
        self.agent_reads = 0

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[InMemorySession, None]:
        yield InMemorySession(self)

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[InMemorySession, None]:
        snapshot = self.state.copy()
        try:
            yield InMemorySession(self)
        except BaseException:
            self.state = snapshot
            raise

    # Seeding and inspection helpers

    def assigned_task_ids(self) -> set[UUID]:
        return {t for b in self.state.batches.values() for t in b.task_ids}

    def seed_user(
        self,
        *,
        name: str = "Agent",
        email: str | None = None,
        password: str = "secret123",
        role: UserRole = UserRole.AGENT,
        active: bool = True,
    ) -> UserRecord:
        record = UserRecord(
            id=uuid4(),
            name=name,
            email=email or f"{uuid4().hex[:8]}@example.com",
            password_hash=hash_password(password, iterations=TEST_HASH_ITERATIONS),
            role=role,
            mobile_number="5550100",
            country_code="+1",
            active=active,
            created_at=EPOCH + timedelta(seconds=len(self.state.users)),
        )
        self.state.users[record.id] = record
        return record

    def seed_agents(self, count: int, active: bool = True) -> list[UserRecord]:
        return [self.seed_user(name=f"Agent {i}", active=active) for i in range(count)]

    def seed_batch(self, agent_id: UUID, task_ids: Sequence[UUID]) -> AssignmentBatch:
        batch = AssignmentBatch(
            id=uuid4(),
            agent_id=agent_id,
            task_ids=tuple(task_ids),
            upload_date=datetime.now(timezone.utc),
        )
        self.state.batches[batch.id] = batch
        return batch

    def seed_tasks(self, count: int) -> list[Task]:
        tasks = [
            Task(id=uuid4(), first_name=f"Contact {i}", phone=f"555{i:04d}", notes="")
            for i in range(count)
        ]
        for task in tasks:
            self.state.tasks[task.id] = task
        return tasks


def make_tasks(count: int) -> list[TaskCreate]:
    return [
        TaskCreate(first_name=f"Contact {i}", phone=f"555{i:04d}", notes=f"note {i}")
        for i in range(count)
    ]
