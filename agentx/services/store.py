"""
AgentX Engine - Postgres Store

All SQL lives here. Services receive a store and open either:

    async with store.session() as s:       # independent statements
        ...
    async with store.transaction() as s:   # all-or-nothing unit
        ...

Both yield a StoreSession bound to one pooled connection. psycopg errors are
translated into the domain taxonomy (ConflictError for unique violations,
PersistenceError for everything else) at the boundary of the unit.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncGenerator, Sequence
from uuid import UUID, uuid4

import psycopg
from psycopg import errors as pg_errors
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool, PoolTimeout

from ..core.errors import ConflictError, PersistenceError
from ..core.models import (
    AssignmentBatch,
    AssignmentBatchWithTasks,
    Task,
    TaskCreate,
    UserCreate,
    UserRecord,
    UserRole,
)
from ..db import get_pool

logger = logging.getLogger(__name__)

TASK_COLUMNS = "id, first_name, phone, notes, completed, created_at"
USER_COLUMNS = (
    "id, name, email, password_hash, role, mobile_number, country_code, active, created_at"
)


@asynccontextmanager
async def _translate_errors() -> AsyncGenerator[None, None]:
    try:
        yield
    except pg_errors.UniqueViolation as e:
        logger.info(f"Unique violation: {e}")
        raise ConflictError("Resource already exists") from e
    except PoolTimeout as e:
        logger.error(f"Connection pool exhausted: {e}")
        raise PersistenceError("Database unavailable") from e
    except psycopg.Error as e:
        logger.error(f"Database error: {type(e).__name__}: {e}")
        raise PersistenceError(f"Database operation failed: {type(e).__name__}") from e


class StoreSession:
    """Queries bound to a single connection."""

    def __init__(self, conn: psycopg.AsyncConnection):
        self._conn = conn

    # =========================================================================
    # Users
    # =========================================================================

    async def insert_user(self, user: UserCreate) -> UserRecord:
        async with self._conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(
                f"""
                INSERT INTO users (id, name, email, password_hash, role,
                                   mobile_number, country_code, active)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING {USER_COLUMNS}
                """,
                (
                    uuid4(),
                    user.name,
                    user.email,
                    user.password_hash,
                    user.role.value,
                    user.mobile_number,
                    user.country_code,
                    user.active,
                ),
            )
            row = await cur.fetchone()
        return UserRecord.model_validate(row)

    async def get_user(self, user_id: UUID) -> UserRecord | None:
        async with self._conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(f"SELECT {USER_COLUMNS} FROM users WHERE id = %s", (user_id,))
            row = await cur.fetchone()
        return UserRecord.model_validate(row) if row else None

    async def get_user_by_email(self, email: str) -> UserRecord | None:
        async with self._conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(
                f"SELECT {USER_COLUMNS} FROM users WHERE email = %s",
                (email.strip().lower(),),
            )
            row = await cur.fetchone()
        return UserRecord.model_validate(row) if row else None

    async def list_agents(self) -> list[UserRecord]:
        async with self._conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(
                f"""
                SELECT {USER_COLUMNS} FROM users
                WHERE role = %s
                ORDER BY created_at, id
                """,
                (UserRole.AGENT.value,),
            )
            rows = await cur.fetchall()
        return [UserRecord.model_validate(row) for row in rows]

    async def set_agent_active(self, agent_id: UUID, active: bool) -> UserRecord | None:
        async with self._conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(
                f"""
                UPDATE users SET active = %s
                WHERE id = %s AND role = %s
                RETURNING {USER_COLUMNS}
                """,
                (active, agent_id, UserRole.AGENT.value),
            )
            row = await cur.fetchone()
        return UserRecord.model_validate(row) if row else None

    async def list_active_agent_ids(self) -> list[UUID]:
        """Active agents in a stable order (registration time, then id)."""
        async with self._conn.cursor() as cur:
            await cur.execute(
                """
                SELECT id FROM users
                WHERE role = %s AND active
                ORDER BY created_at, id
                """,
                (UserRole.AGENT.value,),
            )
            rows = await cur.fetchall()
        return [row[0] for row in rows]

    # =========================================================================
    # Tasks
    # =========================================================================

    async def insert_tasks(self, tasks: Sequence[TaskCreate]) -> list[Task]:
        """Bulk insert tasks; returned list preserves input order."""
        if not tasks:
            return []

        created_at = datetime.now(timezone.utc)
        records = [
            Task(
                id=uuid4(),
                first_name=t.first_name,
                phone=t.phone,
                notes=t.notes,
                completed=False,
                created_at=created_at,
            )
            for t in tasks
        ]

        async with self._conn.cursor() as cur:
            await cur.executemany(
                """
                INSERT INTO tasks (id, first_name, phone, notes, completed, created_at)
                VALUES (%s, %s, %s, %s, FALSE, %s)
                """,
                [(r.id, r.first_name, r.phone, r.notes, created_at) for r in records],
            )
        return records

    async def set_task_completed(self, task_id: UUID, completed: bool) -> Task | None:
        async with self._conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(
                f"""
                UPDATE tasks SET completed = %s
                WHERE id = %s
                RETURNING {TASK_COLUMNS}
                """,
                (completed, task_id),
            )
            row = await cur.fetchone()
        return Task.model_validate(row) if row else None

    async def list_unassigned_task_ids(self) -> list[UUID]:
        """
        Tasks not referenced by any assignment batch, in insertion order.

        Rows are locked for the enclosing transaction so two concurrent
        reconciliation passes never pick the same task.
        """
        async with self._conn.cursor() as cur:
            await cur.execute(
                """
                SELECT t.id FROM tasks t
                WHERE NOT EXISTS (
                    SELECT 1 FROM assignment_batch_tasks bt WHERE bt.task_id = t.id
                )
                ORDER BY t.seq
                FOR UPDATE OF t SKIP LOCKED
                """
            )
            rows = await cur.fetchall()
        return [row[0] for row in rows]

    # =========================================================================
    # Assignment batches
    # =========================================================================

    async def insert_assignment_batches(self, batches: Sequence[AssignmentBatch]) -> None:
        if not batches:
            return

        members = [
            (batch.id, position, task_id)
            for batch in batches
            for position, task_id in enumerate(batch.task_ids)
        ]

        async with self._conn.cursor() as cur:
            await cur.executemany(
                """
                INSERT INTO assignment_batches (id, agent_id, upload_date)
                VALUES (%s, %s, %s)
                """,
                [(b.id, b.agent_id, b.upload_date) for b in batches],
            )
            if members:
                await cur.executemany(
                    """
                    INSERT INTO assignment_batch_tasks (batch_id, position, task_id)
                    VALUES (%s, %s, %s)
                    """,
                    members,
                )

    async def is_task_assigned_to(self, agent_id: UUID, task_id: UUID) -> bool:
        async with self._conn.cursor() as cur:
            await cur.execute(
                """
                SELECT EXISTS (
                    SELECT 1
                    FROM assignment_batch_tasks bt
                    JOIN assignment_batches b ON b.id = bt.batch_id
                    WHERE b.agent_id = %s AND bt.task_id = %s
                )
                """,
                (agent_id, task_id),
            )
            row = await cur.fetchone()
        return bool(row and row[0])

    async def list_batches_for_agent(self, agent_id: UUID) -> list[AssignmentBatchWithTasks]:
        """Batches owned by the agent, newest upload first, tasks inlined in order."""
        async with self._conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(
                """
                SELECT b.id AS batch_id, b.agent_id, b.upload_date,
                       t.id, t.first_name, t.phone, t.notes, t.completed, t.created_at
                FROM assignment_batches b
                LEFT JOIN assignment_batch_tasks bt ON bt.batch_id = b.id
                LEFT JOIN tasks t ON t.id = bt.task_id
                WHERE b.agent_id = %s
                ORDER BY b.upload_date DESC, b.id, bt.position
                """,
                (agent_id,),
            )
            rows = await cur.fetchall()

        grouped: dict[UUID, dict] = {}
        for row in rows:
            batch = grouped.setdefault(
                row["batch_id"],
                {
                    "id": row["batch_id"],
                    "agent_id": row["agent_id"],
                    "upload_date": row["upload_date"],
                    "tasks": [],
                },
            )
            if row["id"] is not None:
                batch["tasks"].append(Task.model_validate(row))

        return [AssignmentBatchWithTasks.model_validate(b) for b in grouped.values()]


class PostgresStore:
    """Unit-of-work factory over the shared connection pool."""

    def __init__(self, pool: AsyncConnectionPool):
        self._pool = pool

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[StoreSession, None]:
        """Connection for independent statements, committed on exit."""
        async with _translate_errors():
            async with self._pool.connection() as conn:
                yield StoreSession(conn)

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[StoreSession, None]:
        """All statements commit together or roll back together."""
        async with _translate_errors():
            async with self._pool.connection() as conn:
                async with conn.transaction():
                    yield StoreSession(conn)


async def get_store() -> PostgresStore:
    """FastAPI dependency returning a store over the global pool."""
    pool = await get_pool()
    if pool is None:
        raise PersistenceError("Database unavailable")
    return PostgresStore(pool)
