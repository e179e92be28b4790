"""
AgentX Engine - Task Service

Orchestrates distribution rounds and agent-facing task operations:
- distribute_upload: insert tasks and their assignment batches atomically
- get_agent_batches: an agent's batches with tasks inlined
- update_task_status: ownership-checked completion flag update
- reconcile_orphaned_tasks: hand out tasks that no batch references

Usage:
    from agentx.services.task_service import distribute_upload

    result = await distribute_upload(store, tasks)
    print(result.task_count, len(result.batches))
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Sequence
from uuid import UUID, uuid4

from ..core.errors import NoAgentsError, NotAssignedError, NotFoundError
from ..core.logging import LogContext
from ..core.models import (
    AssignmentBatch,
    AssignmentBatchWithTasks,
    DistributionResult,
    Task,
    TaskCreate,
)
from .distribution import partition_tasks
from .store import PostgresStore, StoreSession

logger = logging.getLogger(__name__)


# =============================================================================
# Distribution Rounds
# =============================================================================


def build_batches(
    task_ids: Sequence[UUID],
    agent_ids: Sequence[UUID],
    upload_date: datetime | None = None,
) -> list[AssignmentBatch]:
    """
    Partition task ids over agents and wrap each share in a batch record.

    One batch per agent, empty shares included, all stamped with the same
    upload date.
    """
    upload_date = upload_date or datetime.now(timezone.utc)
    shares = partition_tasks(task_ids, agent_ids)
    return [
        AssignmentBatch(
            id=uuid4(),
            agent_id=agent_id,
            task_ids=share,
            upload_date=upload_date,
        )
        for agent_id, share in shares.items()
    ]


async def _distribute(
    session: StoreSession,
    task_ids: Sequence[UUID],
    agent_ids: Sequence[UUID],
) -> DistributionResult:
    batches = build_batches(task_ids, agent_ids)
    await session.insert_assignment_batches(batches)

    return DistributionResult(
        batches=tuple(batches),
        task_count=len(task_ids),
        agent_count=len(agent_ids),
    )


async def distribute_upload(
    store: PostgresStore,
    tasks: Sequence[TaskCreate],
) -> DistributionResult:
    """
    Persist validated tasks and distribute them across active agents.

    Task rows and batch rows are written in one transaction: the round
    either fully lands or leaves nothing behind.

    Raises:
        NoAgentsError: no active agents (nothing is written)
        PersistenceError: database failure (round rolled back)
    """
    with LogContext(task_count=len(tasks)):
        async with store.transaction() as session:
            # One read of the agent set per round; it is checked before any insert
            agent_ids = await session.list_active_agent_ids()
            if not agent_ids:
                logger.warning("Distribution rejected: no active agents")
                raise NoAgentsError()

            created = await session.insert_tasks(tasks)
            result = await _distribute(session, [task.id for task in created], agent_ids)

        logger.info(
            f"Distributed {result.task_count} tasks across {result.agent_count} agents",
            extra={"task_count": result.task_count, "agent_count": result.agent_count},
        )
        return result


async def reconcile_orphaned_tasks(store: PostgresStore) -> list[AssignmentBatch]:
    """
    Distribute tasks that are not referenced by any assignment batch.

    Returns the created batches, or an empty list when every task is
    already assigned (no zero-work round is recorded).

    Raises:
        NoAgentsError: orphans exist but there are no active agents
    """
    async with store.transaction() as session:
        orphan_ids = await session.list_unassigned_task_ids()
        if not orphan_ids:
            logger.info("Reconciliation: no orphaned tasks")
            return []

        agent_ids = await session.list_active_agent_ids()
        if not agent_ids:
            logger.warning(f"Reconciliation blocked: {len(orphan_ids)} orphans, no active agents")
            raise NoAgentsError()

        with LogContext(task_count=len(orphan_ids)):
            result = await _distribute(session, orphan_ids, agent_ids)
            logger.warning(
                f"Reconciliation reassigned {result.task_count} orphaned tasks "
                f"across {result.agent_count} agents"
            )

    return list(result.batches)


# =============================================================================
# Agent Operations
# =============================================================================


async def get_agent_batches(
    store: PostgresStore,
    agent_id: UUID,
) -> list[AssignmentBatchWithTasks]:
    """Batches owned by the agent, newest first."""
    async with store.session() as session:
        return await session.list_batches_for_agent(agent_id)


async def update_task_status(
    store: PostgresStore,
    agent_id: UUID,
    task_id: UUID,
    completed: bool,
) -> Task:
    """
    Set a task's completion flag on behalf of an agent.

    Raises:
        NotAssignedError: the task is not in any batch owned by this agent
        NotFoundError: the task row no longer exists
    """
    with LogContext(agent_id=str(agent_id)):
        async with store.transaction() as session:
            if not await session.is_task_assigned_to(agent_id, task_id):
                logger.warning(f"Agent attempted to update unassigned task {task_id}")
                raise NotAssignedError()

            task = await session.set_task_completed(task_id, completed)
            if task is None:
                raise NotFoundError("Task not found")

        logger.info(f"Task {task_id} marked completed={completed}")
        return task
