"""
AgentX Engine - Distribution Engine

Partitions a batch of task identifiers across the active agent pool.

Rules (base-plus-remainder):
- base = N // M, remainder = N % M
- Agents are walked in input order; each takes `base` consecutive ids.
- The `remainder` leftover ids then go one each to the first `remainder`
  agents, again in input order.

The computation is pure: identical inputs always give identical output, and
every agent in the input appears in the result (with an empty tuple when it
receives nothing). Persisting the partition is a separate step in
task_service.
"""

from __future__ import annotations

from collections.abc import Hashable, Mapping, Sequence
from dataclasses import dataclass
from types import MappingProxyType
from typing import TypeVar

from ..core.errors import NoAgentsError

A = TypeVar("A", bound=Hashable)
T = TypeVar("T")


@dataclass(frozen=True)
class PartitionPlan:
    """Sizes of a partition, before any identifiers are placed."""

    task_count: int
    agent_count: int
    base: int
    remainder: int

    def share_of(self, position: int) -> int:
        """Number of tasks the agent at `position` (0-based) receives."""
        return self.base + (1 if position < self.remainder else 0)


def plan_partition(task_count: int, agent_count: int) -> PartitionPlan:
    """
    Compute base and remainder for N tasks over M agents.

    Raises:
        NoAgentsError: agent_count is zero
        ValueError: negative counts
    """
    if agent_count == 0:
        raise NoAgentsError()
    if task_count < 0 or agent_count < 0:
        raise ValueError("task_count and agent_count must be non-negative")

    base, remainder = divmod(task_count, agent_count)
    return PartitionPlan(
        task_count=task_count,
        agent_count=agent_count,
        base=base,
        remainder=remainder,
    )


def partition_tasks(
    task_ids: Sequence[T],
    agent_ids: Sequence[A],
) -> Mapping[A, tuple[T, ...]]:
    """
    Assign task ids to agents.

    Args:
        task_ids: Task identifiers in insertion order
        agent_ids: Active agent identifiers in distribution order (unique)

    Returns:
        Read-only mapping agent id -> tuple of task ids, in agent input order.
        Relative task order is preserved within each agent's tuple.

    Raises:
        NoAgentsError: agent_ids is empty
        ValueError: agent_ids contains duplicates
    """
    plan = plan_partition(len(task_ids), len(agent_ids))
    if len(set(agent_ids)) != len(agent_ids):
        raise ValueError("agent_ids must be unique")

    assigned: dict[A, list[T]] = {agent_id: [] for agent_id in agent_ids}
    cursor = 0

    # Pass 1: base share per agent, consecutive ids
    for agent_id in agent_ids:
        assigned[agent_id].extend(task_ids[cursor : cursor + plan.base])
        cursor += plan.base

    # Pass 2: one leftover id each to the first `remainder` agents
    for agent_id in agent_ids[: plan.remainder]:
        assigned[agent_id].append(task_ids[cursor])
        cursor += 1

    return MappingProxyType({agent_id: tuple(ids) for agent_id, ids in assigned.items()})
