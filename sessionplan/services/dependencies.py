from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Sequence

from sessionplan.models.subtask import Subtask

logger = logging.getLogger(__name__)


@dataclass
class DependencyResolution:
    order: list[Subtask]
    # (dependent_id, prerequisite_id) pairs that survived cycle detection
    edges: list[tuple[str, str]] = field(default_factory=list)
    dropped_edges: list[tuple[str, str]] = field(default_factory=list)

    def prerequisites(self, subtask_id: str) -> list[str]:
        return [prereq for dependent, prereq in self.edges if dependent == subtask_id]


def resolve_dependencies(subtasks: Sequence[Subtask]) -> DependencyResolution:
    """Topologically order subtasks so prerequisites come first.

    Depth-first in input order. An edge that closes a cycle is logged and
    dropped; the subtask itself is always kept. Edges pointing at ids outside
    ``subtasks`` are ignored.
    """
    by_id = {subtask.id: subtask for subtask in subtasks}
    visited: set[str] = set()
    visiting: set[str] = set()
    result = DependencyResolution(order=[])

    def visit(subtask: Subtask) -> None:
        visiting.add(subtask.id)
        for prereq_id in subtask.depends_on:
            if prereq_id not in by_id:
                logger.debug(f"Subtask {subtask.id} depends on unknown subtask {prereq_id}, ignoring")
                continue
            if prereq_id in visiting:
                logger.warning(
                    f"Dependency cycle detected: {subtask.id} -> {prereq_id}, dropping this dependency"
                )
                result.dropped_edges.append((subtask.id, prereq_id))
                continue
            result.edges.append((subtask.id, prereq_id))
            if prereq_id not in visited:
                visit(by_id[prereq_id])
        visiting.discard(subtask.id)
        visited.add(subtask.id)
        result.order.append(subtask)

    for subtask in subtasks:
        if subtask.id not in visited:
            visit(subtask)
    return result
