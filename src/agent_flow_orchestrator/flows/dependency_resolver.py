"""Dependency graph resolution for flow steps.

Builds the step DAG, rejects unknown dependencies and cycles, and groups steps
into execution waves: each step lands in the earliest wave where every one of
its dependencies sits in a strictly earlier wave.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Sequence

from agent_flow_orchestrator.flows.errors import CycleDetectedError, UnknownDependencyError
from agent_flow_orchestrator.flows.models import StepDefinition

logger = logging.getLogger(__name__)


class DependencyResolver:
    """Resolve step ordering for a flow.

    The graph is built on construction, so an unknown dependency fails
    immediately. Cycle detection runs lazily on the first ordering request.
    """

    def __init__(self, steps: Sequence[StepDefinition]) -> None:
        self._steps: dict[str, StepDefinition] = {s.id: s for s in steps}
        self._adjacency: dict[str, list[str]] = {}
        self._indegree: dict[str, int] = {}
        self._build_graph()

    def _build_graph(self) -> None:
        for step_id in self._steps:
            self._adjacency[step_id] = []
            self._indegree[step_id] = 0

        for step in self._steps.values():
            for dep in step.depends_on:
                if dep not in self._steps:
                    raise UnknownDependencyError(step.id, dep)
                self._adjacency[dep].append(step.id)
                self._indegree[step.id] += 1

    def detect_cycles(self) -> None:
        """Raise `CycleDetectedError` with the concrete cycle path, if any."""

        visited: set[str] = set()
        on_stack: set[str] = set()
        path: list[str] = []

        def visit(node: str) -> None:
            visited.add(node)
            on_stack.add(node)
            path.append(node)
            for neighbour in self._adjacency[node]:
                if neighbour not in visited:
                    visit(neighbour)
                elif neighbour in on_stack:
                    start = path.index(neighbour)
                    raise CycleDetectedError([*path[start:], neighbour])
            on_stack.discard(node)
            path.pop()

        for step_id in self._steps:
            if step_id not in visited:
                visit(step_id)

    def topological_sort(self) -> list[str]:
        """Kahn's algorithm over the step graph."""

        self.detect_cycles()

        indegree = dict(self._indegree)
        queue = deque(step_id for step_id, degree in indegree.items() if degree == 0)
        order: list[str] = []

        while queue:
            current = queue.popleft()
            order.append(current)
            for neighbour in self._adjacency[current]:
                indegree[neighbour] -= 1
                if indegree[neighbour] == 0:
                    queue.append(neighbour)

        if len(order) != len(self._steps):
            raise CycleDetectedError()
        return order

    def group_into_waves(self) -> list[list[str]]:
        """Group steps into waves that may run concurrently.

        Wave 0 holds every step without dependencies; wave k+1 holds every
        remaining step whose dependencies all lie in waves 0..k. Within a wave
        the topological order is preserved.
        """

        order = self.topological_sort()
        assigned: set[str] = set()
        waves: list[list[str]] = []

        while len(assigned) < len(order):
            wave = [
                step_id
                for step_id in order
                if step_id not in assigned
                and all(dep in assigned for dep in self._steps[step_id].depends_on)
            ]
            if not wave:
                # Unreachable once topological_sort succeeded.
                raise CycleDetectedError()
            waves.append(wave)
            assigned.update(wave)

        logger.debug(
            "Resolved execution waves",
            extra={"wave_count": len(waves), "step_count": len(order)},
        )
        return waves
