"""
DAG utilities (pure).

Step dependency validation, cycle detection and stable topological
ordering. No I/O, no subprocess.
"""

from __future__ import annotations

import heapq

from cortado.core.errors import CyclicDependency, DuplicateStep, UnknownDependency
from cortado.core.models.step import Step


def validate_dag(steps: list[Step]) -> None:
    """Validate the step dependency graph.

    Checks for duplicate ids, references to non-existent ids and
    cycles, in that order.

    Raises:
        DuplicateStep, UnknownDependency, CyclicDependency
    """
    seen: set[str] = set()
    for step in steps:
        if step.id in seen:
            raise DuplicateStep(step.id)
        seen.add(step.id)

    for step in steps:
        for dep in step.depends_on:
            if dep not in seen:
                raise UnknownDependency(step.id, dep)

    cycle = find_cycle(steps)
    if cycle:
        raise CyclicDependency(cycle)


def find_cycle(steps: list[Step]) -> list[str]:
    """Return one dependency cycle as a closed path, or [] if acyclic."""
    deps = {s.id: s.depends_on for s in steps}
    WHITE, GREY, BLACK = 0, 1, 2
    color = {sid: WHITE for sid in deps}
    stack: list[str] = []

    def visit(sid: str) -> list[str]:
        color[sid] = GREY
        stack.append(sid)
        for dep in deps.get(sid, ()):
            if dep not in color:
                continue
            if color[dep] == GREY:
                return stack[stack.index(dep):] + [dep]
            if color[dep] == WHITE:
                found = visit(dep)
                if found:
                    return found
        stack.pop()
        color[sid] = BLACK
        return []

    for sid in deps:
        if color[sid] == WHITE:
            found = visit(sid)
            if found:
                return found
    return []


def topological_sort(steps: list[Step]) -> list[Step]:
    """Order steps so each appears after all of its dependencies.

    Kahn's algorithm with the ready set keyed by input position, so
    steps with no ordering constraint between them keep their input
    (manifest declaration) order.

    Raises:
        CyclicDependency: If the graph is not acyclic.
    """
    index = {s.id: i for i, s in enumerate(steps)}
    in_degree = {s.id: len(set(s.depends_on)) for s in steps}
    dependents: dict[str, list[str]] = {s.id: [] for s in steps}
    for s in steps:
        for dep in set(s.depends_on):
            dependents[dep].append(s.id)

    ready = [index[sid] for sid, deg in in_degree.items() if deg == 0]
    heapq.heapify(ready)
    ordered: list[Step] = []

    while ready:
        step = steps[heapq.heappop(ready)]
        ordered.append(step)
        for successor in dependents[step.id]:
            in_degree[successor] -= 1
            if in_degree[successor] == 0:
                heapq.heappush(ready, index[successor])

    if len(ordered) < len(steps):
        raise CyclicDependency(find_cycle(steps) or sorted(sid for sid, d in in_degree.items() if d))
    return ordered


def enforce_parallel_safety(steps: list[Step], limit: int) -> list[Step]:
    """Pick the steps that may run together in one batch.

    Only ``parallel_safe`` steps are batched; a step that is not
    parallel-safe always runs alone.
    """
    if not steps:
        return []
    if not steps[0].parallel_safe or limit <= 1:
        return steps[:1]
    return [s for s in steps if s.parallel_safe][:limit]
