"""Dependency graph helpers for descriptor sets."""

from __future__ import annotations

from collections import deque
from typing import Iterable, Sequence

from stackweaver.core.errors import ConfigError
from stackweaver.descriptors.models import ResourceDescriptor


def detect_cycles(edges: dict[str, Iterable[str]]) -> list[list[str]]:
    """
    Detect circular dependency chains.

    Args:
        edges: Map of resource id -> ids it depends on

    Returns:
        List of circular chains found (e.g., [["a", "b", "a"]])
    """
    cycles: list[list[str]] = []
    done: set[str] = set()

    def dfs(node: str, path: list[str]) -> None:
        if node in path:
            cycle_start = path.index(node)
            cycles.append(path[cycle_start:] + [node])
            return
        if node in done:
            return
        path.append(node)
        for dep in sorted(edges.get(node, ())):
            dfs(dep, path)
        path.pop()
        done.add(node)

    for node in edges:
        dfs(node, [])

    return cycles


def topological_order(descriptors: Sequence[ResourceDescriptor]) -> list[ResourceDescriptor]:
    """Kahn's algorithm, stable with respect to declaration order."""
    by_id = {d.id: d for d in descriptors}
    position = {d.id: i for i, d in enumerate(descriptors)}
    remaining = {d.id: len(d.depends_on) for d in descriptors}
    children: dict[str, list[str]] = {d.id: [] for d in descriptors}
    for d in descriptors:
        for dep in d.depends_on:
            if dep not in by_id:
                raise ConfigError(
                    "Unknown dependency", details={"resource": d.id, "depends_on": dep}
                )
            children[dep].append(d.id)

    ready = deque(sorted((i for i, n in remaining.items() if n == 0), key=position.__getitem__))
    ordered: list[ResourceDescriptor] = []
    while ready:
        current = ready.popleft()
        ordered.append(by_id[current])
        unlocked = []
        for child in children[current]:
            remaining[child] -= 1
            if remaining[child] == 0:
                unlocked.append(child)
        ready.extend(sorted(unlocked, key=position.__getitem__))

    if len(ordered) != len(descriptors):
        cycles = detect_cycles({d.id: d.depends_on for d in descriptors})
        chain = " -> ".join(cycles[0]) if cycles else "unresolved"
        raise ConfigError("Dependency cycle detected", details={"cycle": chain})

    return ordered


def descendants(descriptors: Iterable[ResourceDescriptor], resource_id: str) -> set[str]:
    """Every resource that depends on ``resource_id`` directly or transitively."""
    children: dict[str, set[str]] = {}
    for d in descriptors:
        for dep in d.depends_on:
            children.setdefault(dep, set()).add(d.id)

    found: set[str] = set()
    stack = [resource_id]
    while stack:
        for child in children.get(stack.pop(), ()):
            if child not in found:
                found.add(child)
                stack.append(child)
    return found
