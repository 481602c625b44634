"""Dependency graph construction, validation and ordering.

Resources live in an arena (a tuple indexed by declaration position) and edges are
integer adjacency lists, so cycle detection and ordering are pure functions over
indices. Every relationship, explicit or from a `require`/`before`/`notify`/
`subscribe` metaparameter, becomes a must-run-before edge; notify/subscribe edges
are also recorded as refresh edges.
"""

from __future__ import annotations

import heapq
import logging
from collections import deque
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from .errors import CatalogValidationError, GraphCycleError
from .models import METAPARAMETERS, Catalog, Relationship, Resource
from .providers import ProviderRegistry, ResourceProvider
from .values import ResourceRef

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResourceGraph:
    resources: tuple[Resource, ...]
    providers: tuple[ResourceProvider, ...]
    successors: tuple[tuple[int, ...], ...]
    refresh_targets: tuple[tuple[int, ...], ...]
    order: tuple[int, ...]

    def ordered_refs(self) -> list[str]:
        return [self.resources[index].ref for index in self.order]

    def dependents(self, index: int) -> set[int]:
        """All resources reachable from `index` along ordering edges."""
        reached: set[int] = set()
        queue = deque(self.successors[index])
        while queue:
            node = queue.popleft()
            if node in reached:
                continue
            reached.add(node)
            queue.extend(self.successors[node])
        return reached


def _refs_from(value: Any) -> list[str]:
    items = value if isinstance(value, (list, tuple)) else [value]
    refs: list[str] = []
    for item in items:
        if item is None:
            continue
        ref = item if isinstance(item, ResourceRef) else ResourceRef.parse(str(item))
        refs.append(ref.ref)
    return refs


def collect_relationships(catalog: Catalog) -> list[Relationship]:
    relationships = list(catalog.relationships)
    for resource in catalog.resources:
        for name, kind in METAPARAMETERS.items():
            value = resource.parameters.get(name)
            if value is None:
                continue
            for ref in _refs_from(value):
                if kind.points_forward:
                    relationships.append(Relationship(before=resource.ref, after=ref, kind=kind))
                else:
                    relationships.append(Relationship(before=ref, after=resource.ref, kind=kind))
    return relationships


def _shortest_path(successors: Sequence[Sequence[int]], start: int, goal: int) -> list[int]:
    parents: dict[int, int | None] = {start: None}
    queue = deque([start])
    while queue:
        node = queue.popleft()
        if node == goal:
            break
        for child in successors[node]:
            if child not in parents:
                parents[child] = node
                queue.append(child)
    path: list[int] = []
    cursor: int | None = goal
    while cursor is not None:
        path.append(cursor)
        cursor = parents[cursor]
    path.reverse()
    return path


def find_cycles(successors: Sequence[Sequence[int]]) -> list[list[int]]:
    """Depth-first search with on-stack marking.

    Each back edge `tail -> head` closes a cycle; the reported cycle is the shortest
    path from head back to tail plus the closing edge, written head first and
    ending on head again.
    """
    count = len(successors)
    state = [0] * count  # 0 unvisited, 1 on the recursion stack, 2 finished
    cycles: list[list[int]] = []
    seen: set[tuple[int, ...]] = set()
    for root in range(count):
        if state[root]:
            continue
        state[root] = 1
        stack = [(root, iter(successors[root]))]
        while stack:
            node, children = stack[-1]
            for child in children:
                if state[child] == 0:
                    state[child] = 1
                    stack.append((child, iter(successors[child])))
                    break
                if state[child] == 1:
                    path = _shortest_path(successors, child, node)
                    key = _canonical(path)
                    if key not in seen:
                        seen.add(key)
                        cycles.append(path + [child])
            else:
                state[node] = 2
                stack.pop()
    return cycles


def _canonical(cycle: list[int]) -> tuple[int, ...]:
    pivot = cycle.index(min(cycle))
    return tuple(cycle[pivot:] + cycle[:pivot])


def topological_order(successors: Sequence[Sequence[int]]) -> list[int]:
    """Kahn's algorithm; among ready resources the earliest declared goes first."""
    indegree = [0] * len(successors)
    for children in successors:
        for child in children:
            indegree[child] += 1
    ready = [index for index, degree in enumerate(indegree) if degree == 0]
    heapq.heapify(ready)
    order: list[int] = []
    while ready:
        node = heapq.heappop(ready)
        order.append(node)
        for child in successors[node]:
            indegree[child] -= 1
            if indegree[child] == 0:
                heapq.heappush(ready, child)
    if len(order) != len(successors):
        raise ValueError("graph contains a cycle")
    return order


def build_graph(catalog: Catalog, registry: ProviderRegistry) -> ResourceGraph:
    problems: list[str] = []
    index: dict[str, int] = {}
    providers: list[ResourceProvider] = []
    for position, resource in enumerate(catalog.resources):
        if resource.ref in index:
            problems.append(f"Duplicate declaration: {resource.ref} is already declared")
            continue
        index[resource.ref] = position
        provider = registry.lookup(resource.type)
        if provider is None:
            problems.append(f"Resource type not found: {resource.type} (for {resource.ref})")
            continue
        providers.append(provider)
        problems.extend(provider.validate(resource))

    try:
        relationships = collect_relationships(catalog)
    except ValueError as exc:
        problems.append(str(exc))
        relationships = []
    for rel in relationships:
        for ref in (rel.before, rel.after):
            if ref not in index:
                other = rel.after if ref == rel.before else rel.before
                problems.append(f"Could not find resource '{ref}' for relationship with '{other}'")
    if problems:
        for problem in problems:
            logger.error("%s", problem)
        raise CatalogValidationError(problems)

    successor_sets: list[set[int]] = [set() for _ in catalog.resources]
    refresh_sets: list[set[int]] = [set() for _ in catalog.resources]
    for rel in relationships:
        source, target = index[rel.before], index[rel.after]
        successor_sets[source].add(target)
        if rel.kind.refreshes:
            refresh_sets[source].add(target)
    successors = tuple(tuple(sorted(children)) for children in successor_sets)

    cycles = find_cycles(successors)
    if cycles:
        named = [[catalog.resources[node].ref for node in cycle] for cycle in cycles]
        error = GraphCycleError(named)
        logger.error("%s", error)
        raise error

    order = topological_order(successors)
    logger.debug("Graph: %d resources, %d edges", len(successors), sum(len(c) for c in successors))
    return ResourceGraph(
        resources=tuple(catalog.resources),
        providers=tuple(providers),
        successors=successors,
        refresh_targets=tuple(tuple(sorted(targets)) for targets in refresh_sets),
        order=tuple(order),
    )
