# dag.py
from __future__ import annotations

import heapq
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Tuple

from .errors import CycleDetected, DuplicateJob, UnknownDependency
from .model import JobTemplate


@dataclass(frozen=True)
class DependencyGraph:
    """
    Job names and their "needs" edges (dependent -> dependency).

    `order` is a stable topological order: among jobs whose dependencies are
    all placed, the earliest declared comes first.
    """
    nodes: Tuple[str, ...]
    needs: Dict[str, Tuple[str, ...]]
    order: Tuple[str, ...] = field(default=())

    def dependencies(self, name: str) -> Tuple[str, ...]:
        return self.needs.get(name, ())

    def dependents(self, name: str) -> List[str]:
        return [n for n in self.nodes if name in self.needs[n]]


def build_dag(templates: Iterable[JobTemplate]) -> DependencyGraph:
    """
    Build and validate the dependency graph.

    Requires:
      - template.name: str (unique)
      - template.needs: names of templates that must terminate BEFORE this one

    Raises DuplicateJob, UnknownDependency or CycleDetected.
    """
    templates = list(templates)
    names = [t.name for t in templates]
    if len(set(names)) != len(names):
        dupes = sorted({n for n in names if names.count(n) > 1})
        raise DuplicateJob(names=dupes)

    name_set = set(names)
    needs: Dict[str, Tuple[str, ...]] = {}
    for t in templates:
        deps: List[str] = []
        for dep in t.needs or []:
            if dep not in name_set:
                raise UnknownDependency(job=t.name, missing=dep, known=names)
            if dep not in deps:
                deps.append(dep)
        needs[t.name] = tuple(deps)

    cycle = _find_cycle(names, needs)
    if cycle:
        raise CycleDetected(cycle=cycle)

    return DependencyGraph(nodes=tuple(names), needs=needs, order=tuple(_stable_order(names, needs)))


def _find_cycle(names: List[str], needs: Dict[str, Tuple[str, ...]]) -> List[str]:
    """DFS in declaration order; returns the first cycle found (or [])."""
    WHITE, GREY, BLACK = 0, 1, 2
    color = {n: WHITE for n in names}

    for root in names:
        if color[root] != WHITE:
            continue
        # iterative DFS: stack of (node, iterator over its needs)
        path: List[str] = [root]
        color[root] = GREY
        stack = [iter(needs[root])]
        while stack:
            dep = next(stack[-1], None)
            if dep is None:
                stack.pop()
                color[path.pop()] = BLACK
                continue
            if color[dep] == GREY:
                return path[path.index(dep):]
            if color[dep] == WHITE:
                color[dep] = GREY
                path.append(dep)
                stack.append(iter(needs[dep]))
    return []


def _stable_order(names: List[str], needs: Dict[str, Tuple[str, ...]]) -> List[str]:
    index = {n: i for i, n in enumerate(names)}
    indeg = {n: len(needs[n]) for n in names}
    dependents: Dict[str, List[str]] = {n: [] for n in names}
    for n in names:
        for dep in needs[n]:
            dependents[dep].append(n)

    heap = [index[n] for n in names if indeg[n] == 0]
    heapq.heapify(heap)
    order: List[str] = []
    while heap:
        node = names[heapq.heappop(heap)]
        order.append(node)
        for child in dependents[node]:
            indeg[child] -= 1
            if indeg[child] == 0:
                heapq.heappush(heap, index[child])
    return order


def topo_levels(graph: DependencyGraph) -> List[List[str]]:
    """
    Convert the DAG into topological "levels" (stages).
    Each stage can run in parallel; jobs inside a stage keep declaration order.
    """
    level_of: Dict[str, int] = {}
    for name in graph.order:
        deps = graph.dependencies(name)
        level_of[name] = 1 + max((level_of[d] for d in deps), default=-1)

    levels: List[List[str]] = [[] for _ in range(max(level_of.values(), default=-1) + 1)]
    for name in graph.nodes:
        levels[level_of[name]].append(name)
    return levels
