# dag.py
from __future__ import annotations

import heapq
from typing import Dict, List, Mapping, Sequence, Set, Tuple

from .errors import DuplicateTask, UnknownTask
from .model import Task


def build_dag(tasks: Sequence[Task]) -> Tuple[Dict[str, Set[str]], Dict[str, int]]:
    """
    Build a DAG from Task objects.

    Requires:
      - task.name: str (unique)
      - task.needs: names of tasks that must run BEFORE this task,
        all of them present in `tasks`
    """
    names = [t.name for t in tasks]
    seen: Set[str] = set()
    for n in names:
        if n in seen:
            raise DuplicateTask(n)
        seen.add(n)

    adj: Dict[str, Set[str]] = {n: set() for n in names}   # dep -> dependents
    indeg: Dict[str, int] = {n: 0 for n in names}

    for task in tasks:
        for dep in task.needs:
            if dep not in seen:
                raise UnknownTask(dep, required_by=task.name, known=sorted(seen))
            # Edge dep -> task.name (dep must run before task)
            if task.name not in adj[dep]:
                adj[dep].add(task.name)
                indeg[task.name] += 1

    return adj, indeg


def topo_order(
    adj: Mapping[str, Set[str]],
    indeg: Mapping[str, int],
    rank: Mapping[str, int],
) -> List[str]:
    """
    Kahn's algorithm; among ready nodes the lowest `rank` (registration
    index) goes first, so the order is reproducible.
    """
    indeg = dict(indeg)  # copy (we mutate it)
    heap = [(rank[n], n) for n, d in indeg.items() if d == 0]
    heapq.heapify(heap)

    order: List[str] = []
    while heap:
        _, node = heapq.heappop(heap)
        order.append(node)
        for child in adj.get(node, set()):
            indeg[child] -= 1
            if indeg[child] == 0:
                heapq.heappush(heap, (rank[child], child))

    if len(order) != len(indeg):
        remaining = sorted(n for n, d in indeg.items() if d > 0)
        raise ValueError(f"DAG has a cycle. Stuck nodes: {remaining}")
    return order


def topo_levels(
    adj: Mapping[str, Set[str]],
    indeg: Mapping[str, int],
    rank: Mapping[str, int],
) -> List[List[str]]:
    """
    Convert DAG into topological "levels" (stages).
    Tasks within a stage have no dependency on each other and may run in parallel.
    """
    indeg = dict(indeg)
    level = sorted((n for n, d in indeg.items() if d == 0), key=rank.__getitem__)

    levels: List[List[str]] = []
    processed = 0
    while level:
        levels.append(level)
        processed += len(level)
        nxt: List[str] = []
        for node in level:
            for child in adj.get(node, set()):
                indeg[child] -= 1
                if indeg[child] == 0:
                    nxt.append(child)
        level = sorted(nxt, key=rank.__getitem__)

    if processed != len(indeg):
        remaining = sorted(n for n, d in indeg.items() if d > 0)
        raise ValueError(f"DAG has a cycle. Stuck nodes: {remaining}")
    return levels
