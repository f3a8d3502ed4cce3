# registry.py
from __future__ import annotations

from typing import Dict, Iterable, Iterator, List, Sequence, Set

from .dag import build_dag, topo_levels, topo_order
from .errors import CyclicDependency, DuplicateTask, InvalidTask, UnknownTask
from .gates import validate_gate
from .model import STEP_KINDS, FailurePolicy, Task
from .relay import PublishTarget


def _validate_task(task: Task) -> None:
    if not task.name:
        raise InvalidTask(task.name, "task name must not be empty")
    if task.name in task.needs:
        raise CyclicDependency([task.name, task.name])

    for i, step in enumerate(task.steps):
        if step.kind not in STEP_KINDS:
            raise InvalidTask(task.name, f"step '{step.name}' has unknown kind {step.kind!r}")
        if not isinstance(step.policy, FailurePolicy):
            raise InvalidTask(task.name, f"step '{step.name}' has invalid policy {step.policy!r}")
        if step.kind == "shell" and not step.run:
            raise InvalidTask(task.name, f"step '{step.name}' has no command")
        if step.kind == "stage":
            data = step.data or {}
            for key in ("source", "dest"):
                if not isinstance(data.get(key), str) or not data[key]:
                    raise InvalidTask(task.name, f"stage step '{step.name}' needs a non-empty '{key}' path")
        if step.kind == "publish":
            data = step.data or {}
            if not isinstance(data.get("target"), PublishTarget):
                raise InvalidTask(task.name, f"publish step '{step.name}' has no publish target")
            if not isinstance(data.get("source", "."), str):
                raise InvalidTask(task.name, f"publish step '{step.name}' source must be a path")
        if step.kind == "publish" and i != len(task.steps) - 1:
            raise InvalidTask(task.name, f"publish step '{step.name}' must be the last step")
        if step.timeout is not None and step.timeout <= 0:
            raise InvalidTask(task.name, f"step '{step.name}' timeout must be positive")
        if step.gate is not None:
            validate_gate(step.gate)

    for key, value in {**task.env, **{k: v for s in task.steps for k, v in s.env.items()}}.items():
        if not isinstance(value, str):
            raise InvalidTask(task.name, f"env {key} must be a string, got {type(value).__name__}")


class TaskRegistry:
    """
    Named task definitions, in registration order.

    Pure data: resolving a target never runs anything, it only computes the
    order in which the target's prerequisite closure has to execute.
    """

    def __init__(self, tasks: Iterable[Task] = ()):
        self._tasks: Dict[str, Task] = {}
        for t in tasks:
            self.register(t)

    def register(self, task: Task) -> None:
        if task.name in self._tasks:
            raise DuplicateTask(task.name)
        _validate_task(task)
        self._tasks[task.name] = task

    def get(self, name: str) -> Task:
        try:
            return self._tasks[name]
        except KeyError:
            raise UnknownTask(name, known=list(self._tasks)) from None

    def names(self) -> List[str]:
        return list(self._tasks)

    def __contains__(self, name: object) -> bool:
        return name in self._tasks

    def __iter__(self) -> Iterator[Task]:
        return iter(self._tasks.values())

    def __len__(self) -> int:
        return len(self._tasks)

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def closure(self, names: Sequence[str]) -> List[Task]:
        """
        Every task reachable from `names` through `needs`, in registration
        order. Detects cycles on the current expansion stack.
        """
        seen: Set[str] = set()
        stack: List[str] = []

        def visit(name: str, parent: str | None) -> None:
            if name in stack:
                raise CyclicDependency(stack[stack.index(name):] + [name])
            if name in seen:
                return
            if name not in self._tasks:
                raise UnknownTask(name, required_by=parent, known=list(self._tasks))
            stack.append(name)
            for dep in self._tasks[name].needs:
                visit(dep, name)
            stack.pop()
            seen.add(name)

        for n in names:
            visit(n, None)
        return [t for t in self._tasks.values() if t.name in seen]

    def _rank(self) -> Dict[str, int]:
        return {name: i for i, name in enumerate(self._tasks)}

    def resolve(self, name: str) -> List[Task]:
        """Execution order for one target: prerequisites always come first."""
        return self.resolve_many([name])

    def resolve_many(self, names: Sequence[str]) -> List[Task]:
        tasks = self.closure(names)
        adj, indeg = build_dag(tasks)
        order = topo_order(adj, indeg, self._rank())
        return [self._tasks[n] for n in order]

    def levels(self, names: Sequence[str]) -> List[List[str]]:
        """Stages of the plan; tasks inside one stage are independent."""
        adj, indeg = build_dag(self.closure(names))
        return topo_levels(adj, indeg, self._rank())

    def ancestors(self, name: str) -> Set[str]:
        """All transitive prerequisites of `name` (excluding itself)."""
        return {t.name for t in self.closure([name])} - {name}

    def validate(self) -> None:
        """Resolve everything once so configuration errors surface up front."""
        self.resolve_many(self.names())
