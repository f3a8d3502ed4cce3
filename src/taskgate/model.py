# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .context import RunContext
from .gates import Gate

Command = Union[str, Tuple[str, ...]]


class FailurePolicy(str, Enum):
    FAIL_FAST = "fail-fast"
    CONTINUE_ON_ERROR = "continue-on-error"


class Outcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class TaskState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (TaskState.SUCCEEDED, TaskState.FAILED)


STEP_KINDS = ("shell", "stage", "publish")


@dataclass(frozen=True)
class Step:
    """
    A single command inside a task.

    `run` is either a shell string (run through /bin/sh, like a Justfile
    line) or an argv tuple resolved on PATH. Non-shell kinds ("stage",
    "publish") carry their parameters in `data` and are handled by the relay.
    """
    name: str
    run: Command = ""
    cwd: str | None = None
    env: Mapping[str, str] = field(default_factory=dict)
    policy: FailurePolicy = FailurePolicy.FAIL_FAST
    gate: Optional[Gate] = None
    timeout: float | None = None
    kind: str = "shell"
    data: Mapping[str, Any] | None = None

    @property
    def command_line(self) -> str:
        if isinstance(self.run, str):
            return self.run
        return " ".join(self.run)


@dataclass
class Task:
    """A named unit of work: ordered steps + prerequisite task names."""
    name: str
    steps: List[Step]
    needs: List[str] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)
    services: List[str] = field(default_factory=list)
    best_effort: bool = False
    description: str = ""

    @property
    def publishes(self) -> bool:
        return any(s.kind == "publish" for s in self.steps)


# ----------------------------------------------------------------------
# Results
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class StepResult:
    step: str
    outcome: Outcome
    exit_code: Optional[int] = None
    stdout: str = ""
    stderr: str = ""
    elapsed: float = 0.0
    policy: FailurePolicy = FailurePolicy.FAIL_FAST
    detail: str = ""
    error: Optional[Exception] = None

    @classmethod
    def skipped(cls, step: Step, reason: str) -> StepResult:
        return cls(step=step.name, outcome=Outcome.SKIPPED, policy=step.policy, detail=reason)

    @property
    def failed(self) -> bool:
        return self.outcome is Outcome.FAILED

    @property
    def fatal(self) -> bool:
        return bool(getattr(self.error, "fatal", False))

    @property
    def aborts_task(self) -> bool:
        """True when no further step of the task may run."""
        if not self.failed:
            return False
        return self.policy is FailurePolicy.FAIL_FAST or self.fatal

    @property
    def output(self) -> str:
        parts = [p for p in (self.stdout, self.stderr) if p]
        return "\n".join(parts)


def task_outcome(results: Sequence[StepResult]) -> TaskState:
    """
    Aggregate step results into a task state.

    A failed continue-on-error step is recorded but does not fail the task,
    unless its error is fatal (missing artifact / credential).
    """
    if any(r.aborts_task for r in results):
        return TaskState.FAILED
    return TaskState.SUCCEEDED


@dataclass
class TaskResult:
    name: str
    state: TaskState = TaskState.PENDING
    steps: List[StepResult] = field(default_factory=list)
    blocked_by: List[str] = field(default_factory=list)
    error: Optional[Exception] = None
    elapsed: float = 0.0

    @property
    def first_failure(self) -> Optional[StepResult]:
        for r in self.steps:
            if r.failed:
                return r
        return None

    @property
    def recovered_failures(self) -> List[StepResult]:
        """Continue-on-error steps that failed without failing the task."""
        return [r for r in self.steps if r.failed and not r.aborts_task]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "elapsed": round(self.elapsed, 3),
            "blocked_by": list(self.blocked_by),
            "error": str(self.error) if self.error else None,
            "steps": [
                {
                    "name": r.step,
                    "outcome": r.outcome.value,
                    "exit_code": r.exit_code,
                    "policy": r.policy.value,
                    "elapsed": round(r.elapsed, 3),
                    "detail": r.detail,
                }
                for r in self.steps
            ],
        }


@dataclass
class RunReport:
    targets: List[str]
    context: RunContext
    tasks: List[TaskResult]

    def get(self, name: str) -> TaskResult:
        for t in self.tasks:
            if t.name == name:
                return t
        raise KeyError(name)

    @property
    def succeeded(self) -> bool:
        return all(self.get(t).state is TaskState.SUCCEEDED for t in self.targets)

    @property
    def exit_code(self) -> int:
        return 0 if self.succeeded else 1

    @property
    def failure(self) -> Optional[StepResult]:
        """The step that triggered the first task failure, in plan order."""
        for t in self.tasks:
            if t.state is TaskState.FAILED and t.first_failure is not None:
                return t.first_failure
        return None

    def failure_summary(self) -> Optional[Dict[str, Any]]:
        """
        What triggered the first task failure: the failing step, or the task
        error when no step ran (e.g. a service never became ready).
        """
        for t in self.tasks:
            if t.state is not TaskState.FAILED or t.blocked_by:
                continue
            failure = t.first_failure
            if failure is not None:
                return {
                    "task": t.name,
                    "step": failure.step,
                    "exit_code": failure.exit_code,
                    "output": failure.output[-4000:],
                    "detail": failure.detail,
                }
            if t.error is not None:
                return {"task": t.name, "step": None, "exit_code": None, "output": "", "detail": str(t.error)}
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "targets": list(self.targets),
            "event": self.context.event,
            "branch": self.context.branch,
            "sha": self.context.sha,
            "succeeded": self.succeeded,
            "tasks": [t.to_dict() for t in self.tasks],
            "failure": self.failure_summary(),
        }


@dataclass(frozen=True)
class ProcessResult:
    """What one external process invocation produced."""
    exit_code: Optional[int]
    stdout: str = ""
    stderr: str = ""
    elapsed: float = 0.0
    timed_out: bool = False
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0
