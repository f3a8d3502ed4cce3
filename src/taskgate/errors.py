# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional


# ----------------------------------------------------------------------
# Configuration errors
# ----------------------------------------------------------------------
# Raised while a pipeline is being defined, loaded or resolved. A run never
# starts an external command once one of these has been raised.

class ConfigurationError(Exception):
    """A pipeline definition is invalid."""


@dataclass
class DuplicateTask(ConfigurationError):
    name: str

    def __str__(self) -> str:
        return f"Duplicate task name: {self.name}"


@dataclass
class UnknownTask(ConfigurationError):
    name: str
    required_by: Optional[str] = None
    known: List[str] = field(default_factory=list)

    def __str__(self) -> str:
        msg = f"Unknown task: {self.name}"
        if self.required_by:
            msg = f"Task '{self.required_by}' needs missing task '{self.name}'"
        if self.known:
            msg += f". Known tasks: {self.known}"
        return msg


@dataclass
class CyclicDependency(ConfigurationError):
    cycle: List[str]

    def __str__(self) -> str:
        return "Dependency cycle: " + " -> ".join(self.cycle)


@dataclass
class InvalidGate(ConfigurationError):
    gate: object
    reason: str

    def __str__(self) -> str:
        return f"Invalid gate {self.gate!r}: {self.reason}"


@dataclass
class InvalidTask(ConfigurationError):
    task: str
    reason: str

    def __str__(self) -> str:
        return f"Invalid task '{self.task}': {self.reason}"


@dataclass
class UnknownService(ConfigurationError):
    name: str
    task: Optional[str] = None

    def __str__(self) -> str:
        if self.task:
            return f"Task '{self.task}' requires unknown service '{self.name}'"
        return f"Unknown service: {self.name}"


@dataclass
class ArtifactConflict(ConfigurationError):
    path: str
    tasks: List[str]

    def __str__(self) -> str:
        return (
            f"Artifact path '{self.path}' is written by independent tasks {self.tasks}; "
            "make one of them depend on the other"
        )


@dataclass
class InvalidWorkflow(ConfigurationError):
    path: str
    reason: str

    def __str__(self) -> str:
        return f"Invalid workflow {self.path}: {self.reason}"


# ----------------------------------------------------------------------
# Runtime errors
# ----------------------------------------------------------------------

class StepError(Exception):
    """
    Raised inside a step and attached to its StepResult.

    `fatal` errors abort the task even for continue-on-error steps.
    """
    fatal = False


@dataclass
class ExecutionError(StepError):
    step: str
    cmd: str
    exit_code: Optional[int]
    output: str = ""

    def __str__(self) -> str:
        return f"step '{self.step}' failed (exit={self.exit_code}): {self.cmd}"


@dataclass
class ArtifactMissing(StepError):
    path: str
    fatal = True

    def __str__(self) -> str:
        return f"Artifact not found: {self.path}"


@dataclass
class InvalidArtifactPath(StepError):
    path: str
    reason: str
    fatal = True

    def __str__(self) -> str:
        return f"Cannot stage {self.path}: {self.reason}"


@dataclass
class MissingCredential(StepError):
    name: str
    target: Optional[str] = None
    fatal = True

    def __str__(self) -> str:
        where = f" for publish target '{self.target}'" if self.target else ""
        return f"Missing credential {self.name}{where}"


@dataclass
class ServiceUnavailable(Exception):
    service: str
    attempts: int
    waited: float
    reason: str = ""

    def __str__(self) -> str:
        msg = f"Service '{self.service}' not ready after {self.attempts} checks ({self.waited:.1f}s)"
        if self.reason:
            msg += f": {self.reason}"
        return msg
