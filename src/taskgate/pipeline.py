# pipeline.py
from __future__ import annotations

import posixpath
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .errors import ArtifactConflict, ConfigurationError, UnknownService
from .model import Task
from .registry import TaskRegistry
from .services import Service


@dataclass
class Pipeline:
    """
    Everything a workflow file defines, validated on construction.

    Any ConfigurationError surfaces here, before a single command has run.
    """
    tasks: List[Task]
    services: List[Service] = field(default_factory=list)
    default_target: Optional[str] = None

    registry: TaskRegistry = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.registry = TaskRegistry(self.tasks)
        self.registry.validate()

        service_names: set[str] = set()
        for svc in self.services:
            if svc.name in service_names:
                raise ConfigurationError(f"Duplicate service name: {svc.name}")
            service_names.add(svc.name)

        for task in self.tasks:
            for name in task.services:
                if name not in service_names:
                    raise UnknownService(name, task=task.name)

        if self.default_target is not None:
            self.registry.get(self.default_target)

        self._check_artifact_owners()

    @property
    def default(self) -> str:
        """Target used when none is requested: explicit, else `check`, else the last task."""
        if self.default_target is not None:
            return self.default_target
        if "check" in self.registry:
            return "check"
        names = self.registry.names()
        if not names:
            raise ConfigurationError("Pipeline has no tasks")
        return names[-1]

    def secret_names(self) -> List[str]:
        """Credentials any publish step may need; only these are read from the env."""
        names: List[str] = []
        for task in self.tasks:
            for step in task.steps:
                if step.kind != "publish" or not step.data:
                    continue
                credential = step.data["target"].credential
                if credential and credential not in names:
                    names.append(credential)
        return names

    def _check_artifact_owners(self) -> None:
        """
        Two stage steps may only write the same destination if one task runs
        strictly after the other; concurrent writers are a configuration error.
        """
        writers: Dict[str, List[str]] = {}
        for task in self.tasks:
            for step in task.steps:
                if step.kind != "stage" or not step.data:
                    continue
                dest = posixpath.normpath(str(step.data["dest"]).replace("\\", "/"))
                owners = writers.setdefault(dest, [])
                if task.name not in owners:
                    owners.append(task.name)

        for dest, owners in writers.items():
            for i, a in enumerate(owners):
                for b in owners[i + 1:]:
                    if a not in self.registry.ancestors(b) and b not in self.registry.ancestors(a):
                        raise ArtifactConflict(dest, [a, b])
