# dsl.py
from __future__ import annotations

from dataclasses import replace
from typing import Dict, List, Optional, Sequence, Union

from . import settings
from .gates import DEFAULT_PUBLISH_GATE, Gate
from .model import Command, FailurePolicy, Step, Task
from .pipeline import Pipeline
from .relay import PublishTarget
from .services import CommandProbe, HttpProbe, Probe, Service, TcpProbe

_DEFAULT = object()


def _command(cmd: Union[str, Sequence[str]]) -> Command:
    return cmd if isinstance(cmd, str) else tuple(cmd)


# ---------------------------------------------------------------------
# Step helpers
# ---------------------------------------------------------------------

def sh(
    name: str,
    cmd: Union[str, Sequence[str]],
    *,
    cwd: str | None = None,
    env: Optional[Dict[str, str]] = None,
    when: Optional[Gate] = None,
    continue_on_error: bool = False,
    timeout: float | None = None,
) -> Step:
    """Create a shell step. A list/tuple `cmd` is exec'd without a shell."""
    return Step(
        name=name,
        run=_command(cmd),
        cwd=cwd,
        env=dict(env or {}),
        policy=FailurePolicy.CONTINUE_ON_ERROR if continue_on_error else FailurePolicy.FAIL_FAST,
        gate=when,
        timeout=timeout,
    )


def stage(name: str, source: str, dest: str, *, when: Optional[Gate] = None) -> Step:
    """Copy `source` (repo-relative) into the output root at `dest`."""
    return Step(name=name, kind="stage", gate=when, data={"source": source, "dest": dest})


def publish(
    name: str,
    command: Union[str, Sequence[str]],
    *,
    source: str = ".",
    target: str = "gh-pages",
    credential: Optional[str] = "GITHUB_TOKEN",
    when=_DEFAULT,
    timeout: float | None = None,
) -> Step:
    """
    Hand the output root (or `source` inside it) to `command`.

    Gated on `branch_equals("main") & event_is("push")` unless `when` is
    given; pass `when=None` to publish on every run.
    """
    return Step(
        name=name,
        run=_command(command),
        kind="publish",
        gate=DEFAULT_PUBLISH_GATE if when is _DEFAULT else when,
        timeout=timeout,
        data={
            "source": source,
            "target": PublishTarget(name=target, command=_command(command), credential=credential),
        },
    )


# ---------------------------------------------------------------------
# Task helper
# ---------------------------------------------------------------------

def task(
    name: str,
    *steps: Step,  # allow: task("x", sh(...), sh(...))
    steps_list: Optional[List[Step]] = None,
    needs: Optional[List[str]] = None,
    env: Optional[Dict[str, str]] = None,
    services: Optional[List[str]] = None,
    best_effort: bool = False,
    description: str = "",
    cwd: str | None = None,  # default cwd applied to steps missing cwd
) -> Task:
    steps_final: List[Step] = list(steps_list or []) + list(steps)

    if cwd is not None:
        steps_final = [s if s.cwd is not None else replace(s, cwd=cwd) for s in steps_final]

    return Task(
        name=name,
        steps=steps_final,
        needs=list(needs or []),
        env={k: str(v) for k, v in (env or {}).items()},
        services=list(services or []),
        best_effort=best_effort,
        description=description,
    )


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class TaskBuilder:
    def __init__(self, name: str):
        self.name = name
        self._needs: list[str] = []
        self._steps: list[Step] = []
        self._env: dict[str, str] = {}
        self._services: list[str] = []
        self._best_effort = False
        self._description = ""

    def depends_on(self, *task_names: str):
        self._needs.extend(task_names)
        return self

    def requires_services(self, *names: str):
        self._services.extend(names)
        return self

    def define_step(self, name: str, run: Union[str, Sequence[str]], cwd: str | None = None, **kwargs):
        self._steps.append(sh(name, run, cwd=cwd, **kwargs))
        return self

    def add(self, step: Step):
        self._steps.append(step)
        return self

    def with_env(self, **env):
        # force values to str for env compatibility
        self._env.update({k: str(v) for k, v in env.items()})
        return self

    def best_effort(self, enabled: bool = True):
        self._best_effort = enabled
        return self

    def describe(self, text: str):
        self._description = text
        return self

    def build(self) -> Task:
        return Task(
            name=self.name,
            steps=list(self._steps),
            needs=list(self._needs),
            env=dict(self._env),
            services=list(self._services),
            best_effort=self._best_effort,
            description=self._description,
        )


def build(name: str) -> TaskBuilder:
    """Convenience: build('test').define_step(...).build()"""
    return TaskBuilder(name)


# ---------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------

def service(
    name: str,
    *,
    url: str | None = None,
    port: int | None = None,
    host: str = "localhost",
    check: Union[str, Sequence[str], None] = None,
    start: Union[str, Sequence[str], None] = None,
    cwd: str | None = None,
    timeout: float = settings.SERVICE_TIMEOUT,
    interval: float = 0.5,
    max_interval: float = 5.0,
    max_attempts: int = 60,
) -> Service:
    """
    Declare a service. Exactly one readiness check: `url` (HTTP), `port`
    (TCP on `host`) or `check` (a command exiting 0).
    """
    probes = [p for p in (url, port, check) if p is not None]
    if len(probes) != 1:
        raise ValueError(f"service({name!r}) needs exactly one of url=, port=, check=")

    probe: Probe
    if url is not None:
        probe = HttpProbe(url)
    elif port is not None:
        probe = TcpProbe(host, int(port))
    else:
        probe = CommandProbe(_command(check))

    return Service(
        name=name,
        probe=probe,
        start=_command(start) if start is not None else (),
        cwd=cwd,
        timeout=timeout,
        interval=interval,
        max_interval=max_interval,
        max_attempts=max_attempts,
    )


# ---------------------------------------------------------------------
# Pipeline helper (single-file story)
# ---------------------------------------------------------------------

def pipeline(*tasks: Task, services: Sequence[Service] = (), default: Optional[str] = None) -> Pipeline:
    """
    Workflow definition helper:

        from taskgate import pipeline, task, sh

        def workflow():
            return pipeline(
                task("build", sh("Build", "cargo build")),
                task("check", sh("Test", "cargo test"), needs=["build"]),
            )
    """
    return Pipeline(tasks=list(tasks), services=list(services), default_target=default)
