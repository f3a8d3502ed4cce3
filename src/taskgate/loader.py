# loader.py
from __future__ import annotations

import runpy
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from . import settings
from .dsl import pipeline, publish, service, sh, stage, task
from .errors import InvalidWorkflow
from .gates import parse_gate
from .model import Step, Task
from .pipeline import Pipeline
from .services import Service

Cmd = Union[str, List[str]]


# ----------------------------------------------------------------------
# Python workflows
# ----------------------------------------------------------------------

def _load_python(wf_path: Path) -> Pipeline:
    module_name = f"taskgate_workflow_{wf_path.stem}"
    globals_dict = runpy.run_path(str(wf_path), run_name=module_name)

    result: Any = None
    if "workflow" in globals_dict and callable(globals_dict["workflow"]):
        result = globals_dict["workflow"]()
    elif "PIPELINE" in globals_dict:
        result = globals_dict["PIPELINE"]
    elif "TASKS" in globals_dict:
        result = globals_dict["TASKS"]

    if isinstance(result, Pipeline):
        return result

    if isinstance(result, list) and all(isinstance(t, Task) for t in result):
        services = globals_dict.get("SERVICES", [])
        if not isinstance(services, list) or not all(isinstance(s, Service) for s in services):
            raise InvalidWorkflow(str(wf_path), "SERVICES must be a list of service(...) definitions")
        return Pipeline(tasks=result, services=services, default_target=globals_dict.get("DEFAULT_TARGET"))

    raise InvalidWorkflow(
        str(wf_path),
        "define workflow() -> pipeline(...), PIPELINE = pipeline(...), or TASKS = [task(...), ...]",
    )


# ----------------------------------------------------------------------
# YAML workflows
# ----------------------------------------------------------------------

class _UniqueKeyLoader(yaml.SafeLoader):
    """SafeLoader that refuses duplicate mapping keys instead of keeping the last one."""

    def construct_mapping(self, node, deep=False):
        seen = set()
        for key_node, _ in node.value:
            key = self.construct_object(key_node, deep=deep)
            if key in seen:
                raise yaml.constructor.ConstructorError(
                    None, None, f"duplicate key {key!r}", key_node.start_mark
                )
            seen.add(key)
        return super().construct_mapping(node, deep=deep)


class _Spec(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class StageSpec(_Spec):
    source: str
    dest: str


class PublishSpec(_Spec):
    command: Cmd
    source: str = "."
    target: str = "gh-pages"
    credential: Optional[str] = "GITHUB_TOKEN"


class StepSpec(_Spec):
    name: str
    run: Optional[Cmd] = None
    stage: Optional[StageSpec] = None
    publish: Optional[PublishSpec] = None
    cwd: Optional[str] = None
    env: Dict[str, str] = Field(default_factory=dict)
    when: Optional[Dict[str, Any]] = None
    continue_on_error: bool = Field(False, alias="continue-on-error")
    timeout: Optional[float] = Field(None, gt=0)

    @model_validator(mode="after")
    def _one_action(self) -> StepSpec:
        actions = [a for a in (self.run, self.stage, self.publish) if a is not None]
        if len(actions) != 1:
            raise ValueError(f"step {self.name!r} needs exactly one of run, stage, publish")
        return self


class TaskSpec(_Spec):
    steps: List[StepSpec] = Field(default_factory=list)
    needs: List[str] = Field(default_factory=list)
    env: Dict[str, str] = Field(default_factory=dict)
    services: List[str] = Field(default_factory=list)
    best_effort: bool = Field(False, alias="best-effort")
    description: str = ""


class ServiceSpec(_Spec):
    url: Optional[str] = None
    port: Optional[int] = None
    host: str = "localhost"
    check: Optional[Cmd] = None
    start: Optional[Cmd] = None
    cwd: Optional[str] = None
    timeout: float = Field(settings.SERVICE_TIMEOUT, gt=0)
    interval: float = Field(0.5, gt=0)
    max_interval: float = Field(5.0, gt=0, alias="max-interval")
    max_attempts: int = Field(60, ge=1, alias="max-attempts")

    @model_validator(mode="after")
    def _one_probe(self) -> ServiceSpec:
        if len([p for p in (self.url, self.port, self.check) if p is not None]) != 1:
            raise ValueError("service needs exactly one of url, port, check")
        return self


class PipelineSpec(_Spec):
    default: Optional[str] = None
    tasks: Dict[str, TaskSpec]
    services: Dict[str, ServiceSpec] = Field(default_factory=dict)


def _step_from_spec(spec: StepSpec) -> Step:
    # parse_gate raises InvalidGate for unknown kinds
    gate = parse_gate(spec.when) if spec.when is not None else None

    if spec.stage is not None:
        return stage(spec.name, spec.stage.source, spec.stage.dest, when=gate)
    if spec.publish is not None:
        p = spec.publish
        kwargs: Dict[str, Any] = {}
        if spec.when is not None:
            kwargs["when"] = gate
        return publish(
            spec.name,
            p.command,
            source=p.source,
            target=p.target,
            credential=p.credential,
            timeout=spec.timeout,
            **kwargs,
        )
    return sh(
        spec.name,
        spec.run,
        cwd=spec.cwd,
        env=spec.env,
        when=gate,
        continue_on_error=spec.continue_on_error,
        timeout=spec.timeout,
    )


def pipeline_from_dict(data: Any, source: str = "<dict>") -> Pipeline:
    """Validate a parsed YAML document and turn it into a Pipeline."""
    try:
        spec = PipelineSpec.model_validate(data)
    except ValidationError as e:
        raise InvalidWorkflow(source, str(e)) from None

    tasks = [
        task(
            name,
            steps_list=[_step_from_spec(s) for s in t.steps],
            needs=t.needs,
            env=t.env,
            services=t.services,
            best_effort=t.best_effort,
            description=t.description,
        )
        for name, t in spec.tasks.items()
    ]
    services = [
        service(
            name,
            url=s.url,
            port=s.port,
            host=s.host,
            check=s.check,
            start=s.start,
            cwd=s.cwd,
            timeout=s.timeout,
            interval=s.interval,
            max_interval=s.max_interval,
            max_attempts=s.max_attempts,
        )
        for name, s in spec.services.items()
    ]
    return pipeline(*tasks, services=services, default=spec.default)


def _load_yaml(wf_path: Path) -> Pipeline:
    try:
        data = yaml.load(wf_path.read_text(encoding="utf-8"), Loader=_UniqueKeyLoader)
    except yaml.YAMLError as e:
        raise InvalidWorkflow(str(wf_path), str(e)) from None
    return pipeline_from_dict(data, source=str(wf_path))


# ----------------------------------------------------------------------
# Entry point
# ----------------------------------------------------------------------

def load_workflow(path: str | Path) -> Pipeline:
    """
    Load a workflow from a .py or .yaml/.yml file.

    A Python file must define one of:
      - workflow() -> Pipeline (or List[Task])
      - PIPELINE = pipeline(...)
      - TASKS = [Task, ...] (optionally SERVICES = [...], DEFAULT_TARGET = "...")

    Returns:
      A validated Pipeline; any ConfigurationError is raised from here.
    """
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise FileNotFoundError(f"Workflow file not found: {wf_path}")

    if wf_path.suffix == ".py":
        return _load_python(wf_path)
    if wf_path.suffix in (".yaml", ".yml"):
        return _load_yaml(wf_path)
    raise InvalidWorkflow(str(wf_path), f"expected a .py, .yaml or .yml file, got {wf_path.name}")


def find_workflow_files(directory: str | Path = ".") -> List[Path]:
    """
    Workflow files in `directory`: the well-known names first, then any
    other *_workflow.py.
    """
    current_dir = Path(directory)
    found: List[Path] = []
    for name in settings.WORKFLOW_CANDIDATES:
        candidate = current_dir / name
        if candidate.exists():
            found.append(candidate)

    for path in sorted(current_dir.glob("*_workflow.py")):
        if path not in found:
            found.append(path)
    return found
