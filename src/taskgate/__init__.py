from .dsl import build, pipeline, publish, service, sh, stage, task, TaskBuilder
from .gates import all_of, any_of, branch_equals, event_is, flag, not_
from .context import RunContext, context_from_env
from .loader import load_workflow
from .model import FailurePolicy, Outcome, Step, Task, TaskState
from .pipeline import Pipeline
from .runner import TaskRunner, run_pipeline

__all__ = [
    "build", "pipeline", "publish", "service", "sh", "stage", "task", "TaskBuilder",
    "all_of", "any_of", "branch_equals", "event_is", "flag", "not_",
    "RunContext", "context_from_env", "load_workflow",
    "FailurePolicy", "Outcome", "Step", "Task", "TaskState",
    "Pipeline", "TaskRunner", "run_pipeline",
]
