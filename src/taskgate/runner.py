# runner.py
from __future__ import annotations

import os
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from . import settings
from .context import RunContext
from .errors import ServiceUnavailable
from .executor import StepExecutor
from .model import RunReport, Task, TaskResult, TaskState, task_outcome
from .pipeline import Pipeline
from .services import ServiceManager
from .ui.console import Console, get_console


class TaskRunner:
    """
    Runs the prerequisite closure of the requested targets.

    - only tasks required by a target are touched; the rest stay pending
    - a task starts once all of its prerequisites are terminal
    - a failed prerequisite fails its dependents without running them,
      unless the dependent is best-effort
    - independent tasks run concurrently (max_workers=1 runs them in plan order)
    - tasks that publish wait until every other task of the plan is done
    """

    def __init__(
        self,
        pipeline: Pipeline,
        context: RunContext,
        *,
        repo_root: str | Path = ".",
        output_root: str | Path = settings.OUTPUT_DIR,
        max_workers: int | None = None,
        step_timeout: float | None = None,
        executor: StepExecutor | None = None,
        services: ServiceManager | None = None,
        console: Console | None = None,
    ):
        self.pipeline = pipeline
        self.registry = pipeline.registry
        self.context = context
        self.console = console or get_console()
        self.executor = executor or StepExecutor(
            repo_root,
            output_root=output_root,
            default_timeout=step_timeout,
        )
        self.services = services or ServiceManager(
            pipeline.services,
            launch=self.executor.run_process,
            repo_root=repo_root,
            console=self.console,
        )

        if max_workers is None:
            c = os.cpu_count() or 2
            max_workers = max(1, c - 1)
        self.max_workers = max_workers

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def plan(self, targets: Optional[Sequence[str]] = None) -> List[Task]:
        return self.registry.resolve_many(self._targets(targets))

    def run(self, targets: Optional[Sequence[str]] = None) -> RunReport:
        names = self._targets(targets)
        # configuration errors raise here, before anything is spawned
        plan = self.registry.resolve_many(names)

        by_name: Dict[str, Task] = {t.name: t for t in plan}
        order = [t.name for t in plan]
        results: Dict[str, TaskResult] = {n: TaskResult(n) for n in order}
        waiting: List[str] = list(order)
        in_flight: Dict[Future, str] = {}

        pool = ThreadPoolExecutor(max_workers=self.max_workers)
        interrupted = False
        try:
            while waiting or in_flight:
                while self._schedule(waiting, in_flight, results, by_name, pool):
                    pass

                if not in_flight:
                    if waiting:
                        raise RuntimeError(f"Scheduler stalled with pending tasks: {waiting}")
                    break

                done, _ = wait(list(in_flight), return_when=FIRST_COMPLETED)
                for fut in sorted(done, key=lambda f: order.index(in_flight[f])):
                    name = in_flight.pop(fut)
                    results[name] = fut.result()
        except KeyboardInterrupt:
            # services are left running; they belong to the environment
            interrupted = True
            self.executor.cancel()
            raise
        finally:
            pool.shutdown(wait=not interrupted, cancel_futures=True)

        return RunReport(targets=names, context=self.context, tasks=[results[n] for n in order])

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def _targets(self, targets: Optional[Sequence[str]]) -> List[str]:
        return list(targets) if targets else [self.pipeline.default]

    def _schedule(
        self,
        waiting: List[str],
        in_flight: Dict[Future, str],
        results: Dict[str, TaskResult],
        by_name: Dict[str, Task],
        pool: ThreadPoolExecutor,
    ) -> bool:
        """Start (or fail) every task whose prerequisites are terminal. True if anything moved."""
        progressed = False
        for name in list(waiting):
            task = by_name[name]
            prereqs = [results[d] for d in task.needs]
            if not all(p.state.terminal for p in prereqs):
                continue
            if task.publishes and self._busy(name, waiting, in_flight, by_name):
                continue

            waiting.remove(name)
            progressed = True

            failed = [p.name for p in prereqs if p.state is TaskState.FAILED]
            if failed and not task.best_effort:
                results[name] = TaskResult(name, state=TaskState.FAILED, blocked_by=failed)
                self.console.print_task_blocked(name, failed)
                continue

            results[name].state = TaskState.RUNNING
            in_flight[pool.submit(self._run_task, task)] = name
        return progressed

    def _busy(
        self,
        name: str,
        waiting: List[str],
        in_flight: Dict[Future, str],
        by_name: Dict[str, Task],
    ) -> bool:
        if in_flight:
            return True
        # tasks downstream of this one cannot run before it anyway
        return any(
            not by_name[n].publishes and name not in self.registry.ancestors(n)
            for n in waiting
            if n != name
        )

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _run_task(self, task: Task) -> TaskResult:
        start = time.monotonic()
        result = TaskResult(task.name, state=TaskState.RUNNING)
        self.console.print_task_start(task.name)

        if task.services:
            try:
                self.services.ensure(task.services, self.context)
            except ServiceUnavailable as e:
                result.state = TaskState.FAILED
                result.error = e
                result.elapsed = time.monotonic() - start
                self.console.print_task_error(task.name, e)
                self.console.print_task_finished(result)
                return result

        for step in task.steps:
            self.console.print_step(task.name, step.name)
            step_result = self.executor.run(step, self.context, task_env=task.env)
            result.steps.append(step_result)
            self.console.print_step_result(task.name, step_result)
            if step_result.aborts_task:
                break

        result.state = task_outcome(result.steps)
        result.elapsed = time.monotonic() - start
        self.console.print_task_finished(result)
        return result


def run_pipeline(
    pipeline: Pipeline,
    context: RunContext,
    targets: Optional[Sequence[str]] = None,
    **kwargs,
) -> RunReport:
    """Convenience: TaskRunner(pipeline, context, **kwargs).run(targets)."""
    return TaskRunner(pipeline, context, **kwargs).run(targets)
