"""Console output formatting utilities for taskgate."""

from __future__ import annotations

import sys
import threading
from typing import TYPE_CHECKING, Iterable, List, Optional

if TYPE_CHECKING:
    from ..model import RunReport, StepResult, TaskResult


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False, tail: int = 40):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
            tail: Number of output lines shown for a failing step
        """
        self.debug = debug
        self.tail = tail
        # tasks report from worker threads; keep multi-line blocks together
        self._lock = threading.Lock()

    def _emit(self, *lines: str, err: bool = False) -> None:
        stream = sys.stderr if err else sys.stdout
        with self._lock:
            for line in lines:
                print(line, file=stream)

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self._emit("", title, "-" * len(title))

    def print_run_started(
        self,
        workflow: str,
        targets: List[str],
        event: str,
        branch: str,
        task_count: int,
    ) -> None:
        """Print run start information."""
        self._emit(
            "",
            "RUN STARTED",
            f"Workflow: {workflow}",
            f"Targets: {', '.join(targets)}",
            f"Event: {event}",
            f"Branch: {branch}",
            f"Tasks: {task_count}",
            "",
        )

    def print_plan(self, levels: List[List[str]]) -> None:
        """Print the resolved stages of a run."""
        for i, level in enumerate(levels, start=1):
            self._emit(f"  stage {i}: {', '.join(level)}")

    def print_task_start(self, name: str) -> None:
        self._emit(f"[{name}] started")

    def print_step(self, task: str, step: str) -> None:
        self._emit(f"[{task}] ▶ {step}")

    def print_step_result(self, task: str, result: StepResult) -> None:
        """Print one line per finished step; failures also get their output tail."""
        outcome = result.outcome.value
        if outcome == "skipped":
            self._emit(f"[{task}] ⏭ {result.step} ({result.detail})")
            return
        if outcome == "succeeded":
            self.print_debug(f"[{task}] {result.step} ok in {result.elapsed:.1f}s")
            return

        note = " (continue-on-error)" if not result.aborts_task else ""
        lines = [f"[{task}] ✗ {result.step}: {result.detail or 'failed'}{note}"]
        if self.debug:
            lines.extend(self._tail(result.output))
        self._emit(*lines)

    def print_task_finished(self, result: TaskResult) -> None:
        mark = "✓" if result.state.value == "succeeded" else "✗"
        self._emit(f"[{result.name}] {mark} {result.state.value} ({result.elapsed:.1f}s)")

    def print_task_blocked(self, name: str, failed: Iterable[str]) -> None:
        self._emit(f"[{name}] ✗ not run: prerequisite failed ({', '.join(failed)})")

    def print_task_error(self, name: str, error: Exception) -> None:
        self._emit(f"[{name}] ✗ {error}")

    def print_service_starting(self, name: str, probe: str) -> None:
        self._emit(f"SERVICE: starting {name} (ready when: {probe})")

    def print_service_ready(self, name: str, waited: float) -> None:
        self._emit(f"SERVICE: {name} ready after {waited:.1f}s")

    def print_task_list(self, rows: List[tuple[str, List[str], str]], default: str) -> None:
        """Print `taskgate list` output: name, prerequisites, description."""
        width = max((len(name) for name, _, _ in rows), default=0)
        for name, needs, description in rows:
            marker = "*" if name == default else " "
            deps = f" <- {', '.join(needs)}" if needs else ""
            self._emit(f"{marker} {name.ljust(width)}  {description}{deps}".rstrip())

    def print_results(self, report: RunReport) -> None:
        """Print final results summary."""
        lines = ["", "=" * 40, "RESULTS", "=" * 40]
        for task in report.tasks:
            status = task.state.value.upper()
            if task.blocked_by:
                status += f" (blocked by {', '.join(task.blocked_by)})"
            elif task.recovered_failures:
                names = ", ".join(r.step for r in task.recovered_failures)
                status += f" (continue-on-error failed: {names})"
            lines.append(f"  {task.name}: {status}")

        for task in report.tasks:
            if task.state.value != "failed" or task.blocked_by:
                continue
            lines.append("")
            if task.error is not None:
                lines.append(f"{task.name}: {task.error}")
                continue
            failure = task.first_failure
            if failure is None:
                continue
            lines.append(f"{task.name} / {failure.step}: {failure.detail}")
            if failure.exit_code is not None:
                lines.append(f"Exit code: {failure.exit_code}")
            lines.extend(self._tail(failure.output))
        self._emit(*lines)

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        lines = ["", f"ERROR: {title}", message]
        for detail in details or []:
            lines.append(f"  {detail}")
        if suggestion:
            lines.extend(["", suggestion])
        self._emit(*lines, err=True)

    def print_exception(self, exc: BaseException) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            self._emit(f"Error: {exc}", err=True)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._emit(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._emit(f"[DEBUG] {message}", err=True)

    def _tail(self, output: str) -> List[str]:
        lines = output.rstrip().splitlines()
        if len(lines) > self.tail:
            return [f"... ({len(lines) - self.tail} lines omitted)"] + lines[-self.tail:]
        return lines


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
