# executor.py
from __future__ import annotations

import os
import signal
import subprocess
import threading
import time
from dataclasses import replace
from pathlib import Path
from typing import Callable, Dict, Mapping, Optional, Set

from . import settings
from .context import RunContext
from .errors import ExecutionError, StepError
from .gates import evaluate
from .model import Command, Outcome, ProcessResult, Step, StepResult
from .relay import ArtifactRelay

TOOL_HINTS = {
    "cargo": "Install the Rust toolchain (rustup) or fix PATH.",
    "docker": "Install Docker and ensure the daemon is running.",
    "docker-compose": "Install Docker Compose or use `docker compose`.",
    "git": "Install Git or fix PATH.",
    "npm": "Install Node.js (includes npm) or fix PATH.",
    "pytest": "Install pytest (e.g., pip install pytest).",
    "ruff": "Install ruff (e.g., pip install ruff).",
    "python3": "Install Python 3 or fix PATH (python3).",
}

# seconds between SIGTERM and SIGKILL
KILL_GRACE = 5.0
_SIGKILL = getattr(signal, "SIGKILL", signal.SIGTERM)
OUTPUT_TAIL = 4000

Launcher = Callable[..., ProcessResult]


def _program(cmd: Command) -> str:
    if isinstance(cmd, str):
        return cmd.split()[0] if cmd.split() else cmd
    return cmd[0]


def _signal_group(proc: subprocess.Popen, sig: int) -> None:
    try:
        if os.name == "posix":
            # each child leads its own session, see run_process
            os.killpg(proc.pid, sig)
        elif sig == signal.SIGTERM:
            proc.terminate()
        else:
            proc.kill()
    except (ProcessLookupError, PermissionError):
        pass


class StepExecutor:
    """
    Runs single steps to completion.

    Every external process goes through `run_process`, so `cancel()` can
    terminate whatever is in flight (steps, service start commands, publish
    commands) from any thread.
    """

    def __init__(
        self,
        repo_root: str | Path = ".",
        *,
        output_root: str | Path = settings.OUTPUT_DIR,
        default_timeout: float | None = None,
        relay: ArtifactRelay | None = None,
    ):
        self.repo_root = Path(repo_root).resolve()
        self.default_timeout = default_timeout
        self.relay = relay or ArtifactRelay(self.repo_root, output_root)

        self._procs: Set[subprocess.Popen] = set()
        self._lock = threading.Lock()
        self._cancelled = threading.Event()

        self._handlers: Dict[str, Callable[[Step, RunContext, Mapping[str, str]], StepResult]] = {
            "shell": self._run_shell,
            "stage": self._run_stage,
            "publish": self._run_publish,
        }

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def run(
        self,
        step: Step,
        context: RunContext,
        *,
        task_env: Mapping[str, str] | None = None,
    ) -> StepResult:
        if not evaluate(step.gate, context):
            return StepResult.skipped(step, f"gate {step.gate} is false")

        start = time.monotonic()
        try:
            result = self._handlers[step.kind](step, context, task_env or {})
        except StepError as e:
            result = StepResult(
                step=step.name,
                outcome=Outcome.FAILED,
                exit_code=getattr(e, "exit_code", None),
                stderr=getattr(e, "output", ""),
                policy=step.policy,
                detail=str(e),
                error=e,
            )
        except OSError as e:
            # filesystem trouble while staging (permissions, disk full, ...)
            result = StepResult(
                step=step.name,
                outcome=Outcome.FAILED,
                policy=step.policy,
                detail=f"{type(e).__name__}: {e}",
                error=e,
            )
        return replace(result, elapsed=time.monotonic() - start)

    def environment(
        self,
        context: RunContext,
        task_env: Mapping[str, str] | None = None,
        step_env: Mapping[str, str] | None = None,
    ) -> Dict[str, str]:
        """Ambient env < context vars < task env < step env."""
        env = os.environ.copy()
        env.update(context.env_vars())
        env.update(task_env or {})
        env.update(step_env or {})
        return env

    def run_process(
        self,
        cmd: Command,
        *,
        cwd: str | Path | None = None,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> ProcessResult:
        """
        Spawn `cmd` and wait for it.

        A string runs through the shell, a tuple/list is exec'd directly.
        A missing executable is reported as exit code 127 and one that cannot
        be executed as 126, like a shell would.
        """
        if self._cancelled.is_set():
            return ProcessResult(exit_code=None, stderr="cancelled", cancelled=True)

        shell = isinstance(cmd, str)
        start = time.monotonic()
        try:
            proc = subprocess.Popen(
                cmd if shell else list(cmd),
                shell=shell,
                cwd=str(cwd or self.repo_root),
                env=dict(env) if env is not None else None,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                errors="replace",
                start_new_session=os.name == "posix",
            )
        except FileNotFoundError:
            program = _program(cmd)
            hint = TOOL_HINTS.get(program, f"Install {program} or fix PATH.")
            return ProcessResult(
                exit_code=127,
                stderr=f"command not found: {program}\nHint: {hint}",
                elapsed=time.monotonic() - start,
            )
        except OSError as e:
            # not executable, a directory, bad interpreter line, ...
            return ProcessResult(
                exit_code=126,
                stderr=f"cannot execute {_program(cmd)}: {e.strerror or e}",
                elapsed=time.monotonic() - start,
            )

        with self._lock:
            self._procs.add(proc)
        if self._cancelled.is_set():
            # cancel() ran between the check above and registration
            _signal_group(proc, signal.SIGTERM)
        try:
            try:
                out, err = proc.communicate(timeout=timeout)
                timed_out = False
            except subprocess.TimeoutExpired:
                _signal_group(proc, _SIGKILL)
                out, err = proc.communicate()
                timed_out = True
        finally:
            with self._lock:
                self._procs.discard(proc)

        cancelled = self._cancelled.is_set() and proc.returncode != 0
        return ProcessResult(
            exit_code=None if timed_out else proc.returncode,
            stdout=out or "",
            stderr=err or "",
            elapsed=time.monotonic() - start,
            timed_out=timed_out,
            cancelled=cancelled,
        )

    def cancel(self) -> None:
        """Terminate every in-flight process; later steps fail immediately."""
        self._cancelled.set()
        with self._lock:
            procs = list(self._procs)

        for proc in procs:
            _signal_group(proc, signal.SIGTERM)

        deadline = time.monotonic() + KILL_GRACE
        for proc in procs:
            while proc.poll() is None and time.monotonic() < deadline:
                time.sleep(0.05)
            if proc.poll() is None:
                _signal_group(proc, _SIGKILL)

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    # ------------------------------------------------------------------
    # Step kinds
    # ------------------------------------------------------------------

    def _run_shell(self, step: Step, context: RunContext, task_env: Mapping[str, str]) -> StepResult:
        cwd = (self.repo_root / (step.cwd or ".")).resolve()
        if not cwd.is_dir():
            return StepResult(
                step=step.name,
                outcome=Outcome.FAILED,
                policy=step.policy,
                detail=f"cwd not found: {cwd}",
            )

        timeout = step.timeout if step.timeout is not None else self.default_timeout
        proc = self.run_process(
            step.run,
            cwd=cwd,
            env=self.environment(context, task_env, step.env),
            timeout=timeout,
        )

        if proc.ok:
            return StepResult(
                step=step.name,
                outcome=Outcome.SUCCEEDED,
                exit_code=0,
                stdout=proc.stdout,
                stderr=proc.stderr,
                policy=step.policy,
            )

        if proc.timed_out:
            detail = f"timed out after {timeout}s"
        elif proc.cancelled:
            detail = "cancelled"
        else:
            detail = f"exit code {proc.exit_code}"
        return StepResult(
            step=step.name,
            outcome=Outcome.FAILED,
            exit_code=proc.exit_code,
            stdout=proc.stdout,
            stderr=proc.stderr,
            policy=step.policy,
            detail=detail,
            error=ExecutionError(
                step=step.name,
                cmd=step.command_line,
                exit_code=proc.exit_code,
                output=(proc.stdout + proc.stderr)[-OUTPUT_TAIL:],
            ),
        )

    def _run_stage(self, step: Step, context: RunContext, task_env: Mapping[str, str]) -> StepResult:
        data = step.data or {}
        count = self.relay.stage(data["source"], data["dest"])
        return StepResult(
            step=step.name,
            outcome=Outcome.SUCCEEDED,
            exit_code=0,
            policy=step.policy,
            detail=f"staged {count} file(s) to {self.relay.dest_path(data['dest'])}",
        )

    def _run_publish(self, step: Step, context: RunContext, task_env: Mapping[str, str]) -> StepResult:
        data = step.data or {}
        timeout = step.timeout if step.timeout is not None else self.default_timeout
        proc = self.relay.publish(
            data.get("source", "."),
            data["target"],
            context,
            launch=self.run_process,
            env=self.environment(context, task_env, step.env),
            timeout=timeout,
        )
        return StepResult(
            step=step.name,
            outcome=Outcome.SUCCEEDED,
            exit_code=0,
            stdout=proc.stdout,
            stderr=proc.stderr,
            policy=step.policy,
            detail=f"published to {data['target'].name}",
        )
