# context.py
from __future__ import annotations

import os
import subprocess
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

from .git_facts.git import current_branch, head_sha

EVENT_KINDS = ("push", "pull_request", "local")


def normalize_ref(ref: str) -> str:
    """refs/heads/main -> main; anything else is returned unchanged."""
    ref = ref.strip()
    for prefix in ("refs/heads/", "refs/tags/"):
        if ref.startswith(prefix):
            return ref[len(prefix):]
    return ref


@dataclass(frozen=True)
class RunContext:
    """
    Per-invocation metadata, fixed for the whole run.

    Gates and steps only ever read it; it is built once by `context_from_env`
    (or directly in tests) and discarded when the run ends.
    """
    event: str
    branch: str
    flags: frozenset = frozenset()
    secrets: Mapping[str, str] = field(default_factory=dict)
    sha: Optional[str] = None

    def __post_init__(self) -> None:
        if self.event not in EVENT_KINDS:
            raise ValueError(f"Unknown event kind {self.event!r}; expected one of {EVENT_KINDS}")
        # frozen: normalise through object.__setattr__
        object.__setattr__(self, "branch", normalize_ref(self.branch))
        object.__setattr__(self, "flags", frozenset(self.flags))
        object.__setattr__(self, "secrets", MappingProxyType(dict(self.secrets)))

    def has_flag(self, name: str) -> bool:
        return name in self.flags

    def secret(self, name: str) -> Optional[str]:
        value = self.secrets.get(name)
        return value or None

    def env_vars(self) -> dict[str, str]:
        """Variables exported to every step."""
        env = {"TASKGATE_EVENT": self.event, "TASKGATE_BRANCH": self.branch}
        if self.sha:
            env["TASKGATE_SHA"] = self.sha
        return env


def _detect_branch() -> str:
    try:
        return current_branch()
    except (subprocess.CalledProcessError, FileNotFoundError):
        return "HEAD"


def _detect_sha() -> Optional[str]:
    try:
        return head_sha()
    except (subprocess.CalledProcessError, FileNotFoundError):
        return None


def context_from_env(
    event: Optional[str] = None,
    ref: Optional[str] = None,
    *,
    flags: Iterable[str] = (),
    secret_names: Iterable[str] = (),
    environ: Optional[Mapping[str, str]] = None,
) -> RunContext:
    """
    Build the RunContext for this invocation.

    Explicit arguments win. Otherwise the GitHub Actions variables are used
    when present (GITHUB_EVENT_NAME, GITHUB_HEAD_REF for pull requests,
    GITHUB_REF), then git itself. Outside CI the event is "local".

    Only the secrets named in `secret_names` are captured from the environment.
    """
    env = os.environ if environ is None else environ

    if event is None:
        event = env.get("GITHUB_EVENT_NAME") or "local"
        if event not in EVENT_KINDS:
            # e.g. workflow_dispatch: treat like a local run, never like a push
            event = "local"

    if ref is None:
        ref = env.get("GITHUB_HEAD_REF") or env.get("GITHUB_REF") or _detect_branch()

    sha = env.get("GITHUB_SHA") or _detect_sha()

    secrets = {name: env[name] for name in secret_names if env.get(name)}
    return RunContext(event=event, branch=ref, flags=frozenset(flags), secrets=secrets, sha=sha)
