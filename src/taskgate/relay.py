# relay.py
from __future__ import annotations

import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Mapping, Optional

from . import settings
from .context import RunContext
from .errors import ArtifactMissing, ExecutionError, InvalidArtifactPath, MissingCredential
from .model import Command, ProcessResult


@dataclass(frozen=True)
class PublishTarget:
    """
    Where a payload goes and how.

    `command` receives the payload directory as `$TASKGATE_PUBLISH_DIR`
    (and `{source}` is substituted literally), plus the credential under its
    own name, e.g. `ghp-import --push --branch gh-pages {source}`.
    """
    name: str
    command: Command
    credential: Optional[str] = None

    def render(self, payload: Path) -> Command:
        if isinstance(self.command, str):
            return self.command.replace("{source}", str(payload))
        return tuple(part.replace("{source}", str(payload)) for part in self.command)


def _count_files(path: Path) -> int:
    if path.is_file():
        return 1
    return sum(1 for p in path.rglob("*") if p.is_file())


class ArtifactRelay:
    """
    Stages generated artifacts under one output root and hands that root to
    a publishing command.

    The relay never produces artifacts: a prior step must have written the
    source, otherwise ArtifactMissing.
    """

    def __init__(self, repo_root: str | Path = ".", output_root: str | Path = settings.OUTPUT_DIR):
        self.repo_root = Path(repo_root).resolve()
        self.output_root = (self.repo_root / Path(output_root).expanduser()).resolve()

    def source_path(self, source: str | Path) -> Path:
        return (self.repo_root / Path(source).expanduser()).resolve()

    def dest_path(self, dest: str | Path) -> Path:
        return (self.output_root / Path(dest).expanduser()).resolve()

    def stage(self, source: str | Path, dest: str | Path) -> int:
        """
        Copy `source` (relative to the repo root) to `dest` (relative to the
        output root), creating missing directories. Existing files at the
        destination are overwritten. Returns the number of files copied.
        """
        src = self.source_path(source)
        if not src.exists():
            raise ArtifactMissing(str(src))

        dst = self.dest_path(dest)
        if src.is_dir() and dst.is_relative_to(src):
            # copytree would keep descending into its own output
            raise InvalidArtifactPath(str(src), f"destination {dst} is inside the source")
        if src.is_dir():
            shutil.copytree(src, dst, dirs_exist_ok=True)
        else:
            if dst.is_dir():
                dst = dst / src.name
            dst.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(src, dst)
        return _count_files(src)

    def publish(
        self,
        artifacts: str | Path,
        target: PublishTarget,
        context: RunContext,
        *,
        launch: Callable[..., ProcessResult],
        env: Optional[Mapping[str, str]] = None,
        timeout: float | None = None,
    ) -> ProcessResult:
        """
        Hand the staged payload (`artifacts`, relative to the output root) to
        `target`. Gating happens before this is called; by the time we are
        here the publish is meant to happen.
        """
        payload = self.dest_path(artifacts)
        if not payload.exists():
            raise ArtifactMissing(str(payload))

        token = None
        if target.credential:
            token = context.secret(target.credential)
            if token is None:
                raise MissingCredential(target.credential, target.name)

        run_env = dict(os.environ if env is None else env)
        run_env["TASKGATE_PUBLISH_DIR"] = str(payload)
        run_env["TASKGATE_PUBLISH_TARGET"] = target.name
        if target.credential and token:
            run_env[target.credential] = token

        cmd = target.render(payload)
        proc = launch(cmd, cwd=self.repo_root, env=run_env, timeout=timeout)
        if not proc.ok:
            raise ExecutionError(
                step=f"publish:{target.name}",
                cmd=cmd if isinstance(cmd, str) else " ".join(cmd),
                exit_code=proc.exit_code,
                output=(proc.stdout + proc.stderr)[-4000:],
            )
        return proc
