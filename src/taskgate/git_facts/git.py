# git.py
# Small, focused wrapper around the Git CLI.
# This module centralizes all Git interactions so the rest of the codebase
# never needs to call subprocess("git ...") directly.

from __future__ import annotations

import subprocess
from typing import Optional


def _git(args: list[str], cwd: Optional[str] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    This is the single low-level entry point for all Git operations in this file.

    Args:
        args: List of git arguments (e.g. ["rev-parse", "HEAD"])
        cwd: Optional working directory in which to run the git command.

    Returns:
        Stdout from the git command with surrounding whitespace removed.

    Raises:
        subprocess.CalledProcessError: git exited non-zero (e.g. not a repo).
        FileNotFoundError: git is not installed.
    """
    out = subprocess.check_output(
        ["git", *args],
        cwd=cwd,
        text=True,
        stderr=subprocess.DEVNULL,  # "not a git repository" is handled by callers
    )
    return out.strip()


def head_sha(cwd: Optional[str] = None) -> str:
    """
    Return the full SHA of HEAD.

    Recorded in the run context (and exported as TASKGATE_SHA) for provenance.
    """
    return _git(["rev-parse", "HEAD"], cwd=cwd)


def current_branch(cwd: Optional[str] = None) -> str:
    """
    Return the checked-out branch name.

    A detached HEAD (typical for CI checkouts of a commit) yields "HEAD";
    callers that know better (e.g. GITHUB_REF) should pass the ref explicitly.
    """
    # `--abbrev-ref HEAD` prints the short branch name, or "HEAD" when detached
    return _git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=cwd)
