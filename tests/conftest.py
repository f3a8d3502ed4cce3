from __future__ import annotations

import sys

import pytest

from taskgate.context import RunContext
from taskgate.ui.console import Console, set_console


def py(code: str) -> tuple[str, ...]:
    """argv running `code` with the current interpreter, no shell involved."""
    return (sys.executable, "-c", code)


@pytest.fixture(autouse=True)
def _console():
    set_console(Console(debug=False))
    yield


@pytest.fixture
def ctx():
    def make(event: str = "push", branch: str = "main", **kwargs) -> RunContext:
        return RunContext(event=event, branch=branch, **kwargs)

    return make
