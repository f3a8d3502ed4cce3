# services.py
from __future__ import annotations

import os
import socket
import threading
import time
import urllib.error
import urllib.request
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Set, Union

from . import settings
from .context import RunContext
from .errors import ConfigurationError, ServiceUnavailable, UnknownService
from .model import Command, ProcessResult
from .ui.console import Console, get_console

Launcher = Callable[..., ProcessResult]


# ---------------------------------------------------------------------
# Readiness probes
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class HttpProbe:
    """Ready when GET `url` answers with a 2xx/3xx status."""
    url: str
    timeout: float = 2.0

    def check(self, launch: Launcher) -> bool:
        try:
            with urllib.request.urlopen(self.url, timeout=self.timeout) as response:
                return 200 <= response.status < 400
        except (urllib.error.URLError, OSError, ValueError):
            return False

    def describe(self) -> str:
        return f"GET {self.url}"


@dataclass(frozen=True)
class TcpProbe:
    """Ready when something accepts connections on host:port."""
    host: str
    port: int
    timeout: float = 2.0

    def check(self, launch: Launcher) -> bool:
        try:
            with socket.create_connection((self.host, self.port), timeout=self.timeout):
                return True
        except OSError:
            return False

    def describe(self) -> str:
        return f"tcp {self.host}:{self.port}"


@dataclass(frozen=True)
class CommandProbe:
    """Ready when `run` exits 0."""
    run: Command
    timeout: float = 10.0

    def check(self, launch: Launcher) -> bool:
        return launch(self.run, timeout=self.timeout).ok

    def describe(self) -> str:
        return self.run if isinstance(self.run, str) else " ".join(self.run)


Probe = Union[HttpProbe, TcpProbe, CommandProbe]


@dataclass(frozen=True)
class Service:
    """
    A long-lived external service some tasks need (database, search engine, ...).

    By default it is brought up with `docker compose up -d <name>`.
    """
    name: str
    probe: Probe
    start: Command = ()
    cwd: str | None = None
    timeout: float = settings.SERVICE_TIMEOUT
    interval: float = 0.5
    max_interval: float = 5.0
    max_attempts: int = 60

    @property
    def start_command(self) -> Command:
        if self.start:
            return self.start
        return ("docker", "compose", "up", "-d", self.name)


# ---------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------

class ServiceManager:
    """
    Brings services up on demand, at most once per run.

    `ensure` is idempotent: a service already marked live, or already
    answering its probe, is left alone. Readiness polling backs off
    exponentially and gives up after `max_attempts` probes or `timeout`
    seconds, whichever comes first.
    """

    def __init__(
        self,
        services: Iterable[Service],
        *,
        launch: Launcher,
        repo_root: str | Path = ".",
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        console: Optional[Console] = None,
    ):
        self._services: Dict[str, Service] = {}
        for svc in services:
            if svc.name in self._services:
                raise ConfigurationError(f"Duplicate service name: {svc.name}")
            self._services[svc.name] = svc

        self._launch = launch
        self._repo_root = Path(repo_root).resolve()
        self._sleep = sleep
        self._clock = clock
        self._console = console

        self._live: Set[str] = set()
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self.started: List[str] = []  # names whose start command was run

    @property
    def console(self) -> Console:
        return self._console or get_console()

    def names(self) -> List[str]:
        return list(self._services)

    def get(self, name: str) -> Service:
        try:
            return self._services[name]
        except KeyError:
            raise UnknownService(name) from None

    def is_ready(self, name: str) -> bool:
        svc = self.get(name)
        return svc.probe.check(self._launch)

    def is_live(self, name: str) -> bool:
        return name in self._live

    def ensure(self, names: Iterable[str], context: RunContext) -> None:
        for name in names:
            self._ensure_one(self.get(name), context)

    # ------------------------------------------------------------------

    def _lock_for(self, name: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(name, threading.Lock())

    def _ensure_one(self, svc: Service, context: RunContext) -> None:
        # one lock per service: two tasks needing it concurrently start it once
        with self._lock_for(svc.name):
            if svc.name in self._live:
                return

            if svc.probe.check(self._launch):
                self.console.print_debug(f"service {svc.name}: already running")
                self._live.add(svc.name)
                return

            self.console.print_service_starting(svc.name, svc.probe.describe())
            cwd = (self._repo_root / (svc.cwd or ".")).resolve()
            env = {**os.environ, **context.env_vars()}
            proc = self._launch(svc.start_command, cwd=cwd, env=env, timeout=svc.timeout)
            if not proc.ok:
                raise ServiceUnavailable(
                    svc.name,
                    attempts=0,
                    waited=proc.elapsed,
                    reason=f"start command failed (exit={proc.exit_code}): {proc.stderr.strip()[-500:]}",
                )
            self.started.append(svc.name)

            waited = self._wait_ready(svc)
            self.console.print_service_ready(svc.name, waited)
            self._live.add(svc.name)

    def _wait_ready(self, svc: Service) -> float:
        start = self._clock()
        delay = svc.interval
        attempts = 0

        while True:
            attempts += 1
            if svc.probe.check(self._launch):
                return self._clock() - start

            waited = self._clock() - start
            if attempts >= svc.max_attempts or waited + delay > svc.timeout:
                raise ServiceUnavailable(svc.name, attempts=attempts, waited=waited, reason=svc.probe.describe())

            self._sleep(delay)
            delay = min(delay * 2, svc.max_interval)
