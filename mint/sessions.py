"""Active session detection.

A fixed battery of read-only probes decides whether a VM is in use:

1. attached tmux clients (primary)
2. logged-in sessions from `who` (primary)
3. a named process running inside any Docker container
4. a manual idle-timeout extension marker in the future

Errors on the primary probes propagate; errors on the others only log a
warning. The summary is empty if and only if nothing is active.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime

from loguru import logger

from mint.constants import DEFAULT_SESSION_PROCESS, IDLE_EXTEND_MARKER
from mint.exceptions import MintError, RemoteCommandError
from mint.remote.commands import read_file_tolerant, validate_content
from mint.remote.runner import Runner
from mint.vm import VM

type Execute = Callable[[Sequence[str]], Awaitable[str]]
type Clock = Callable[[], datetime]

TMUX_CLIENTS = ("tmux list-clients -F '#{client_name} #{session_name}'",)
WHO = ("who",)
DOCKER_PS = ("docker ps -q",)

_TMUX_IDLE_MARKERS = ("no server running", "no sessions")


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _indent(block: str) -> str:
    return "\n    ".join(block.splitlines())


@dataclass(slots=True)
class ActiveSessions:
    """What each probe found. Empty fields mean the probe saw nothing."""

    tmux_clients: str = ""
    connections: str = ""
    container_processes: str = ""
    process_name: str = DEFAULT_SESSION_PROCESS
    extended_until: datetime | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def has_activity(self) -> bool:
        return bool(
            self.tmux_clients
            or self.connections
            or self.container_processes
            or self.extended_until is not None
        )

    def summary(self) -> str:
        parts: list[str] = []
        if self.tmux_clients:
            parts.append(f"  Tmux clients:\n    {_indent(self.tmux_clients)}")
        if self.connections:
            parts.append(f"  Active connections:\n    {_indent(self.connections)}")
        if self.container_processes:
            label = self.process_name.capitalize()
            parts.append(
                f"  {label} processes in containers:\n    {_indent(self.container_processes)}"
            )
        if self.extended_until is not None:
            parts.append(f"  Manual extend active until {self.extended_until.isoformat()}")
        return "\n".join(parts)


def bind_runner(runner: Runner, vm: VM, port: int, user: str) -> Execute:
    """Fix the connection arguments of runner for one VM."""

    async def execute(command: Sequence[str]) -> str:
        return await runner.run(vm.id, vm.availability_zone, vm.public_ip, port, user, command)

    return execute


class SessionDetector:
    """Runs the session probes through an already-bound executor.

    Args:
        execute: Runs one single-element command on the VM, returns stdout.
        process_name: Process name that counts as a live container session.
        clock: Current time, timezone-aware.
    """

    def __init__(
        self,
        execute: Execute,
        *,
        process_name: str = DEFAULT_SESSION_PROCESS,
        clock: Clock = _utcnow,
    ) -> None:
        self._execute = execute
        self._process_name = process_name
        self._clock = clock
        self._log = logger.bind(component="sessions")

    async def detect(self) -> ActiveSessions:
        result = ActiveSessions(process_name=self._process_name)
        result.tmux_clients = await self._tmux()
        result.connections = (await self._execute(WHO)).strip()
        result.container_processes = await self._containers(result)
        result.extended_until = await self._extended_until(result)
        return result

    async def summary(self) -> str:
        return (await self.detect()).summary()

    async def _tmux(self) -> str:
        try:
            return (await self._execute(TMUX_CLIENTS)).strip()
        except RemoteCommandError as e:
            if any(marker in str(e) for marker in _TMUX_IDLE_MARKERS):
                return ""
            raise

    async def _containers(self, result: ActiveSessions) -> str:
        try:
            ids = (await self._execute(DOCKER_PS)).split()
        except MintError as e:
            self._warn(result, f"could not list containers: {e}")
            return ""

        matches: list[str] = []
        for container_id in ids:
            try:
                top = await self._execute(
                    (f"docker top {validate_content(container_id)} -o pid,comm",)
                )
            except MintError as e:
                self._warn(result, f"could not inspect container {container_id}: {e}")
                continue
            matches.extend(
                f"{container_id}: {line.strip()}"
                for line in top.splitlines()
                if self._process_name in line
            )
        return "\n".join(matches)

    async def _extended_until(self, result: ActiveSessions) -> datetime | None:
        try:
            raw = (await self._execute(read_file_tolerant(IDLE_EXTEND_MARKER))).strip()
        except MintError as e:
            self._warn(result, f"could not read idle extension marker: {e}")
            return None
        if not raw:
            return None
        try:
            until = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            self._warn(result, f"ignoring malformed idle extension timestamp {raw!r}")
            return None
        if until.tzinfo is None:
            until = until.replace(tzinfo=UTC)
        return until if self._clock() < until else None

    def _warn(self, result: ActiveSessions, message: str) -> None:
        self._log.warning(message)
        result.warnings.append(message)
