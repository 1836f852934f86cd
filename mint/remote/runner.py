"""Unverified remote command execution over SSH.

Service class pattern: the credential issuer and the raw transport are
bound at construction, and every run() pushes a fresh ephemeral key
before connecting.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

import asyncssh
from loguru import logger

from mint.constants import SSH_CONNECT_TIMEOUT
from mint.exceptions import ConfigurationError, RemoteCommandError, TransportError
from mint.remote.credentials import CredentialIssuer


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Captured output of one remote command."""

    exit_status: int
    stdout: str
    stderr: str


class Transport(Protocol):
    """Raw SSH execution of one already-built script."""

    async def __call__(
        self, host: str, port: int, user: str, key_path: str, command: str
    ) -> CommandResult: ...


class Runner(Protocol):
    """Anything that runs a single-element command on a VM and returns stdout."""

    async def run(
        self,
        instance_id: str,
        zone: str,
        host: str,
        port: int,
        user: str,
        command: Sequence[str],
    ) -> str: ...


async def asyncssh_transport(
    host: str, port: int, user: str, key_path: str, command: str
) -> CommandResult:
    """Connect with asyncssh, run command once and disconnect."""
    try:
        conn = await asyncssh.connect(
            host,
            port=port,
            username=user,
            client_keys=[key_path],
            known_hosts=None,  # pinned separately by the TOFU runner
            connect_timeout=SSH_CONNECT_TIMEOUT,
        )
    except (OSError, asyncssh.Error, TimeoutError) as e:
        raise TransportError(f"ssh connection to {host}:{port} failed: {e}") from e

    try:
        result = await conn.run(command, check=False)
    except (OSError, asyncssh.Error) as e:
        raise TransportError(f"ssh session to {host}:{port} failed: {e}") from e
    finally:
        conn.close()
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(conn.wait_closed(), timeout=5.0)

    return CommandResult(
        exit_status=result.exit_status or 0,
        stdout=str(result.stdout or ""),
        stderr=str(result.stderr or ""),
    )


class RemoteRunner:
    """Push key, run command, return stdout.

    Example:
        >>> runner = RemoteRunner(CredentialIssuer(instance_connect))
        >>> out = await runner.run("i-0abc", "us-east-1a", "1.2.3.4", 41122,
        ...                        "ubuntu", ("who",))
    """

    def __init__(self, issuer: CredentialIssuer, transport: Transport = asyncssh_transport) -> None:
        self._issuer = issuer
        self._transport = transport
        self._log = logger.bind(component="ssh")

    async def run(
        self,
        instance_id: str,
        zone: str,
        host: str,
        port: int,
        user: str,
        command: Sequence[str],
    ) -> str:
        """Run a single-element command on the instance.

        Raises:
            ConfigurationError: If command is not exactly one element.
            KeyPushRejectedError: If the ephemeral key push fails.
            TransportError: If the connection fails.
            RemoteCommandError: If the command exits non-zero.
        """
        if len(command) != 1:
            raise ConfigurationError(
                f"remote command must be exactly one element, got {len(command)}"
            )

        async with self._issuer.session(instance_id, zone, user) as credential:
            self._log.debug("Running on {}:{}: {}", host, port, command[0])
            result = await self._transport(
                host, port, user, str(credential.private_key_path), command[0]
            )

        if result.exit_status != 0:
            raise RemoteCommandError(result.exit_status, result.stderr)
        return result.stdout
