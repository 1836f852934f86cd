"""Persistent host-key pins and the host-key scanner.

The store is a plain text file of `vm-name=fingerprint` lines under the
config directory. The file is kept 0600 and its directory 0700.
"""

from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import asyncssh
from loguru import logger

from mint.constants import SSH_CONNECT_TIMEOUT
from mint.exceptions import ScanFailedError


class HostKeyStore:
    """One pinned fingerprint per VM name.

    Read-then-write without locking: concurrent mint invocations for the
    same VM name are not race-free.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._log = logger.bind(component="hostkeys")

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> dict[str, str]:
        if not self._path.is_file():
            return {}
        entries: dict[str, str] = {}
        for line in self._path.read_text().splitlines():
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            name, sep, fingerprint = line.partition("=")
            if sep and name:
                entries[name] = fingerprint
        return entries

    def _save(self, entries: dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
        os.chmod(self._path.parent, 0o700)
        tmp = self._path.with_suffix(".tmp")
        tmp.write_text("".join(f"{name}={fp}\n" for name, fp in sorted(entries.items())))
        os.chmod(tmp, 0o600)
        tmp.replace(self._path)

    def lookup(self, vm_name: str) -> str | None:
        return self._load().get(vm_name)

    def record_key(self, vm_name: str, fingerprint: str) -> None:
        entries = self._load()
        entries[vm_name] = fingerprint
        self._save(entries)
        self._log.debug("Pinned host key for {}: {}", vm_name, fingerprint)

    def check_key(self, vm_name: str, fingerprint: str) -> tuple[bool, str | None]:
        """Compare fingerprint against the pin for vm_name.

        Returns:
            (matched, existing). existing is None when nothing is pinned,
            in which case matched is False.
        """
        existing = self.lookup(vm_name)
        if existing is None:
            return False, None
        return existing == fingerprint, existing

    def remove_key(self, vm_name: str) -> None:
        """Forget the pin for vm_name. Absent names are not an error."""
        entries = self._load()
        if entries.pop(vm_name, None) is not None:
            self._save(entries)
            self._log.debug("Removed host key pin for {}", vm_name)


@dataclass(frozen=True, slots=True)
class ScannedKey:
    fingerprint: str
    public_key: str


class HostKeyScanner(Protocol):
    async def __call__(self, host: str, port: int) -> ScannedKey: ...


async def asyncssh_scan(host: str, port: int) -> ScannedKey:
    """Fetch the server host key without authenticating.

    Raises:
        ScanFailedError: If the host is unreachable or offers no key.
    """
    try:
        key = await asyncio.wait_for(
            asyncssh.get_server_host_key(host, port), timeout=SSH_CONNECT_TIMEOUT
        )
    except (OSError, asyncssh.Error, TimeoutError) as e:
        raise ScanFailedError(f"host key scan of {host}:{port} failed: {e}") from e
    if key is None:
        raise ScanFailedError(f"host key scan of {host}:{port} returned no key")
    return ScannedKey(
        fingerprint=key.get_fingerprint("sha256"),
        public_key=key.export_public_key().decode("ascii").strip(),
    )
