"""Trust-on-first-use verification in front of the remote runner.

The first fingerprint seen for a VM name is pinned. A later mismatch is
refused before any command reaches the host, and is never resolved
automatically. One TofuRunner lives for one outer operation and scans
each (host, port) at most once during that lifetime.
"""

from __future__ import annotations

import functools
from collections.abc import Callable, Sequence

from loguru import logger

from mint.exceptions import HostKeyChangedError, ScanFailedError, TrustViolationError
from mint.remote.hostkeys import HostKeyScanner, HostKeyStore, asyncssh_scan
from mint.remote.runner import Runner


class TofuRunner:
    """Runner decorator that verifies the host key before delegating.

    Args:
        inner: The unverified runner to delegate to.
        store: Persistent pin store.
        vm_name: VM whose pin is checked.
        scanner: Host-key scanner.
    """

    def __init__(
        self,
        inner: Runner,
        store: HostKeyStore,
        vm_name: str,
        scanner: HostKeyScanner = asyncssh_scan,
    ) -> None:
        self._inner = inner
        self._store = store
        self._vm_name = vm_name
        self._scanner = scanner
        self._verified: dict[tuple[str, int], Callable[[], TrustViolationError] | None] = {}
        self._log = logger.bind(component="tofu")

    async def verify(self, host: str, port: int) -> None:
        """Scan once per (host, port) and check the pin.

        Raises:
            ScanFailedError: If the host key could not be scanned.
            HostKeyChangedError: If the key differs from the pinned one.
        """
        endpoint = (host, port)
        if endpoint not in self._verified:
            self._verified[endpoint] = await self._check(host, port)
        if (failure := self._verified[endpoint]) is not None:
            raise failure()

    async def _check(self, host: str, port: int) -> Callable[[], TrustViolationError] | None:
        # Failures are cached as factories; each raise builds a new exception.
        try:
            scanned = await self._scanner(host, port)
        except ScanFailedError as e:
            self._log.warning("Host key scan failed for {}: {}", self._vm_name, e)
            return functools.partial(ScanFailedError, str(e))

        matched, existing = self._store.check_key(self._vm_name, scanned.fingerprint)
        if existing is None:
            self._store.record_key(self._vm_name, scanned.fingerprint)
            self._log.info("Trusting new host key for {}: {}", self._vm_name, scanned.fingerprint)
            return None
        if not matched:
            self._log.warning("Host key mismatch for {}", self._vm_name)
            return functools.partial(HostKeyChangedError, self._vm_name, existing, scanned.fingerprint)
        return None

    async def run(
        self,
        instance_id: str,
        zone: str,
        host: str,
        port: int,
        user: str,
        command: Sequence[str],
    ) -> str:
        await self.verify(host, port)
        return await self._inner.run(instance_id, zone, host, port, user, command)
