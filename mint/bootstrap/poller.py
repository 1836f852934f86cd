"""Bootstrap completion polling.

The instance reports progress by rewriting its own mint:bootstrap tag.
BootstrapPoller reads that tag until it says complete or failed, or the
timeout expires.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass

from botocore.exceptions import ClientError
from loguru import logger
from tenacity import retry, retry_if_exception_type, stop_after_delay, wait_fixed

from mint.aws.api import DescribeInstancesAPI
from mint.constants import BOOTSTRAP_POLL_INTERVAL, BOOTSTRAP_POLL_TIMEOUT
from mint.exceptions import BootstrapFailedError, MintError, WaitTimeoutError
from mint.tags import BootstrapStatus, Tag
from mint.vm import find_vm


@dataclass(frozen=True, slots=True)
class PollConfig:
    interval: float = BOOTSTRAP_POLL_INTERVAL
    timeout: float = BOOTSTRAP_POLL_TIMEOUT


class _BootstrapPending(Exception):
    """Bootstrap has not reached a final state yet."""


class BootstrapPoller:
    """Waits for the mint:bootstrap tag of a VM to settle.

    Args:
        api: EC2 describe_instances capability.
        config: Poll interval and timeout.
        report: Receives one human-readable progress line per check.
    """

    def __init__(
        self,
        api: DescribeInstancesAPI,
        config: PollConfig | None = None,
        report: Callable[[str], None] | None = None,
    ) -> None:
        self._api = api
        self._config = config or PollConfig()
        self._report = report or (lambda _line: None)
        self._log = logger.bind(component="bootstrap")

    async def poll(self, owner: str, vm_name: str, instance_id: str) -> None:
        """Return once bootstrap is complete.

        Raises:
            BootstrapFailedError: If the instance tagged itself failed.
            WaitTimeoutError: If the timeout expires first.
        """
        loop = asyncio.get_running_loop()
        start = loop.time()

        @retry(
            stop=stop_after_delay(self._config.timeout),
            wait=wait_fixed(self._config.interval),
            retry=retry_if_exception_type(_BootstrapPending),
            reraise=True,
        )
        async def _check() -> None:
            elapsed = loop.time() - start
            try:
                vm = await find_vm(self._api, owner, vm_name)
            except (ClientError, MintError) as e:
                self._report(f"Waiting for bootstrap... {elapsed:.0f}s (check failed: {e})")
                raise _BootstrapPending from e

            status = vm.bootstrap_status if vm is not None else ""
            if status == BootstrapStatus.COMPLETE:
                return
            if status == BootstrapStatus.FAILED:
                raise BootstrapFailedError(instance_id, vm.tags.get(Tag.BOOTSTRAP_PHASE, ""))
            self._report(f"Waiting for bootstrap... {elapsed:.0f}s")
            raise _BootstrapPending

        try:
            await _check()
        except _BootstrapPending:
            raise WaitTimeoutError(
                f"bootstrap did not complete within {self._config.timeout:.0f}s; "
                f"instance {instance_id} was left running for inspection"
            ) from None

        self._log.info("Bootstrap complete on {}", instance_id)
        self._report("Bootstrap complete.")
