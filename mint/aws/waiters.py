"""Bounded polling waiters for EC2 state transitions.

These are the only automatic retries in mint. A waiter raises
WaitTimeoutError when its budget runs out and StateConflictError when the
resource lands in a state it can never leave for the desired one.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from loguru import logger

from mint.aws.api import DescribeInstancesAPI, DescribeVolumesAPI
from mint.constants import WAITER_INTERVAL, WAITER_TIMEOUT, InstanceState, VolumeState
from mint.exceptions import StateConflictError, WaitTimeoutError

type Sleep = Callable[[float], Awaitable[None]]


async def wait_for_ready[T](
    poll_fn: Callable[[], Awaitable[T | None]],
    ready_check: Callable[[T], bool],
    *,
    terminal_check: Callable[[T], bool] | None = None,
    timeout: float = WAITER_TIMEOUT,
    interval: float = WAITER_INTERVAL,
    description: str = "resource",
    sleep: Sleep = asyncio.sleep,
) -> T:
    """Poll until poll_fn returns something that passes ready_check.

    Args:
        poll_fn: Async function returning the current state, or None if
            the resource is not visible yet.
        ready_check: Returns True when the resource is ready.
        terminal_check: Returns True when the resource can no longer
            become ready.
        timeout: Maximum time to wait in seconds.
        interval: Time between polls in seconds.
        description: Used in error messages.
        sleep: Sleep function, replaced in tests.

    Raises:
        WaitTimeoutError: If timeout is exceeded.
        StateConflictError: If the resource reaches a terminal state.
    """
    loop = asyncio.get_running_loop()
    start = loop.time()
    waited = 0.0

    while True:
        result = await poll_fn()

        if result is not None:
            if ready_check(result):
                return result
            if terminal_check is not None and terminal_check(result):
                raise StateConflictError(f"{description} reached terminal state: {result}")

        if max(loop.time() - start, waited) >= timeout:
            raise WaitTimeoutError(f"timed out waiting for {description} after {timeout:.0f}s")

        await sleep(interval)
        waited += interval


async def wait_instance_running(
    api: DescribeInstancesAPI,
    instance_id: str,
    *,
    timeout: float = WAITER_TIMEOUT,
    interval: float = WAITER_INTERVAL,
    sleep: Sleep = asyncio.sleep,
) -> str:
    """Wait for instance_id to reach running. Returns the final state."""

    async def poll() -> str | None:
        response = await api.describe_instances(InstanceIds=[instance_id])
        for reservation in response.get("Reservations", []):
            for instance in reservation.get("Instances", []):
                return instance.get("State", {}).get("Name")
        return None

    state = await wait_for_ready(
        poll,
        lambda s: s == InstanceState.RUNNING,
        terminal_check=lambda s: s in (
            InstanceState.SHUTTING_DOWN,
            InstanceState.TERMINATED,
            InstanceState.STOPPING,
            InstanceState.STOPPED,
        ),
        timeout=timeout,
        interval=interval,
        description=f"instance {instance_id} to be running",
        sleep=sleep,
    )
    logger.bind(component="waiters").debug("Instance {} is running", instance_id)
    return state


async def wait_volume_available(
    api: DescribeVolumesAPI,
    volume_id: str,
    *,
    timeout: float = WAITER_TIMEOUT,
    interval: float = WAITER_INTERVAL,
    sleep: Sleep = asyncio.sleep,
) -> str:
    """Wait for volume_id to reach available. Returns the final state."""

    async def poll() -> str | None:
        response = await api.describe_volumes(VolumeIds=[volume_id])
        for volume in response.get("Volumes", []):
            return volume.get("State")
        return None

    state = await wait_for_ready(
        poll,
        lambda s: s == VolumeState.AVAILABLE,
        terminal_check=lambda s: s in (VolumeState.DELETING, VolumeState.DELETED, VolumeState.ERROR),
        timeout=timeout,
        interval=interval,
        description=f"volume {volume_id} to be available",
        sleep=sleep,
    )
    logger.bind(component="waiters").debug("Volume {} is available", volume_id)
    return state
