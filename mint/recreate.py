"""In-place VM recreation.

Destroys the VM's instance and provisions a replacement that inherits the
project volume, the Elastic IP and the tags of the original. There is no
rollback: the project volume carries a mint:pending-attach tag from just
before the first destructive call until it is attached to the new
instance, so an interrupted run can be found and finished later (see
mint.recovery).

Sequence:
    discover -> guard running -> detect sessions -> confirm ->
    query project volume -> tag pending-attach -> stop -> detach ->
    terminate -> launch -> wait running -> wait volume -> attach ->
    untag -> reassociate EIP -> forget host key -> poll bootstrap
"""

from __future__ import annotations

import asyncio
import base64
import contextlib
from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass, field
from typing import Any, TextIO

from botocore.exceptions import BotoCoreError, ClientError
from loguru import logger
from rich.console import Console

from mint.aws.ami import resolve_ami
from mint.aws.api import (
    AssociateAddressAPI,
    AttachVolumeAPI,
    CreateTagsAPI,
    DeleteTagsAPI,
    DescribeAddressesAPI,
    DescribeFileSystemsAPI,
    DescribeImagesAPI,
    DescribeInstancesAPI,
    DescribeSecurityGroupsAPI,
    DescribeSubnetsAPI,
    DescribeVolumesAPI,
    DetachVolumeAPI,
    DisassociateAddressAPI,
    RunInstancesAPI,
    StopInstancesAPI,
    TerminateInstancesAPI,
)
from mint.aws.waiters import Sleep, wait_instance_running, wait_volume_available
from mint.bootstrap.stub import MAX_USER_DATA_BYTES, render_stub, verify_digest
from mint.config import MintConfig
from mint.constants import (
    DEFAULT_INSTANCE_TYPE,
    PROJECT_DEVICE,
    ROOT_VOLUME_GB,
    WAITER_INTERVAL,
    WAITER_TIMEOUT,
)
from mint.exceptions import (
    ConfigurationError,
    HostKeyChangedError,
    MintError,
    NotFoundError,
    SessionsActiveError,
    StateConflictError,
    StepFailure,
    UnconfirmedError,
)
from mint.remote.runner import Runner
from mint.sessions import SessionDetector, bind_runner
from mint.tags import BootstrapStatus, Component, Tag, TagBuilder, filter_by_owner_and_vm, tag_filter
from mint.vm import VM, find_vm

type PollBootstrap = Callable[[str, str, str], Awaitable[None]]
type ResolveAMI = Callable[[DescribeImagesAPI], Awaitable[str]]

TOTAL_STEPS = 9


@dataclass
class RecreateDeps:
    """Everything the orchestrator talks to.

    Each AWS capability is its own field so tests can fake exactly the
    verbs a scenario exercises. In production every EC2 field is the
    same aioboto3 client.
    """

    owner: str
    owner_arn: str
    describe_instances: DescribeInstancesAPI
    stop_instances: StopInstancesAPI
    terminate_instances: TerminateInstancesAPI
    run_instances: RunInstancesAPI
    describe_volumes: DescribeVolumesAPI
    detach_volume: DetachVolumeAPI
    attach_volume: AttachVolumeAPI
    create_tags: CreateTagsAPI
    delete_tags: DeleteTagsAPI
    describe_addresses: DescribeAddressesAPI
    associate_address: AssociateAddressAPI
    disassociate_address: DisassociateAddressAPI
    describe_subnets: DescribeSubnetsAPI
    describe_security_groups: DescribeSecurityGroupsAPI
    describe_images: DescribeImagesAPI
    runner: Runner
    remove_host_key: Callable[[str], None]
    poll_bootstrap: PollBootstrap
    bootstrap_url: str
    config: MintConfig = field(default_factory=MintConfig)
    describe_file_systems: DescribeFileSystemsAPI | None = None
    resolve_ami: ResolveAMI = resolve_ami
    wait_timeout: float = WAITER_TIMEOUT
    wait_interval: float = WAITER_INTERVAL
    sleep: Sleep = asyncio.sleep


_AWS_ERRORS: tuple[type[Exception], ...] = (ClientError, BotoCoreError)
# Waiters and the bootstrap poll fail with MintErrors (timeouts, terminal states).
_WAIT_ERRORS: tuple[type[Exception], ...] = (*_AWS_ERRORS, MintError)


@contextlib.contextmanager
def _step(name: str, *, wrap: tuple[type[Exception], ...] = _AWS_ERRORS) -> Iterator[None]:
    """Attach the step name to failures of the given types."""
    try:
        yield
    except wrap as e:
        logger.bind(component="recreate").error("{} failed: {}", name, e)
        raise StepFailure(name, e) from e


def _first(response: dict[str, Any], key: str) -> dict[str, Any] | None:
    items = response.get(key) or []
    return items[0] if items else None


class Recreator:
    """Drives one recreate run.

    Args:
        deps: AWS capabilities and collaborators.
        console: Where progress lines and the confirmation prompt go.
        stdin: Where the confirmation is read from.

    Example:
        >>> new_id = await Recreator(deps, Console(), sys.stdin).run("default")
    """

    def __init__(self, deps: RecreateDeps, console: Console, stdin: TextIO) -> None:
        self._deps = deps
        self._console = console
        self._stdin = stdin
        self._log = logger.bind(component="recreate")

    def _say(self, message: str) -> None:
        self._console.print(message, markup=False, highlight=False, soft_wrap=True)

    def _progress(self, n: int, message: str) -> None:
        self._say(f"Step {n}/{TOTAL_STEPS}: {message}")

    # -------------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------------

    async def run(self, vm_name: str, *, force: bool = False, yes: bool = False) -> str:
        """Recreate vm_name and return the new instance ID.

        Raises:
            NotFoundError: If the VM or its project volume does not exist.
            StateConflictError: If the VM is not running.
            SessionsActiveError: If the VM is busy and force is False.
            UnconfirmedError: If the confirmation does not match.
            StepFailure: If an AWS call, a waiter or the bootstrap poll fails
                once the destructive sequence has started.
            ConfigurationError: If the user-data is invalid or too large.
        """
        deps = self._deps
        self._say(f'Discovering VM "{vm_name}" for owner "{deps.owner}"...')
        vm = await find_vm(deps.describe_instances, deps.owner, vm_name)
        if vm is None:
            raise NotFoundError(f'no VM "{vm_name}" found; run mint up first to create one')
        if not vm.is_running:
            raise StateConflictError(
                f'VM "{vm_name}" is {vm.state}; it must be running to recreate '
                "(session detection needs SSH access)"
            )

        digest = verify_digest(deps.config.bootstrap_sha256)

        summary = await self._detect_sessions(vm)
        if summary and not force:
            raise SessionsActiveError(vm_name, summary)
        if summary:
            self._say(f'Warning: proceeding despite active sessions on VM "{vm_name}":\n{summary}\n')

        self._say(f'This will destroy and re-provision VM "{vm_name}" ({vm.id}).')
        self._say(f"  - Instance {vm.id} will be terminated")
        self._say("  - A new VM will be provisioned with the same configuration")
        self._say("  - The project volume and Elastic IP are carried over")
        if not yes:
            await self._confirm(vm_name)

        return await self._execute(vm, vm_name, digest)

    async def _detect_sessions(self, vm: VM) -> str:
        deps = self._deps
        self._say(f'Checking for active sessions on VM "{vm.name}"...')
        detector = SessionDetector(
            bind_runner(deps.runner, vm, deps.config.ssh_port, deps.config.ssh_user),
            process_name=deps.config.session_process_name,
        )
        try:
            return await detector.summary()
        except HostKeyChangedError:
            raise
        except MintError as e:
            self._log.warning("Session detection failed on {}: {}", vm.id, e)
            self._say(f"Warning: could not detect active sessions: {e}")
            return ""

    async def _confirm(self, vm_name: str) -> None:
        self._console.print(
            f'\nType the VM name "{vm_name}" to confirm: ', end="", markup=False, highlight=False
        )
        line = await asyncio.to_thread(self._stdin.readline)
        if not line:
            raise UnconfirmedError("no confirmation input received; recreate aborted")
        answer = line.strip()
        if answer != vm_name:
            raise UnconfirmedError(
                f'confirmation "{answer}" does not match VM name "{vm_name}"; recreate aborted'
            )

    # -------------------------------------------------------------------------
    # Destructive sequence
    # -------------------------------------------------------------------------

    async def _execute(self, vm: VM, vm_name: str, digest: str) -> str:
        deps = self._deps

        self._progress(1, "Querying project volume...")
        volume_id, volume_az = await self._find_project_volume(vm_name)
        self._say(f"  Found project volume {volume_id} in {volume_az}")

        self._progress(2, "Tagging project volume with pending-attach...")
        with _step("tag project volume pending-attach"):
            await deps.create_tags.create_tags(
                Resources=[volume_id],
                Tags=[{"Key": Tag.PENDING_ATTACH.value, "Value": "true"}],
            )

        self._progress(3, f"Stopping instance {vm.id}...")
        with _step(f"stop instance {vm.id}"):
            await deps.stop_instances.stop_instances(InstanceIds=[vm.id])

        self._progress(4, f"Detaching project volume {volume_id}...")
        with _step(f"detach project volume {volume_id}"):
            await deps.detach_volume.detach_volume(
                VolumeId=volume_id, InstanceId=vm.id, Force=True
            )

        self._progress(5, f"Terminating instance {vm.id}...")
        with _step(f"terminate instance {vm.id}"):
            await deps.terminate_instances.terminate_instances(InstanceIds=[vm.id])

        self._progress(6, f"Launching new instance in {volume_az}...")
        new_id = await self._launch(vm, vm_name, volume_az, digest)
        self._say(f"  Launched new instance {new_id}")

        self._say(f"  Waiting for instance {new_id} to be running...")
        with _step(f"wait for instance {new_id}", wrap=_WAIT_ERRORS):
            await wait_instance_running(
                deps.describe_instances,
                new_id,
                timeout=deps.wait_timeout,
                interval=deps.wait_interval,
                sleep=deps.sleep,
            )
        self._say(f"  Waiting for volume {volume_id} to become available...")
        with _step(f"wait for volume {volume_id}", wrap=_WAIT_ERRORS):
            await wait_volume_available(
                deps.describe_volumes,
                volume_id,
                timeout=deps.wait_timeout,
                interval=deps.wait_interval,
                sleep=deps.sleep,
            )

        self._progress(7, f"Attaching project volume {volume_id} to {new_id}...")
        with _step(f"attach project volume {volume_id} to {new_id}"):
            await deps.attach_volume.attach_volume(
                VolumeId=volume_id, InstanceId=new_id, Device=PROJECT_DEVICE
            )
        await self._clear_pending_attach(volume_id)

        self._progress(8, "Reassociating Elastic IP...")
        await self._reassociate_address(vm_name, new_id)

        deps.remove_host_key(vm_name)

        self._progress(9, "Waiting for bootstrap to complete...")
        with _step("bootstrap polling", wrap=_WAIT_ERRORS):
            await deps.poll_bootstrap(deps.owner, vm_name, new_id)

        self._say(f"Recreate complete. New instance: {new_id}")
        self._log.info("Recreated {}: {} -> {}", vm_name, vm.id, new_id)
        return new_id

    async def _find_project_volume(self, vm_name: str) -> tuple[str, str]:
        deps = self._deps
        with _step("query project volume"):
            response = await deps.describe_volumes.describe_volumes(
                Filters=[
                    *filter_by_owner_and_vm(deps.owner, vm_name),
                    tag_filter(Tag.COMPONENT, Component.PROJECT_VOLUME),
                ]
            )
        volume = _first(response, "Volumes")
        if volume is None:
            raise NotFoundError(
                f'no project volume found for owner "{deps.owner}", vm "{vm_name}"'
            )
        return volume["VolumeId"], volume["AvailabilityZone"]

    async def _clear_pending_attach(self, volume_id: str) -> None:
        try:
            await self._deps.delete_tags.delete_tags(
                Resources=[volume_id], Tags=[{"Key": Tag.PENDING_ATTACH.value}]
            )
        except ClientError as e:
            self._log.warning("Could not remove pending-attach tag from {}: {}", volume_id, e)
            self._say(f"Warning: could not remove pending-attach tag from {volume_id}: {e}")

    async def _reassociate_address(self, vm_name: str, instance_id: str) -> None:
        deps = self._deps
        with _step("discover Elastic IP"):
            response = await deps.describe_addresses.describe_addresses(
                Filters=[
                    *filter_by_owner_and_vm(deps.owner, vm_name),
                    tag_filter(Tag.COMPONENT, Component.ELASTIC_IP),
                ]
            )
        address = _first(response, "Addresses")
        if address is None:
            self._say(
                f'  Warning: no Elastic IP found for VM "{vm_name}"; using auto-assigned public IP'
            )
            return

        allocation_id = address["AllocationId"]
        self._say(
            f"  Found Elastic IP {address.get('PublicIp', '?')} ({allocation_id}), "
            f"reassociating with {instance_id}"
        )
        if association_id := address.get("AssociationId"):
            self._say(f"  Disassociating stale association {association_id}...")
            with _step(f"disassociate Elastic IP {allocation_id}"):
                await deps.disassociate_address.disassociate_address(AssociationId=association_id)
        with _step(f"associate Elastic IP {allocation_id} with {instance_id}"):
            await deps.associate_address.associate_address(
                AllocationId=allocation_id, InstanceId=instance_id
            )

    # -------------------------------------------------------------------------
    # Launch
    # -------------------------------------------------------------------------

    async def _launch(self, original: VM, vm_name: str, zone: str, digest: str) -> str:
        deps = self._deps
        config = deps.config

        with _step("resolve AMI"):
            image_id = await deps.resolve_ami(deps.describe_images)
        with _step("find user security group"):
            user_sg = await self._find_security_group(
                [tag_filter(Tag.MINT, "true"), tag_filter(Tag.OWNER, deps.owner),
                 tag_filter(Tag.COMPONENT, Component.SECURITY_GROUP)],
                f"no security group found for owner {deps.owner}",
            )
        with _step("find admin security group"):
            admin_sg = await self._find_security_group(
                [tag_filter(Tag.MINT, "true"), tag_filter(Tag.COMPONENT, Component.ADMIN)],
                "no admin security group found; run mint init first",
            )
        with _step(f"find subnet in {zone}"):
            subnet = _first(
                await deps.describe_subnets.describe_subnets(
                    Filters=[
                        {"Name": "default-for-az", "Values": ["true"]},
                        {"Name": "availability-zone", "Values": [zone]},
                    ]
                ),
                "Subnets",
            )
        if subnet is None:
            raise NotFoundError(f"no default subnet found in {zone}")

        with _step("discover EFS"):
            storage_id = await self._find_file_system()

        user_data = render_stub(
            digest,
            deps.bootstrap_url,
            storage_id,
            PROJECT_DEVICE,
            vm_name,
            config.idle_timeout_minutes,
            config.user_bootstrap_b64(),
        )
        if len(user_data) > MAX_USER_DATA_BYTES:
            raise ConfigurationError(
                f"user-bootstrap.sh too large: rendered user-data is {len(user_data)} bytes, "
                f"max is {MAX_USER_DATA_BYTES} ({len(user_data) - MAX_USER_DATA_BYTES} bytes over limit)"
            )

        tags = (
            TagBuilder(deps.owner, deps.owner_arn, vm_name)
            .component(Component.INSTANCE)
            .bootstrap(BootstrapStatus.PENDING)
            .with_tag(Tag.ROOT_VOLUME_GB, str(ROOT_VOLUME_GB))
            .with_tag(Tag.PROJECT_VOLUME_GB, str(config.volume_size_gb))
            .build()
        )
        with _step("run instances"):
            response = await deps.run_instances.run_instances(
                ImageId=image_id,
                InstanceType=config.instance_type or original.instance_type or DEFAULT_INSTANCE_TYPE,
                MinCount=1,
                MaxCount=1,
                SubnetId=subnet["SubnetId"],
                SecurityGroupIds=[user_sg, admin_sg],
                UserData=base64.b64encode(user_data).decode("ascii"),
                IamInstanceProfile={"Name": config.instance_profile},
                TagSpecifications=[{"ResourceType": "instance", "Tags": tags}],
            )
        instance = _first(response, "Instances")
        if instance is None:
            raise StepFailure("run instances", "no instances returned")
        return instance["InstanceId"]

    async def _find_security_group(self, filters: list[dict[str, Any]], missing: str) -> str:
        api = self._deps.describe_security_groups
        response = await api.describe_security_groups(Filters=filters)
        group = _first(response, "SecurityGroups")
        if group is None:
            raise NotFoundError(missing)
        return group["GroupId"]

    async def _find_file_system(self) -> str:
        api = self._deps.describe_file_systems
        if api is None:
            return ""
        response = await api.describe_file_systems()
        for fs in response.get("FileSystems", []):
            tags = {t.get("Key"): t.get("Value") for t in fs.get("Tags", [])}
            if tags.get(Tag.MINT) == "true" and tags.get(Tag.COMPONENT) == Component.ADMIN:
                return fs["FileSystemId"]
        raise NotFoundError("no admin EFS found; run mint init first")
