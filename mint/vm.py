"""VM discovery by owner and name tags."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from mint.aws.api import DescribeInstancesAPI
from mint.constants import InstanceState
from mint.exceptions import StateConflictError
from mint.tags import Component, Tag, filter_by_owner, filter_by_owner_and_vm, tag_filter, tags_to_dict

_LIVE_STATES = (
    InstanceState.PENDING,
    InstanceState.RUNNING,
    InstanceState.STOPPING,
    InstanceState.STOPPED,
)


@dataclass(frozen=True, slots=True)
class VM:
    """A mint-managed EC2 instance as seen through its tags."""

    id: str
    name: str
    owner: str
    owner_arn: str
    state: str
    availability_zone: str
    public_ip: str
    instance_type: str
    bootstrap_status: str
    health: str
    launch_time: datetime | None = None
    tags: dict[str, str] = field(default_factory=dict)

    @property
    def is_running(self) -> bool:
        return self.state == InstanceState.RUNNING


def parse_instance(instance: dict[str, Any]) -> VM:
    tags = tags_to_dict(instance.get("Tags"))
    return VM(
        id=instance["InstanceId"],
        name=tags.get(Tag.VM, ""),
        owner=tags.get(Tag.OWNER, ""),
        owner_arn=tags.get(Tag.OWNER_ARN, ""),
        state=instance.get("State", {}).get("Name", ""),
        availability_zone=instance.get("Placement", {}).get("AvailabilityZone", ""),
        public_ip=instance.get("PublicIpAddress", ""),
        instance_type=instance.get("InstanceType", ""),
        bootstrap_status=tags.get(Tag.BOOTSTRAP, ""),
        health=tags.get(Tag.HEALTH, ""),
        launch_time=instance.get("LaunchTime"),
        tags=tags,
    )


async def _describe(api: DescribeInstancesAPI, filters: list[dict[str, Any]]) -> list[VM]:
    filters = [
        *filters,
        tag_filter(Tag.COMPONENT, Component.INSTANCE),
        {"Name": "instance-state-name", "Values": [str(s) for s in _LIVE_STATES]},
    ]
    vms: list[VM] = []
    kwargs: dict[str, Any] = {"Filters": filters}
    while True:
        response = await api.describe_instances(**kwargs)
        for reservation in response.get("Reservations", []):
            for instance in reservation.get("Instances", []):
                vm = parse_instance(instance)
                if vm.state in _LIVE_STATES:
                    vms.append(vm)
        token = response.get("NextToken")
        if not token:
            return vms
        kwargs["NextToken"] = token


async def find_vm(api: DescribeInstancesAPI, owner: str, name: str) -> VM | None:
    """Find the live VM tagged with owner and name.

    Returns:
        The VM, or None when nothing matches.

    Raises:
        StateConflictError: If more than one live instance carries the tags.
    """
    vms = await _describe(api, filter_by_owner_and_vm(owner, name))
    if not vms:
        return None
    if len(vms) > 1:
        ids = ", ".join(vm.id for vm in vms)
        raise StateConflictError(
            f'multiple instances found for VM "{name}" (owner {owner}): {ids}'
        )
    return vms[0]


async def list_vms(api: DescribeInstancesAPI, owner: str) -> list[VM]:
    """All live VMs of owner, sorted by name."""
    return sorted(await _describe(api, filter_by_owner(owner)), key=lambda vm: vm.name)
