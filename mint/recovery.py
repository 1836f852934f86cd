"""Read-only scan for interrupted recreates.

A project volume that still carries mint:pending-attach=true was detached
from its old instance by a recreate that never reached the attach step.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from mint.aws.api import DescribeVolumesAPI
from mint.tags import Component, Tag, filter_by_owner, filter_by_owner_and_vm, tag_filter, tags_to_dict


@dataclass(frozen=True, slots=True)
class PendingVolume:
    volume_id: str
    vm_name: str
    availability_zone: str
    state: str
    size_gb: int
    attached_to: str = ""

    def describe(self) -> str:
        where = f"attached to {self.attached_to}" if self.attached_to else "detached"
        return (
            f"{self.vm_name}: volume {self.volume_id} ({self.size_gb} GB, {self.state}, "
            f"{where}) in {self.availability_zone}"
        )


def _parse(volume: dict[str, Any]) -> PendingVolume:
    tags = tags_to_dict(volume.get("Tags"))
    attachments = volume.get("Attachments") or []
    return PendingVolume(
        volume_id=volume["VolumeId"],
        vm_name=tags.get(Tag.VM, ""),
        availability_zone=volume.get("AvailabilityZone", ""),
        state=volume.get("State", ""),
        size_gb=int(volume.get("Size", 0)),
        attached_to=attachments[0].get("InstanceId", "") if attachments else "",
    )


async def find_incomplete_recreates(
    api: DescribeVolumesAPI, owner: str, vm_name: str | None = None
) -> list[PendingVolume]:
    """Project volumes of owner still marked pending-attach, sorted by VM name."""
    base = filter_by_owner_and_vm(owner, vm_name) if vm_name else filter_by_owner(owner)
    filters = [
        *base,
        tag_filter(Tag.COMPONENT, Component.PROJECT_VOLUME),
        tag_filter(Tag.PENDING_ATTACH, "true"),
    ]
    pending: list[PendingVolume] = []
    kwargs: dict[str, Any] = {"Filters": filters}
    while True:
        response = await api.describe_volumes(**kwargs)
        pending.extend(_parse(v) for v in response.get("Volumes", []))
        if not (token := response.get("NextToken")):
            break
        kwargs["NextToken"] = token
    return sorted(pending, key=lambda p: (p.vm_name, p.volume_id))
