"""Tag schema shared by every mint-managed AWS resource.

Tags are the only durable state mint keeps in the cloud: ownership,
component role, bootstrap progress and the pending-attach crash marker
all live on the resources themselves.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any


class Tag(StrEnum):
    """AWS resource tag keys used by mint."""

    MINT = "mint"
    COMPONENT = "mint:component"
    VM = "mint:vm"
    OWNER = "mint:owner"
    OWNER_ARN = "mint:owner-arn"
    BOOTSTRAP = "mint:bootstrap"
    BOOTSTRAP_PHASE = "mint:bootstrap-phase"
    HEALTH = "mint:health"
    NAME = "Name"
    ROOT_VOLUME_GB = "mint:root-volume-gb"
    PROJECT_VOLUME_GB = "mint:project-volume-gb"
    PENDING_ATTACH = "mint:pending-attach"


class Component(StrEnum):
    """Values of the mint:component tag."""

    INSTANCE = "instance"
    VOLUME = "volume"
    SECURITY_GROUP = "security-group"
    ELASTIC_IP = "elastic-ip"
    PROJECT_VOLUME = "project-volume"
    ADMIN = "admin"
    EFS = "efs"


class BootstrapStatus(StrEnum):
    """Values of the mint:bootstrap tag."""

    PENDING = "pending"
    COMPLETE = "complete"
    FAILED = "failed"


type Filter = dict[str, Any]


class TagBuilder:
    """Fluent builder for the tag set of a mint resource.

    The base tags (managed marker, owner, owner ARN, VM name and the
    human-readable Name) are always emitted.

    Example:
        >>> tags = (
        ...     TagBuilder("alice", "arn:aws:iam::1:user/alice", "default")
        ...     .component(Component.INSTANCE)
        ...     .bootstrap(BootstrapStatus.PENDING)
        ...     .build()
        ... )
    """

    def __init__(self, owner: str, owner_arn: str, vm_name: str) -> None:
        self._owner = owner
        self._owner_arn = owner_arn
        self._vm_name = vm_name
        self._extra: dict[str, str] = {}

    def component(self, component: Component) -> TagBuilder:
        self._extra[Tag.COMPONENT] = str(component)
        return self

    def bootstrap(self, status: BootstrapStatus) -> TagBuilder:
        self._extra[Tag.BOOTSTRAP] = str(status)
        return self

    def with_tag(self, key: str, value: str) -> TagBuilder:
        self._extra[str(key)] = value
        return self

    def build(self) -> list[dict[str, str]]:
        """Return the tags in the boto `[{"Key": ..., "Value": ...}]` shape."""
        base = {
            Tag.MINT: "true",
            Tag.OWNER: self._owner,
            Tag.OWNER_ARN: self._owner_arn,
            Tag.VM: self._vm_name,
            Tag.NAME: f"mint/{self._owner}/{self._vm_name}",
        }
        merged = {str(k): v for k, v in base.items()} | self._extra
        return [{"Key": key, "Value": value} for key, value in merged.items()]


def tag_filter(key: str, *values: str) -> Filter:
    return {"Name": f"tag:{key}", "Values": [str(v) for v in values]}


def filter_by_owner(owner: str) -> list[Filter]:
    """Filters matching every mint resource belonging to owner."""
    return [tag_filter(Tag.MINT, "true"), tag_filter(Tag.OWNER, owner)]


def filter_by_owner_and_vm(owner: str, vm_name: str) -> list[Filter]:
    """Filters matching the resources of one VM of owner."""
    return [*filter_by_owner(owner), tag_filter(Tag.VM, vm_name)]


def tags_to_dict(tags: list[dict[str, str]] | None) -> dict[str, str]:
    return {t["Key"]: t["Value"] for t in tags or [] if "Key" in t}
