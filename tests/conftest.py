from __future__ import annotations

import io
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import pytest
from botocore.exceptions import ClientError
from rich.console import Console

from mint.config import MintConfig
from mint.exceptions import RemoteCommandError

DIGEST = "a" * 64


def client_error(code: str = "InternalError", op: str = "Operation") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": f"{code} happened"}}, op)


def tag_list(tags: dict[str, str]) -> list[dict[str, str]]:
    return [{"Key": k, "Value": v} for k, v in tags.items()]


def _matches(resource: dict[str, Any], filters: list[dict[str, Any]], state: str) -> bool:
    tags = {t["Key"]: t["Value"] for t in resource.get("Tags", [])}
    for f in filters:
        name, values = f["Name"], f["Values"]
        if name.startswith("tag:"):
            if tags.get(name[4:]) not in values:
                return False
        elif name in ("instance-state-name",):
            if state not in values:
                return False
        elif name == "availability-zone":
            if resource.get("AvailabilityZone") not in values:
                return False
    return True


class FakeEC2:
    """In-memory EC2 speaking boto-shaped dicts.

    Every call is appended to `calls` as (method, kwargs). Put an exception
    in `failures[method]` to make that verb raise.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.failures: dict[str, BaseException] = {}
        self.instances: dict[str, dict[str, Any]] = {}
        self.volumes: dict[str, dict[str, Any]] = {}
        self.addresses: list[dict[str, Any]] = []
        self.security_groups: list[dict[str, Any]] = []
        self.subnets: list[dict[str, Any]] = []
        self.images: list[dict[str, Any]] = []
        self.launch_state = "running"
        self._next_id = 1

    def _record(self, method: str, kwargs: dict[str, Any]) -> None:
        self.calls.append((method, kwargs))
        if method in self.failures:
            raise self.failures[method]

    def called(self, method: str) -> list[dict[str, Any]]:
        return [kwargs for name, kwargs in self.calls if name == method]

    @property
    def methods(self) -> list[str]:
        return [name for name, _ in self.calls]

    # -- seeding --------------------------------------------------------------

    def add_instance(
        self,
        instance_id: str,
        *,
        tags: dict[str, str],
        state: str = "running",
        zone: str = "us-east-1a",
        public_ip: str = "203.0.113.10",
        instance_type: str = "m6i.xlarge",
    ) -> dict[str, Any]:
        instance = {
            "InstanceId": instance_id,
            "State": {"Name": state},
            "Placement": {"AvailabilityZone": zone},
            "PublicIpAddress": public_ip,
            "InstanceType": instance_type,
            "Tags": tag_list(tags),
        }
        self.instances[instance_id] = instance
        return instance

    def add_volume(
        self, volume_id: str, *, tags: dict[str, str], zone: str = "us-east-1b", state: str = "in-use"
    ) -> dict[str, Any]:
        volume = {
            "VolumeId": volume_id,
            "AvailabilityZone": zone,
            "State": state,
            "Size": 50,
            "Attachments": [],
            "Tags": tag_list(tags),
        }
        self.volumes[volume_id] = volume
        return volume

    def volume_tags(self, volume_id: str) -> dict[str, str]:
        return {t["Key"]: t["Value"] for t in self.volumes[volume_id]["Tags"]}

    # -- instances ------------------------------------------------------------

    async def describe_instances(self, **kwargs: Any) -> dict[str, Any]:
        self._record("describe_instances", kwargs)
        if "InstanceIds" in kwargs:
            found = [self.instances[i] for i in kwargs["InstanceIds"] if i in self.instances]
        else:
            found = [
                i for i in self.instances.values()
                if _matches(i, kwargs.get("Filters", []), i["State"]["Name"])
            ]
        return {"Reservations": [{"Instances": found}] if found else []}

    async def stop_instances(self, **kwargs: Any) -> dict[str, Any]:
        self._record("stop_instances", kwargs)
        for i in kwargs["InstanceIds"]:
            self.instances[i]["State"] = {"Name": "stopped"}
        return {}

    async def terminate_instances(self, **kwargs: Any) -> dict[str, Any]:
        self._record("terminate_instances", kwargs)
        for i in kwargs["InstanceIds"]:
            self.instances[i]["State"] = {"Name": "terminated"}
        return {}

    async def run_instances(self, **kwargs: Any) -> dict[str, Any]:
        self._record("run_instances", kwargs)
        instance_id = f"i-new{self._next_id:04d}"
        self._next_id += 1
        zone = next(
            (s["AvailabilityZone"] for s in self.subnets if s["SubnetId"] == kwargs["SubnetId"]),
            "",
        )
        instance = {
            "InstanceId": instance_id,
            "State": {"Name": self.launch_state},
            "Placement": {"AvailabilityZone": zone},
            "PublicIpAddress": "",
            "InstanceType": kwargs["InstanceType"],
            "Tags": list(kwargs["TagSpecifications"][0]["Tags"]),
        }
        self.instances[instance_id] = instance
        return {"Instances": [instance]}

    # -- volumes and tags -----------------------------------------------------

    async def describe_volumes(self, **kwargs: Any) -> dict[str, Any]:
        self._record("describe_volumes", kwargs)
        if "VolumeIds" in kwargs:
            found = [self.volumes[v] for v in kwargs["VolumeIds"] if v in self.volumes]
        else:
            found = [
                v for v in self.volumes.values()
                if _matches(v, kwargs.get("Filters", []), v["State"])
            ]
        return {"Volumes": found}

    async def detach_volume(self, **kwargs: Any) -> dict[str, Any]:
        self._record("detach_volume", kwargs)
        volume = self.volumes[kwargs["VolumeId"]]
        volume["State"] = "available"
        volume["Attachments"] = []
        return {}

    async def attach_volume(self, **kwargs: Any) -> dict[str, Any]:
        self._record("attach_volume", kwargs)
        volume = self.volumes[kwargs["VolumeId"]]
        volume["State"] = "in-use"
        volume["Attachments"] = [{"InstanceId": kwargs["InstanceId"], "Device": kwargs["Device"]}]
        return {}

    def _resource(self, resource_id: str) -> dict[str, Any]:
        return self.volumes.get(resource_id) or self.instances[resource_id]

    async def create_tags(self, **kwargs: Any) -> dict[str, Any]:
        self._record("create_tags", kwargs)
        for rid in kwargs["Resources"]:
            resource = self._resource(rid)
            keys = {t["Key"] for t in kwargs["Tags"]}
            resource["Tags"] = [t for t in resource["Tags"] if t["Key"] not in keys]
            resource["Tags"].extend(kwargs["Tags"])
        return {}

    async def delete_tags(self, **kwargs: Any) -> dict[str, Any]:
        self._record("delete_tags", kwargs)
        for rid in kwargs["Resources"]:
            resource = self._resource(rid)
            keys = {t["Key"] for t in kwargs["Tags"]}
            resource["Tags"] = [t for t in resource["Tags"] if t["Key"] not in keys]
        return {}

    # -- addresses ------------------------------------------------------------

    async def describe_addresses(self, **kwargs: Any) -> dict[str, Any]:
        self._record("describe_addresses", kwargs)
        found = [a for a in self.addresses if _matches(a, kwargs.get("Filters", []), "")]
        return {"Addresses": found}

    async def associate_address(self, **kwargs: Any) -> dict[str, Any]:
        self._record("associate_address", kwargs)
        for a in self.addresses:
            if a["AllocationId"] == kwargs["AllocationId"]:
                a["AssociationId"] = "eipassoc-new"
                a["InstanceId"] = kwargs["InstanceId"]
        return {"AssociationId": "eipassoc-new"}

    async def disassociate_address(self, **kwargs: Any) -> dict[str, Any]:
        self._record("disassociate_address", kwargs)
        for a in self.addresses:
            if a.get("AssociationId") == kwargs["AssociationId"]:
                a.pop("AssociationId")
                a.pop("InstanceId", None)
        return {}

    # -- network and images ---------------------------------------------------

    async def describe_security_groups(self, **kwargs: Any) -> dict[str, Any]:
        self._record("describe_security_groups", kwargs)
        found = [g for g in self.security_groups if _matches(g, kwargs.get("Filters", []), "")]
        return {"SecurityGroups": found}

    async def describe_subnets(self, **kwargs: Any) -> dict[str, Any]:
        self._record("describe_subnets", kwargs)
        found = [s for s in self.subnets if _matches(s, kwargs.get("Filters", []), "")]
        return {"Subnets": found}

    async def describe_images(self, **kwargs: Any) -> dict[str, Any]:
        self._record("describe_images", kwargs)
        return {"Images": list(self.images)}


class FakeEFS:
    def __init__(self, file_systems: list[dict[str, Any]] | None = None) -> None:
        self.file_systems = file_systems or []

    async def describe_file_systems(self, **kwargs: Any) -> dict[str, Any]:
        return {"FileSystems": self.file_systems}


class FakeRunner:
    """Runner double keyed by the exact remote script.

    A response may be a string (stdout) or an exception to raise. Unknown
    scripts return the default output.
    """

    def __init__(self, responses: dict[str, str | BaseException] | None = None, default: str = "") -> None:
        self.responses = responses or {}
        self.default = default
        self.calls: list[tuple[Any, ...]] = []

    @property
    def commands(self) -> list[str]:
        return [call[-1][0] for call in self.calls]

    async def run(
        self,
        instance_id: str,
        zone: str,
        host: str,
        port: int,
        user: str,
        command: Sequence[str],
    ) -> str:
        self.calls.append((instance_id, zone, host, port, user, tuple(command)))
        response = self.responses.get(command[0], self.default)
        if isinstance(response, BaseException):
            raise response
        return response


def no_tmux_server() -> RemoteCommandError:
    return RemoteCommandError(1, "no server running on /tmp/tmux-1000/default")


@pytest.fixture
def console() -> Console:
    return Console(file=io.StringIO(), width=400, color_system=None)


def console_text(console: Console) -> str:
    return console.file.getvalue()  # type: ignore[attr-defined]


@pytest.fixture
def config(tmp_path: Path) -> MintConfig:
    return MintConfig(bootstrap_sha256=DIGEST, config_dir=tmp_path)
