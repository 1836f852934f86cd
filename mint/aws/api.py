"""Narrow per-verb AWS capability protocols.

Each protocol names exactly one boto method. An open aioboto3 client for
the right service satisfies any of them directly, and tests satisfy them
with small fakes returning boto-shaped dicts. Components declare only the
verbs they call.
"""

from __future__ import annotations

from typing import Any, Protocol

type Response = dict[str, Any]


# =============================================================================
# EC2: instances
# =============================================================================


class DescribeInstancesAPI(Protocol):
    async def describe_instances(self, **kwargs: Any) -> Response: ...


class StopInstancesAPI(Protocol):
    async def stop_instances(self, **kwargs: Any) -> Response: ...


class TerminateInstancesAPI(Protocol):
    async def terminate_instances(self, **kwargs: Any) -> Response: ...


class RunInstancesAPI(Protocol):
    async def run_instances(self, **kwargs: Any) -> Response: ...


# =============================================================================
# EC2: volumes and tags
# =============================================================================


class DescribeVolumesAPI(Protocol):
    async def describe_volumes(self, **kwargs: Any) -> Response: ...


class DetachVolumeAPI(Protocol):
    async def detach_volume(self, **kwargs: Any) -> Response: ...


class AttachVolumeAPI(Protocol):
    async def attach_volume(self, **kwargs: Any) -> Response: ...


class CreateTagsAPI(Protocol):
    async def create_tags(self, **kwargs: Any) -> Response: ...


class DeleteTagsAPI(Protocol):
    async def delete_tags(self, **kwargs: Any) -> Response: ...


# =============================================================================
# EC2: addresses
# =============================================================================


class DescribeAddressesAPI(Protocol):
    async def describe_addresses(self, **kwargs: Any) -> Response: ...


class AssociateAddressAPI(Protocol):
    async def associate_address(self, **kwargs: Any) -> Response: ...


class DisassociateAddressAPI(Protocol):
    async def disassociate_address(self, **kwargs: Any) -> Response: ...


# =============================================================================
# EC2: network and images
# =============================================================================


class DescribeSubnetsAPI(Protocol):
    async def describe_subnets(self, **kwargs: Any) -> Response: ...


class DescribeSecurityGroupsAPI(Protocol):
    async def describe_security_groups(self, **kwargs: Any) -> Response: ...


class DescribeImagesAPI(Protocol):
    async def describe_images(self, **kwargs: Any) -> Response: ...


# =============================================================================
# Other services
# =============================================================================


class DescribeFileSystemsAPI(Protocol):
    """EFS."""

    async def describe_file_systems(self, **kwargs: Any) -> Response: ...


class SendSSHPublicKeyAPI(Protocol):
    """EC2 Instance Connect."""

    async def send_ssh_public_key(self, **kwargs: Any) -> Response: ...


class GetCallerIdentityAPI(Protocol):
    """STS."""

    async def get_caller_identity(self, **kwargs: Any) -> Response: ...


def error_code(exc: Exception) -> str:
    """Return the AWS error code of a botocore ClientError, or ''."""
    response = getattr(exc, "response", None) or {}
    return str(response.get("Error", {}).get("Code", ""))
