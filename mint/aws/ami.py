"""AMI resolution for mint instances.

Always selects the newest Canonical Ubuntu 24.04 LTS amd64 image in the
client's region.
"""

from __future__ import annotations

from botocore.exceptions import ClientError
from loguru import logger

from mint.aws.api import DescribeImagesAPI, error_code
from mint.constants import UBUNTU_NAME_PATTERN, UBUNTU_OWNER_ID
from mint.exceptions import NotFoundError

log = logger.bind(component="ami")


async def resolve_ami(api: DescribeImagesAPI) -> str:
    """Return the ID of the newest Ubuntu 24.04 amd64 AMI.

    Raises:
        NotFoundError: If no matching image is available.
        ClientError: If the describe call itself fails.
    """
    try:
        response = await api.describe_images(
            Owners=[UBUNTU_OWNER_ID],
            Filters=[
                {"Name": "name", "Values": [UBUNTU_NAME_PATTERN]},
                {"Name": "state", "Values": ["available"]},
                {"Name": "architecture", "Values": ["x86_64"]},
            ],
        )
    except ClientError as e:
        log.warning("describe_images failed: {}", error_code(e) or e)
        raise

    images = response.get("Images", [])
    if not images:
        raise NotFoundError(
            f"no Ubuntu 24.04 AMI found (owner {UBUNTU_OWNER_ID}, pattern {UBUNTU_NAME_PATTERN})"
        )

    newest = max(images, key=lambda image: image.get("CreationDate", ""))
    log.debug("Resolved AMI {} ({})", newest["ImageId"], newest.get("Name", ""))
    return newest["ImageId"]
