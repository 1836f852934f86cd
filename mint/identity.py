"""Operator identity derived from the ambient AWS credentials."""

from __future__ import annotations

import re
from dataclasses import dataclass

from mint.aws.api import GetCallerIdentityAPI
from mint.exceptions import ConfigurationError

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


@dataclass(frozen=True, slots=True)
class Owner:
    name: str
    arn: str


def normalize_arn(arn: str) -> str:
    """Turn a caller ARN into the short owner name used in tags.

    The last path segment of the resource is kept, any email domain is
    dropped, and the result is lowercased with non-alphanumeric runs
    collapsed to '-'.

    Example:
        >>> normalize_arn("arn:aws:sts::123:assumed-role/Dev/Alice.Smith@corp.com")
        'alice-smith'
    """
    if not arn:
        raise ConfigurationError("empty ARN")
    parts = arn.split(":", 5)
    if len(parts) < 6:
        raise ConfigurationError(
            f"malformed ARN: expected at least 6 colon-separated fields, got {len(parts)}"
        )
    resource = parts[5]
    if not resource:
        raise ConfigurationError("malformed ARN: empty resource field")
    identifier = resource.split("/")[-1]
    if not identifier:
        raise ConfigurationError("malformed ARN: empty trailing identifier")
    if (at := identifier.find("@")) > 0:
        identifier = identifier[:at]
    identifier = _NON_ALNUM.sub("-", identifier.lower()).strip("-")
    if not identifier:
        raise ConfigurationError(f"ARN normalized to empty string: {arn}")
    return identifier


async def resolve_owner(sts: GetCallerIdentityAPI) -> Owner:
    response = await sts.get_caller_identity()
    arn = response.get("Arn")
    if not arn:
        raise ConfigurationError("sts get-caller-identity returned no ARN")
    return Owner(name=normalize_arn(arn), arn=arn)
