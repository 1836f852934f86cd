"""EC2 user-data rendering.

The user-data is a small stub that downloads the real bootstrap script,
verifies its digest and runs it. The rendered stub must fit in the EC2
user-data limit; callers check MAX_USER_DATA_BYTES before launching.
"""

from __future__ import annotations

import re
from functools import cache
from importlib.resources import files
from typing import Final

from mint.exceptions import ConfigurationError

MAX_USER_DATA_BYTES: Final = 16384
BOOTSTRAP_RAW_BASE: Final = "https://raw.githubusercontent.com/SpiceLabsHQ/Mint"

_DIGEST_RE = re.compile(r"^[0-9a-f]{64}$")
_UNSAFE = frozenset('"$`\\\n\r')


@cache
def stub_template() -> str:
    return files("mint.bootstrap").joinpath("stub.sh").read_text()


def script_url(version: str) -> str:
    """Raw URL of bootstrap.sh for a release, or develop for dev builds."""
    if not version or version == "dev":
        return f"{BOOTSTRAP_RAW_BASE}/develop/scripts/bootstrap.sh"
    return f"{BOOTSTRAP_RAW_BASE}/v{version.removeprefix('v')}/scripts/bootstrap.sh"


def verify_digest(digest: str) -> str:
    """Return digest normalized, or raise if it is not a SHA256 hex string."""
    normalized = digest.strip().lower()
    if not normalized:
        raise ConfigurationError(
            "bootstrap_sha256 is not set; add the bootstrap script digest to config.toml"
        )
    if not _DIGEST_RE.match(normalized):
        raise ConfigurationError(f"bootstrap_sha256 is not a SHA256 hex digest: {digest!r}")
    return normalized


def _safe(name: str, value: str) -> str:
    if any(c in _UNSAFE for c in value):
        raise ConfigurationError(f"{name} contains characters not allowed in user-data")
    return value


def render_stub(
    image_digest: str,
    delivery_url: str,
    storage_id: str,
    device_path: str,
    vm_name: str,
    idle_timeout_minutes: int,
    extra_script_b64: str = "",
) -> bytes:
    """Fill the stub template.

    Args:
        image_digest: SHA256 of the bootstrap script.
        delivery_url: Where the bootstrap script is downloaded from.
        storage_id: Shared EFS file system ID, or empty.
        device_path: Block device the project volume is attached at.
        vm_name: Name of the VM being provisioned.
        idle_timeout_minutes: Idle auto-stop timeout.
        extra_script_b64: Base64 of the user's own bootstrap script.

    Returns:
        The rendered user-data, unencoded.
    """
    values = {
        "__MINT_BOOTSTRAP_SHA256__": verify_digest(image_digest),
        "__MINT_BOOTSTRAP_URL__": _safe("delivery URL", delivery_url),
        "__MINT_EFS_ID__": _safe("storage ID", storage_id),
        "__MINT_PROJECT_DEV__": _safe("device path", device_path),
        "__MINT_VM_NAME__": _safe("VM name", vm_name),
        "__MINT_IDLE_TIMEOUT__": str(int(idle_timeout_minutes)),
        "__MINT_USER_BOOTSTRAP__": _safe("user bootstrap", extra_script_b64),
    }
    rendered = stub_template()
    for placeholder, value in values.items():
        rendered = rendered.replace(placeholder, value)
    return rendered.encode()
