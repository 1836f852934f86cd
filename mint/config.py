"""TOML-based user configuration.

Loads <config dir>/config.toml where the config dir is $MINT_CONFIG_DIR
or ~/.config/mint. A missing file yields the defaults.
"""

from __future__ import annotations

import base64
import os
import re
import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

from mint.constants import (
    CONFIG_DIR_ENV,
    CONFIG_FILE_NAME,
    DEFAULT_IDLE_TIMEOUT_MINUTES,
    DEFAULT_INSTANCE_PROFILE,
    DEFAULT_SESSION_PROCESS,
    DEFAULT_SSH_PORT,
    DEFAULT_SSH_USER,
    DEFAULT_VOLUME_SIZE_GB,
    KNOWN_HOSTS_FILE_NAME,
    USER_BOOTSTRAP_FILE_NAME,
)
from mint.exceptions import ConfigurationError

type RawConfig = dict[str, Any]

_INSTANCE_TYPE_RE = re.compile(r"^[a-z][a-z0-9-]*\.[a-z0-9]+$")
_REGION_RE = re.compile(r"^[a-z]{2}(-[a-z]+)+-\d$")


def default_config_dir() -> Path:
    env = os.environ.get(CONFIG_DIR_ENV)
    if env:
        return Path(env)
    return Path.home() / ".config" / "mint"


@dataclass(frozen=True, slots=True)
class MintConfig:
    """User configuration.

    Attributes:
        region: AWS region. Empty means the SDK default chain decides.
        instance_type: Overrides the instance type of a recreated VM.
        volume_size_gb: Project volume size recorded on new instances.
        idle_timeout_minutes: Idle auto-stop timeout passed to bootstrap.
        ssh_port: Port sshd listens on inside the VM.
        ssh_user: OS user for SSH and Instance Connect.
        bootstrap_sha256: Expected digest of the bootstrap script.
        bootstrap_version: Release the bootstrap script is fetched from.
        session_process_name: Process counted as a live session in containers.
        instance_profile: IAM instance profile attached to new instances.
        config_dir: Directory the config was loaded from.
    """

    region: str = ""
    instance_type: str = ""
    volume_size_gb: int = DEFAULT_VOLUME_SIZE_GB
    idle_timeout_minutes: int = DEFAULT_IDLE_TIMEOUT_MINUTES
    ssh_port: int = DEFAULT_SSH_PORT
    ssh_user: str = DEFAULT_SSH_USER
    bootstrap_sha256: str = ""
    bootstrap_version: str = ""
    session_process_name: str = DEFAULT_SESSION_PROCESS
    instance_profile: str = DEFAULT_INSTANCE_PROFILE
    config_dir: Path = field(default_factory=default_config_dir)

    @property
    def known_hosts_path(self) -> Path:
        return self.config_dir / KNOWN_HOSTS_FILE_NAME

    def user_bootstrap_b64(self) -> str:
        """Base64 of the optional user-bootstrap.sh, or empty when absent."""
        path = self.config_dir / USER_BOOTSTRAP_FILE_NAME
        if not path.is_file():
            return ""
        return base64.b64encode(path.read_bytes()).decode("ascii")


def _read_toml(path: Path) -> RawConfig:
    if not path.is_file():
        return {}
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Invalid TOML in {path}: {e}") from e


def _validate(raw: RawConfig) -> None:
    known = {f.name for f in fields(MintConfig)} - {"config_dir"}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ConfigurationError(
            f"Unknown config key(s): {', '.join(unknown)}. Valid: {', '.join(sorted(known))}"
        )

    for key in ("volume_size_gb", "idle_timeout_minutes", "ssh_port"):
        if key in raw and (isinstance(raw[key], bool) or not isinstance(raw[key], int)):
            raise ConfigurationError(f"'{key}' must be an integer, got {raw[key]!r}")
    for key in known - {"volume_size_gb", "idle_timeout_minutes", "ssh_port"}:
        if key in raw and not isinstance(raw[key], str):
            raise ConfigurationError(f"'{key}' must be a string, got {raw[key]!r}")

    if raw.get("volume_size_gb", 1) < 1:
        raise ConfigurationError("'volume_size_gb' must be at least 1")
    if raw.get("idle_timeout_minutes", 15) < 15:
        raise ConfigurationError("'idle_timeout_minutes' must be at least 15")
    if not 1 <= raw.get("ssh_port", DEFAULT_SSH_PORT) <= 65535:
        raise ConfigurationError("'ssh_port' must be between 1 and 65535")
    if raw.get("instance_type") and not _INSTANCE_TYPE_RE.match(raw["instance_type"]):
        raise ConfigurationError(f"Invalid instance type '{raw['instance_type']}'")
    if raw.get("region") and not _REGION_RE.match(raw["region"]):
        raise ConfigurationError(f"Invalid region '{raw['region']}'")


def load_config(config_dir: Path | None = None) -> MintConfig:
    """Load and validate the user configuration.

    Args:
        config_dir: Directory holding config.toml. Defaults to
            $MINT_CONFIG_DIR or ~/.config/mint.

    Returns:
        The parsed configuration, defaults filled in.

    Raises:
        ConfigurationError: On malformed TOML, unknown keys or bad values.
    """
    directory = config_dir or default_config_dir()
    raw = _read_toml(directory / CONFIG_FILE_NAME)
    _validate(raw)
    return MintConfig(**raw, config_dir=directory)
