"""Centralized constants and enums for mint.

Magic strings, paths and timeouts live here so the rest of the codebase
refers to them by name.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Final

# =============================================================================
# EC2 States
# =============================================================================


class InstanceState(StrEnum):
    """EC2 instance state names."""

    PENDING = "pending"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    SHUTTING_DOWN = "shutting-down"
    TERMINATED = "terminated"


class VolumeState(StrEnum):
    """EBS volume state names."""

    CREATING = "creating"
    AVAILABLE = "available"
    IN_USE = "in-use"
    DELETING = "deleting"
    DELETED = "deleted"
    ERROR = "error"


# =============================================================================
# Remote Access
# =============================================================================

DEFAULT_SSH_PORT: Final = 41122
DEFAULT_SSH_USER: Final = "ubuntu"
SSH_CONNECT_TIMEOUT: Final = 10.0
IDLE_EXTEND_MARKER: Final = "/var/lib/mint/idle-extended-until"


# =============================================================================
# Provisioning
# =============================================================================

PROJECT_DEVICE: Final = "/dev/xvdf"
ROOT_VOLUME_GB: Final = 200
DEFAULT_VOLUME_SIZE_GB: Final = 50
DEFAULT_IDLE_TIMEOUT_MINUTES: Final = 60
DEFAULT_INSTANCE_TYPE: Final = "m6i.xlarge"
DEFAULT_INSTANCE_PROFILE: Final = "mint-instance-profile"
DEFAULT_SESSION_PROCESS: Final = "claude"

UBUNTU_OWNER_ID: Final = "099720109477"
UBUNTU_NAME_PATTERN: Final = "ubuntu/images/hvm-ssd-gp3/ubuntu-noble-24.04-amd64-server-*"


# =============================================================================
# Timeouts (in seconds)
# =============================================================================

WAITER_TIMEOUT: Final = 300.0
WAITER_INTERVAL: Final = 5.0
BOOTSTRAP_POLL_INTERVAL: Final = 15.0
BOOTSTRAP_POLL_TIMEOUT: Final = 900.0


# =============================================================================
# Local Files
# =============================================================================

CONFIG_DIR_ENV: Final = "MINT_CONFIG_DIR"
CONFIG_FILE_NAME: Final = "config.toml"
KNOWN_HOSTS_FILE_NAME: Final = "known_hosts"
USER_BOOTSTRAP_FILE_NAME: Final = "user-bootstrap.sh"
