"""AWS access: capability protocols, client wiring, AMIs and waiters."""

from mint.aws.ami import resolve_ami
from mint.aws.clients import AWSClients, MintAWSModule, open_clients
from mint.aws.waiters import wait_for_ready, wait_instance_running, wait_volume_available

__all__ = [
    "AWSClients",
    "MintAWSModule",
    "open_clients",
    "resolve_ami",
    "wait_for_ready",
    "wait_instance_running",
    "wait_volume_available",
]
