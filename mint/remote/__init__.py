"""Remote execution: credentials, transport and host trust."""

from mint.remote.commands import (
    append_authorized_key,
    check_authorized_key,
    validate_content,
    validate_public_key,
)
from mint.remote.credentials import CredentialIssuer, EphemeralCredential
from mint.remote.hostkeys import HostKeyStore, ScannedKey, asyncssh_scan
from mint.remote.runner import CommandResult, RemoteRunner, Runner, asyncssh_transport
from mint.remote.tofu import TofuRunner

__all__ = [
    "CommandResult",
    "CredentialIssuer",
    "EphemeralCredential",
    "HostKeyStore",
    "RemoteRunner",
    "Runner",
    "ScannedKey",
    "TofuRunner",
    "append_authorized_key",
    "asyncssh_scan",
    "asyncssh_transport",
    "check_authorized_key",
    "validate_content",
    "validate_public_key",
]
