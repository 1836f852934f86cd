"""Exception hierarchy for mint.

Every mint-specific error inherits from MintError so the CLI can report
any failure with a single except clause and a non-zero exit.
"""

from __future__ import annotations

from botocore.exceptions import NoCredentialsError, PartialCredentialsError


class MintError(Exception):
    """Base exception for all mint errors."""


class NotFoundError(MintError):
    """Raised when a VM, volume or address does not exist."""


class StateConflictError(MintError):
    """Raised when a resource is in the wrong state for the requested step."""


class UnconfirmedError(MintError):
    """Raised when the operator declines or mistypes the confirmation."""


class SessionsActiveError(MintError):
    """Raised when the VM is busy and --force was not given."""

    def __init__(self, vm_name: str, summary: str) -> None:
        self.vm_name = vm_name
        self.summary = summary
        super().__init__(
            f'active sessions detected on VM "{vm_name}":\n\n{summary}\n\n'
            "Use --force to proceed anyway"
        )


class TransportError(MintError):
    """Raised when the network or SSH layer fails."""


class RemoteCommandError(TransportError):
    """Raised when a remote command exits non-zero."""

    def __init__(self, exit_status: int, stderr: str) -> None:
        self.exit_status = exit_status
        self.stderr = stderr
        super().__init__(f"remote command failed (exit {exit_status}): {stderr.strip()}")


class KeyPushRejectedError(TransportError):
    """Raised when EC2 Instance Connect declines the ephemeral key."""


class TrustViolationError(MintError):
    """Raised when a host's identity cannot be trusted."""


class HostKeyChangedError(TrustViolationError):
    """Raised when the scanned host key differs from the pinned one."""

    def __init__(self, vm_name: str, stored: str, current: str) -> None:
        self.vm_name = vm_name
        self.stored = stored
        self.current = current
        super().__init__(
            f'HOST KEY CHANGED for VM "{vm_name}"!\n\n'
            f"  Stored fingerprint: {stored}\n"
            f"  Current fingerprint: {current}\n\n"
            "This could indicate a man-in-the-middle attack, or the VM was rebuilt.\n"
            "If this is expected (VM was rebuilt), run: mint destroy && mint up"
        )


class ScanFailedError(TrustViolationError):
    """Raised when the host key could not be scanned."""


class StepFailure(MintError):
    """Raised when a destructive recreate step fails.

    The step name is kept on the exception so callers can tell how far
    the sequence got.
    """

    def __init__(self, step: str, cause: BaseException | str) -> None:
        self.step = step
        super().__init__(f"{step}: {cause}")


class ConfigurationError(MintError):
    """Raised for invalid configuration or rejected content."""


class EmptyInputError(ConfigurationError):
    """Raised when content is empty or only whitespace."""


class InvalidCharactersError(ConfigurationError):
    """Raised when content carries shell metacharacters."""


class WaitTimeoutError(MintError):
    """Raised when a bounded wait runs out of time."""


class BootstrapFailedError(MintError):
    """Raised when the instance reports a failed bootstrap."""

    def __init__(self, instance_id: str, phase: str = "") -> None:
        self.instance_id = instance_id
        self.phase = phase
        if phase:
            super().__init__(f"bootstrap failed on instance {instance_id} (phase: {phase})")
        else:
            super().__init__(f"bootstrap failed on instance {instance_id}")


# =============================================================================
# User-facing messages
# =============================================================================

CREDENTIALS_HINT = (
    "AWS credentials are missing or expired. "
    "Run 'aws sso login' or configure a profile, then retry."
)

_CREDENTIAL_MARKERS = (
    "expiredtoken",
    "invalidclienttokenid",
    "unrecognizedclient",
    "security token",
    "no credentials",
    "unable to locate credentials",
    "sso session",
    "token has expired",
)


def is_credential_error(exc: BaseException) -> bool:
    """Whether exc, or anything in its cause chain, is a credential failure."""
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, NoCredentialsError | PartialCredentialsError):
            return True
        text = str(current).lower()
        if any(marker in text for marker in _CREDENTIAL_MARKERS):
            return True
        current = current.__cause__ or current.__context__
    return False


def humanize_error(exc: BaseException) -> str:
    """Render an exception for the terminal.

    Credential-chain failures collapse to one actionable instruction
    instead of SDK internals. Everything else is reported as-is.
    """
    if is_credential_error(exc):
        return CREDENTIALS_HINT
    return str(exc)
