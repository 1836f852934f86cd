"""Adding operator public keys to a VM's authorized_keys."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from mint.aws.api import DescribeInstancesAPI
from mint.config import MintConfig
from mint.exceptions import ConfigurationError, NotFoundError, StateConflictError
from mint.remote.commands import append_authorized_key, check_authorized_key, validate_public_key
from mint.remote.runner import Runner
from mint.tags import BootstrapStatus
from mint.vm import find_vm


@dataclass(frozen=True, slots=True)
class KeyResult:
    added: bool
    fingerprint_hint: str


def read_key_argument(argument: str, stdin_text: str | None = None) -> str:
    """Resolve the CLI argument to a public key line.

    The argument is a literal key, a path to a .pub file, or '-' for stdin.
    """
    if argument == "-":
        if stdin_text is None:
            raise ConfigurationError("no key received on stdin")
        text = stdin_text
    elif argument.startswith(("ssh-", "ecdsa-", "sk-")):
        text = argument
    else:
        path = Path(argument).expanduser()
        if not path.is_file():
            raise ConfigurationError(f"{argument} is neither a public key nor a readable file")
        text = path.read_text()
    lines = [line for line in text.splitlines() if line.strip()]
    if len(lines) != 1:
        raise ConfigurationError(f"expected exactly one public key line, got {len(lines)}")
    return lines[0]


async def add_public_key(
    api: DescribeInstancesAPI,
    runner: Runner,
    config: MintConfig,
    owner: str,
    vm_name: str,
    key: str,
) -> KeyResult:
    """Append key to the VM's authorized_keys unless it is already there.

    The key is validated before anything touches the network.

    Raises:
        InvalidCharactersError: If the key carries shell metacharacters.
        NotFoundError: If the VM does not exist.
        StateConflictError: If the VM is not running or not bootstrapped.
    """
    key = validate_public_key(key)
    log = logger.bind(component="keys")

    vm = await find_vm(api, owner, vm_name)
    if vm is None:
        raise NotFoundError(f'no VM "{vm_name}" found; run mint up first to create one')
    if not vm.is_running:
        raise StateConflictError(f'VM "{vm_name}" is {vm.state}; start it before adding keys')
    if vm.bootstrap_status == BootstrapStatus.PENDING:
        raise StateConflictError(f'VM "{vm_name}" is still bootstrapping; try again shortly')
    if vm.bootstrap_status == BootstrapStatus.FAILED:
        raise StateConflictError(
            f'VM "{vm_name}" failed to bootstrap; recreate it before adding keys'
        )

    args = (vm.id, vm.availability_zone, vm.public_ip, config.ssh_port, config.ssh_user)
    hint = " ".join(key.split()[:2])[:48]

    existing = await runner.run(*args, check_authorized_key(config.ssh_user, key))
    if existing.strip():
        log.info("Key already authorized on {}", vm.id)
        return KeyResult(added=False, fingerprint_hint=hint)

    await runner.run(*args, append_authorized_key(config.ssh_user, key))
    log.info("Authorized new key on {}", vm.id)
    return KeyResult(added=True, fingerprint_hint=hint)
