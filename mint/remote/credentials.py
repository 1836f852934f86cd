"""Ephemeral SSH credentials delivered through EC2 Instance Connect.

A fresh ed25519 key pair is generated for every connection. The public
half is pushed to the instance (valid for about a minute) and the private
half lives in an owner-only temporary file that is removed as soon as the
caller is done with it.
"""

from __future__ import annotations

import contextlib
import os
import tempfile
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from pathlib import Path

import asyncssh
from botocore.exceptions import ClientError
from loguru import logger

from mint.aws.api import SendSSHPublicKeyAPI, error_code
from mint.exceptions import KeyPushRejectedError

type KeyFactory = Callable[[], asyncssh.SSHKey]


def generate_ed25519() -> asyncssh.SSHKey:
    return asyncssh.generate_private_key("ssh-ed25519", comment="mint-ephemeral")


@dataclass(slots=True)
class EphemeralCredential:
    """One pushed key pair. release() is idempotent."""

    public_key: str
    private_key_path: Path
    _released: bool = field(default=False, repr=False)

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        self.private_key_path.unlink(missing_ok=True)

    @property
    def released(self) -> bool:
        return self._released


def _write_private_key(key: asyncssh.SSHKey) -> Path:
    fd, name = tempfile.mkstemp(prefix="mint-key-")
    try:
        os.fchmod(fd, 0o600)
        os.write(fd, key.export_private_key())
    finally:
        os.close(fd)
    return Path(name)


class CredentialIssuer:
    """Issues ephemeral credentials for one instance, zone and OS user."""

    def __init__(
        self,
        instance_connect: SendSSHPublicKeyAPI,
        key_factory: KeyFactory = generate_ed25519,
    ) -> None:
        self._instance_connect = instance_connect
        self._key_factory = key_factory
        self._log = logger.bind(component="credentials")

    async def issue(self, instance_id: str, zone: str, os_user: str) -> EphemeralCredential:
        """Generate a key pair and push its public half to the instance.

        The caller owns the returned credential and must release() it.

        Raises:
            KeyPushRejectedError: If Instance Connect declines the key. No
                private key file is left behind in that case.
        """
        key = self._key_factory()
        public_key = key.export_public_key().decode("ascii").strip()
        credential = EphemeralCredential(public_key, _write_private_key(key))

        try:
            response = await self._instance_connect.send_ssh_public_key(
                InstanceId=instance_id,
                InstanceOSUser=os_user,
                SSHPublicKey=public_key,
                AvailabilityZone=zone,
            )
        except ClientError as e:
            credential.release()
            raise KeyPushRejectedError(
                f"pushing SSH key to {instance_id} failed ({error_code(e) or 'unknown'}): {e}"
            ) from e
        except BaseException:
            credential.release()
            raise

        if response.get("Success") is False:
            credential.release()
            raise KeyPushRejectedError(f"Instance Connect rejected the key for {instance_id}")

        self._log.debug("Pushed ephemeral key to {} as {}", instance_id, os_user)
        return credential

    @contextlib.asynccontextmanager
    async def session(
        self, instance_id: str, zone: str, os_user: str
    ) -> AsyncIterator[EphemeralCredential]:
        """Issue a credential and release it on exit, success or failure."""
        credential = await self.issue(instance_id, zone, os_user)
        try:
            yield credential
        finally:
            credential.release()
