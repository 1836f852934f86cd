from __future__ import annotations

import stat
import tempfile
from pathlib import Path
from typing import Any

import pytest

from mint.exceptions import ConfigurationError, KeyPushRejectedError, RemoteCommandError, TransportError
from mint.remote.credentials import CredentialIssuer
from mint.remote.runner import CommandResult, RemoteRunner
from tests.conftest import client_error

ARGS = ("i-0abc", "us-east-1a", "203.0.113.10", 41122, "ubuntu")


class FakeInstanceConnect:
    def __init__(self, error: Exception | None = None, success: bool = True) -> None:
        self.error = error
        self.success = success
        self.calls: list[dict[str, Any]] = []

    async def send_ssh_public_key(self, **kwargs: Any) -> dict[str, Any]:
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return {"Success": self.success, "RequestId": "req-1"}


class RecordingTransport:
    def __init__(self, result: CommandResult | None = None, error: Exception | None = None) -> None:
        self.result = result or CommandResult(0, "out\n", "")
        self.error = error
        self.calls: list[tuple[str, int, str, str, str]] = []
        self.key_existed: list[bool] = []
        self.key_modes: list[int] = []

    async def __call__(self, host: str, port: int, user: str, key_path: str, command: str) -> CommandResult:
        self.calls.append((host, port, user, key_path, command))
        path = Path(key_path)
        self.key_existed.append(path.exists())
        self.key_modes.append(stat.S_IMODE(path.stat().st_mode))
        if self.error is not None:
            raise self.error
        return self.result


class TestCredentialIssuer:
    @pytest.mark.asyncio
    async def test_pushes_public_key_scoped_to_instance(self):
        ic = FakeInstanceConnect()
        credential = await CredentialIssuer(ic).issue("i-0abc", "us-east-1a", "ubuntu")
        try:
            assert ic.calls == [
                {
                    "InstanceId": "i-0abc",
                    "InstanceOSUser": "ubuntu",
                    "SSHPublicKey": credential.public_key,
                    "AvailabilityZone": "us-east-1a",
                }
            ]
            assert credential.public_key.startswith("ssh-ed25519 ")
            assert stat.S_IMODE(credential.private_key_path.stat().st_mode) == 0o600
        finally:
            credential.release()

    @pytest.mark.asyncio
    async def test_release_is_idempotent(self):
        credential = await CredentialIssuer(FakeInstanceConnect()).issue("i-0abc", "az", "ubuntu")
        path = credential.private_key_path
        credential.release()
        credential.release()
        assert credential.released
        assert not path.exists()

    @pytest.mark.asyncio
    async def test_fresh_key_every_issue(self):
        issuer = CredentialIssuer(FakeInstanceConnect())
        async with issuer.session("i-0abc", "az", "ubuntu") as first:
            pass
        async with issuer.session("i-0abc", "az", "ubuntu") as second:
            pass
        assert first.public_key != second.public_key

    @pytest.mark.asyncio
    async def test_rejected_push_leaves_no_key_file(self, monkeypatch, tmp_path: Path):
        monkeypatch.setattr(tempfile, "tempdir", str(tmp_path))
        ic = FakeInstanceConnect(error=client_error("ThrottlingException", "SendSSHPublicKey"))

        with pytest.raises(KeyPushRejectedError, match="ThrottlingException"):
            await CredentialIssuer(ic).issue("i-0abc", "az", "ubuntu")

        assert list(tmp_path.glob("mint-key-*")) == []

    @pytest.mark.asyncio
    async def test_unsuccessful_response_is_rejection(self):
        with pytest.raises(KeyPushRejectedError):
            await CredentialIssuer(FakeInstanceConnect(success=False)).issue("i-0abc", "az", "ubuntu")


class TestRemoteRunner:
    @pytest.mark.asyncio
    async def test_runs_single_element_and_returns_stdout(self):
        transport = RecordingTransport(CommandResult(0, "alice pts/0\n", ""))
        runner = RemoteRunner(CredentialIssuer(FakeInstanceConnect()), transport)

        out = await runner.run(*ARGS, ("who",))

        assert out == "alice pts/0\n"
        host, port, user, key_path, command = transport.calls[0]
        assert (host, port, user, command) == ("203.0.113.10", 41122, "ubuntu", "who")
        assert transport.key_existed == [True]
        assert transport.key_modes == [0o600]
        assert not Path(key_path).exists()

    @pytest.mark.asyncio
    async def test_multi_element_command_rejected_before_push(self):
        ic = FakeInstanceConnect()
        runner = RemoteRunner(CredentialIssuer(ic), RecordingTransport())

        with pytest.raises(ConfigurationError, match="exactly one element"):
            await runner.run(*ARGS, ("grep", "-F", "x"))
        assert ic.calls == []

    @pytest.mark.asyncio
    async def test_non_zero_exit_carries_stderr(self):
        transport = RecordingTransport(CommandResult(2, "", "permission denied"))
        runner = RemoteRunner(CredentialIssuer(FakeInstanceConnect()), transport)

        with pytest.raises(RemoteCommandError, match="permission denied") as exc:
            await runner.run(*ARGS, ("cat /root/secret",))
        assert exc.value.exit_status == 2

    @pytest.mark.asyncio
    async def test_transport_error_releases_key(self):
        transport = RecordingTransport(error=TransportError("connection refused"))
        runner = RemoteRunner(CredentialIssuer(FakeInstanceConnect()), transport)

        with pytest.raises(TransportError, match="connection refused"):
            await runner.run(*ARGS, ("who",))
        assert not Path(transport.calls[0][3]).exists()

    @pytest.mark.asyncio
    async def test_key_push_failure_skips_transport(self):
        transport = RecordingTransport()
        ic = FakeInstanceConnect(error=client_error("AccessDenied", "SendSSHPublicKey"))
        runner = RemoteRunner(CredentialIssuer(ic), transport)

        with pytest.raises(KeyPushRejectedError):
            await runner.run(*ARGS, ("who",))
        assert transport.calls == []
