from __future__ import annotations

import io
from typing import Any

import pytest
from rich.console import Console

from mint import cli
from mint.config import MintConfig
from mint.exceptions import CREDENTIALS_HINT, NotFoundError, StateConflictError
from mint.identity import Owner
from mint.remote.hostkeys import HostKeyStore
from mint.sessions import TMUX_CLIENTS, WHO
from tests.conftest import FakeEC2, FakeRunner, client_error, console_text, no_tmux_server, tag_list

KEY = "ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIHk9a2V5 alice@laptop"


class BootstrappingEC2(FakeEC2):
    """New instances report a finished bootstrap straight away."""

    async def run_instances(self, **kwargs: Any) -> dict[str, Any]:
        response = await super().run_instances(**kwargs)
        for tag in response["Instances"][0]["Tags"]:
            if tag["Key"] == "mint:bootstrap":
                tag["Value"] = "complete"
        return response


def instance_tags(vm: str = "default") -> dict[str, str]:
    return {
        "mint": "true",
        "mint:owner": "alice",
        "mint:vm": vm,
        "mint:component": "instance",
        "mint:bootstrap": "complete",
    }


def make_context(
    config: MintConfig,
    console: Console,
    ec2: FakeEC2,
    runner: FakeRunner | None = None,
    stdin: str = "",
) -> cli.Context:
    return cli.Context(
        config=config,
        owner=Owner("alice", "arn:aws:iam::123456789012:user/alice"),
        ec2=ec2,
        efs=None,
        runner=runner or FakeRunner({TMUX_CLIENTS[0]: no_tmux_server()}),
        host_keys=HostKeyStore(config.known_hosts_path),
        console=console,
        stdin=io.StringIO(stdin),
    )


class TestParser:
    def test_recreate_flags(self):
        args = cli.build_parser().parse_args(["--vm", "gpu", "recreate", "--force", "-y"])
        assert (args.command, args.vm, args.force, args.yes) == ("recreate", "gpu", True, True)

    def test_defaults(self):
        args = cli.build_parser().parse_args(["sessions"])
        assert args.vm == "default"
        assert not args.verbose

    def test_key_add(self):
        args = cli.build_parser().parse_args(["key", "add", "-"])
        assert (args.command, args.key_command, args.key) == ("key", "add", "-")

    def test_recover_requires_list(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(["recover"])

    def test_command_required(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args([])


class TestSessionsCommand:
    @pytest.mark.asyncio
    async def test_idle(self, config: MintConfig, console: Console):
        ec2 = FakeEC2()
        ec2.add_instance("i-0abc", tags=instance_tags())

        assert await cli.cmd_sessions(make_context(config, console, ec2), "default") == 0
        assert "No active sessions" in console_text(console)

    @pytest.mark.asyncio
    async def test_busy(self, config: MintConfig, console: Console):
        ec2 = FakeEC2()
        ec2.add_instance("i-0abc", tags=instance_tags())
        runner = FakeRunner({TMUX_CLIENTS[0]: no_tmux_server(), WHO[0]: "alice pts/0\n"})

        await cli.cmd_sessions(make_context(config, console, ec2, runner), "default")

        out = console_text(console)
        assert 'Active sessions on VM "default":' in out
        assert "alice pts/0" in out

    @pytest.mark.asyncio
    async def test_missing_vm(self, config: MintConfig, console: Console):
        with pytest.raises(NotFoundError):
            await cli.cmd_sessions(make_context(config, console, FakeEC2()), "default")

    @pytest.mark.asyncio
    async def test_stopped_vm(self, config: MintConfig, console: Console):
        ec2 = FakeEC2()
        ec2.add_instance("i-0abc", tags=instance_tags(), state="stopped")
        with pytest.raises(StateConflictError, match="stopped"):
            await cli.cmd_sessions(make_context(config, console, ec2), "default")


class TestKeyCommand:
    @pytest.mark.asyncio
    async def test_add_from_stdin(self, config: MintConfig, console: Console):
        ec2 = FakeEC2()
        ec2.add_instance("i-0abc", tags=instance_tags())
        runner = FakeRunner()

        ctx = make_context(config, console, ec2, runner, stdin=KEY + "\n")
        assert await cli.cmd_key_add(ctx, "default", "-") == 0

        assert 'Key added to VM "default"' in console_text(console)
        assert len(runner.calls) == 2

    @pytest.mark.asyncio
    async def test_already_present(self, config: MintConfig, console: Console):
        ec2 = FakeEC2()
        ec2.add_instance("i-0abc", tags=instance_tags())
        runner = FakeRunner(default=KEY + "\n")

        await cli.cmd_key_add(make_context(config, console, ec2, runner), "default", KEY)

        assert 'Key already present on VM "default"' in console_text(console)
        assert len(runner.calls) == 1


class TestRecoverCommand:
    @pytest.mark.asyncio
    async def test_nothing_pending(self, config: MintConfig, console: Console):
        await cli.cmd_recover_list(make_context(config, console, FakeEC2()), None)
        assert "No incomplete recreates found" in console_text(console)

    @pytest.mark.asyncio
    async def test_lists_pending(self, config: MintConfig, console: Console):
        ec2 = FakeEC2()
        ec2.add_volume(
            "vol-0proj",
            tags={
                "mint": "true",
                "mint:owner": "alice",
                "mint:vm": "default",
                "mint:component": "project-volume",
                "mint:pending-attach": "true",
            },
            state="available",
        )

        await cli.cmd_recover_list(make_context(config, console, ec2), "default")

        assert "default: volume vol-0proj (50 GB, available, detached) in us-east-1b" in console_text(console)


class TestRecreateCommand:
    @pytest.mark.asyncio
    async def test_end_to_end_with_fakes(self, config: MintConfig, console: Console):
        ec2 = BootstrappingEC2()
        ec2.add_instance("i-0abc", tags=instance_tags(), zone="us-east-1b")
        ec2.add_volume(
            "vol-0proj",
            tags={"mint": "true", "mint:owner": "alice", "mint:vm": "default", "mint:component": "project-volume"},
        )
        ec2.security_groups = [
            {"GroupId": "sg-user", "Tags": tag_list({"mint": "true", "mint:owner": "alice", "mint:component": "security-group"})},
            {"GroupId": "sg-admin", "Tags": tag_list({"mint": "true", "mint:component": "admin"})},
        ]
        ec2.subnets = [{"SubnetId": "subnet-b", "AvailabilityZone": "us-east-1b"}]
        ec2.images = [{"ImageId": "ami-1", "CreationDate": "2026-01-01"}]
        ctx = make_context(config, console, ec2)
        ctx.host_keys.record_key("default", "SHA256:OLD")

        assert await cli.cmd_recreate(ctx, "default", force=False, yes=True) == 0

        out = console_text(console)
        assert "Bootstrap complete." in out
        assert "Recreate complete. New instance: i-new0001" in out
        assert ctx.host_keys.lookup("default") is None
        launch = ec2.called("run_instances")[0]
        assert launch["InstanceType"] == "m6i.xlarge"


class TestMain:
    def test_mint_error_exits_one(self, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]):
        async def fail(args, console):
            raise NotFoundError('no VM "default" found; run mint up first to create one')

        monkeypatch.setattr(cli, "_run", fail)

        assert cli.main(["sessions"]) == 1
        assert 'Error: no VM "default" found' in capsys.readouterr().err

    def test_credential_error_is_humanized(
        self, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
    ):
        async def fail(args, console):
            raise client_error("ExpiredToken", "GetCallerIdentity")

        monkeypatch.setattr(cli, "_run", fail)

        assert cli.main(["sessions"]) == 1
        assert CREDENTIALS_HINT in capsys.readouterr().err

    def test_interrupt(self, monkeypatch: pytest.MonkeyPatch):
        async def interrupted(args, console):
            raise KeyboardInterrupt

        monkeypatch.setattr(cli, "_run", interrupted)

        assert cli.main(["sessions"]) == 130

    def test_success(self, monkeypatch: pytest.MonkeyPatch):
        async def ok(args, console):
            return 0

        monkeypatch.setattr(cli, "_run", ok)

        assert cli.main(["--vm", "gpu", "sessions"]) == 0
