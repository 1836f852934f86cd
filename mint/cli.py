"""Command-line entry point.

    mint [--vm NAME] [--verbose] recreate [--force] [--yes]
    mint [--vm NAME] sessions
    mint [--vm NAME] key add <key|path|->
    mint recover --list [--all]
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from dataclasses import dataclass
from typing import Any, TextIO

from botocore.exceptions import BotoCoreError, ClientError
from loguru import logger
from rich.console import Console

from mint import __version__
from mint.aws.clients import open_clients
from mint.bootstrap.poller import BootstrapPoller
from mint.bootstrap.stub import script_url
from mint.config import MintConfig, load_config
from mint.exceptions import MintError, NotFoundError, StateConflictError, humanize_error
from mint.identity import Owner, resolve_owner
from mint.keys import add_public_key, read_key_argument
from mint.logging import LogConfig, setup_logging, teardown_logging
from mint.recovery import find_incomplete_recreates
from mint.recreate import RecreateDeps, Recreator
from mint.remote.credentials import CredentialIssuer
from mint.remote.hostkeys import HostKeyStore
from mint.remote.runner import RemoteRunner, Runner
from mint.remote.tofu import TofuRunner
from mint.sessions import SessionDetector, bind_runner
from mint.vm import find_vm


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mint", description="Manage your cloud development VM")
    parser.add_argument("--version", action="version", version=f"mint {__version__}")
    parser.add_argument("--vm", default="default", help="VM name (default: %(default)s)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug output to stderr")
    parser.add_argument("--log-file", default=None, help="Also write logs to this file")

    sub = parser.add_subparsers(dest="command", required=True)

    recreate = sub.add_parser("recreate", help="Destroy and re-provision the VM in place")
    recreate.add_argument("--force", action="store_true", help="Proceed despite active sessions")
    recreate.add_argument("-y", "--yes", action="store_true", help="Skip the confirmation prompt")

    sub.add_parser("sessions", help="Show active sessions on the VM")

    key = sub.add_parser("key", help="Manage authorized SSH keys on the VM")
    key_sub = key.add_subparsers(dest="key_command", required=True)
    key_add = key_sub.add_parser("add", help="Authorize a public key")
    key_add.add_argument("key", help="Public key line, path to a .pub file, or '-' for stdin")

    recover = sub.add_parser("recover", help="Inspect interrupted recreates")
    recover.add_argument("--list", action="store_true", required=True, help="List pending volumes")
    recover.add_argument("--all", action="store_true", help="Include every VM, not just --vm")

    return parser


@dataclass
class Context:
    """Per-invocation state shared by the command handlers."""

    config: MintConfig
    owner: Owner
    ec2: Any
    efs: Any
    runner: Runner
    host_keys: HostKeyStore
    console: Console
    stdin: TextIO


async def cmd_recreate(ctx: Context, vm_name: str, *, force: bool, yes: bool) -> int:
    poller = BootstrapPoller(
        ctx.ec2, report=lambda line: ctx.console.print(line, markup=False, highlight=False)
    )
    deps = RecreateDeps(
        owner=ctx.owner.name,
        owner_arn=ctx.owner.arn,
        describe_instances=ctx.ec2,
        stop_instances=ctx.ec2,
        terminate_instances=ctx.ec2,
        run_instances=ctx.ec2,
        describe_volumes=ctx.ec2,
        detach_volume=ctx.ec2,
        attach_volume=ctx.ec2,
        create_tags=ctx.ec2,
        delete_tags=ctx.ec2,
        describe_addresses=ctx.ec2,
        associate_address=ctx.ec2,
        disassociate_address=ctx.ec2,
        describe_subnets=ctx.ec2,
        describe_security_groups=ctx.ec2,
        describe_images=ctx.ec2,
        describe_file_systems=ctx.efs,
        runner=ctx.runner,
        remove_host_key=ctx.host_keys.remove_key,
        poll_bootstrap=poller.poll,
        bootstrap_url=script_url(ctx.config.bootstrap_version),
        config=ctx.config,
    )
    await Recreator(deps, ctx.console, ctx.stdin).run(vm_name, force=force, yes=yes)
    return 0


async def cmd_sessions(ctx: Context, vm_name: str) -> int:
    vm = await find_vm(ctx.ec2, ctx.owner.name, vm_name)
    if vm is None:
        raise NotFoundError(f'no VM "{vm_name}" found; run mint up first to create one')
    if not vm.is_running:
        raise StateConflictError(f'VM "{vm_name}" is {vm.state}; it must be running')

    detector = SessionDetector(
        bind_runner(ctx.runner, vm, ctx.config.ssh_port, ctx.config.ssh_user),
        process_name=ctx.config.session_process_name,
    )
    result = await detector.detect()
    for warning in result.warnings:
        ctx.console.print(f"Warning: {warning}", markup=False, highlight=False)
    if result.has_activity:
        ctx.console.print(
            f'Active sessions on VM "{vm_name}":\n{result.summary()}', markup=False, highlight=False
        )
    else:
        ctx.console.print("No active sessions", markup=False, highlight=False)
    return 0


async def cmd_key_add(ctx: Context, vm_name: str, argument: str) -> int:
    stdin_text = ctx.stdin.read() if argument == "-" else None
    key = read_key_argument(argument, stdin_text)
    result = await add_public_key(
        ctx.ec2, ctx.runner, ctx.config, ctx.owner.name, vm_name, key
    )
    if result.added:
        ctx.console.print(f'Key added to VM "{vm_name}": {result.fingerprint_hint}...', markup=False)
    else:
        ctx.console.print(f'Key already present on VM "{vm_name}"', markup=False)
    return 0


async def cmd_recover_list(ctx: Context, vm_name: str | None) -> int:
    pending = await find_incomplete_recreates(ctx.ec2, ctx.owner.name, vm_name)
    if not pending:
        ctx.console.print("No incomplete recreates found", markup=False)
        return 0
    ctx.console.print("Project volumes left pending-attach by an interrupted recreate:", markup=False)
    for volume in pending:
        ctx.console.print(f"  {volume.describe()}", markup=False, highlight=False)
    return 0


async def dispatch(ctx: Context, args: argparse.Namespace) -> int:
    match args.command:
        case "recreate":
            return await cmd_recreate(ctx, args.vm, force=args.force, yes=args.yes)
        case "sessions":
            return await cmd_sessions(ctx, args.vm)
        case "key":
            return await cmd_key_add(ctx, args.vm, args.key)
        case "recover":
            return await cmd_recover_list(ctx, None if args.all else args.vm)
    raise ValueError(f"unknown command {args.command!r}")


async def _run(args: argparse.Namespace, console: Console) -> int:
    config = load_config()
    async with open_clients(config) as clients:
        owner = await resolve_owner(clients.sts)
        logger.bind(component="cli").debug("Resolved owner {} ({})", owner.name, owner.arn)
        host_keys = HostKeyStore(config.known_hosts_path)
        runner = TofuRunner(
            RemoteRunner(CredentialIssuer(clients.instance_connect)), host_keys, args.vm
        )
        ctx = Context(
            config=config,
            owner=owner,
            ec2=clients.ec2,
            efs=clients.efs,
            runner=runner,
            host_keys=host_keys,
            console=console,
            stdin=sys.stdin,
        )
        return await dispatch(ctx, args)


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    console = Console()
    errors = Console(stderr=True)

    log_config = LogConfig(
        level="DEBUG" if args.verbose else "WARNING",
        file=args.log_file,
        console=args.verbose,
    )
    handler_ids = setup_logging(log_config) if args.verbose or args.log_file else []

    try:
        return asyncio.run(_run(args, console))
    except (MintError, ClientError, BotoCoreError) as e:
        logger.bind(component="cli").opt(exception=e).debug("Command failed")
        errors.print(f"Error: {humanize_error(e)}", markup=False, highlight=False, soft_wrap=True)
        return 1
    except KeyboardInterrupt:
        errors.print("Interrupted", markup=False)
        return 130
    finally:
        teardown_logging(handler_ids)
