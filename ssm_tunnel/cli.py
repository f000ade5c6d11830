#!/usr/bin/env python3
"""aws-ssm-tunnel

Port-forward to RDS / Aurora / ElastiCache endpoints through an SSM-managed
EC2 instance, without SSH or open inbound ports.

USAGE:
  aws-ssm-tunnel                                        # interactive (prompts)
  aws-ssm-tunnel --profile <profile> --filter <keyword> # quick connect
  aws-ssm-tunnel --last                                 # reconnect to the last selection
  aws-ssm-tunnel --ssm [--profile <profile>]            # shell session on an instance
  aws-ssm-tunnel --list                                 # list background sessions
  aws-ssm-tunnel --kill <pid>                           # kill one session
  aws-ssm-tunnel --kill-all                             # kill every session

Requires the AWS CLI and the session-manager-plugin on PATH.
"""

from __future__ import annotations
import argparse
import logging
import sys
from typing import List, Optional

import botocore
from rich.console import Console
from rich.panel import Panel

from ssm_tunnel import __version__, discovery
from ssm_tunnel.cleanup import ForegroundHandle, install_signal_handlers
from ssm_tunnel.errors import TunnelError
from ssm_tunnel.killer import kill_all, kill_session
from ssm_tunnel.launcher import (
    ForwardTarget,
    build_shell_command,
    run_attached,
    run_port_forward_foreground,
    start_port_forward,
)
from ssm_tunnel.log import configure_logging
from ssm_tunnel.registry import SessionRegistry
from ssm_tunnel.selection import LastSelection, read_last_selection, write_last_selection
from ssm_tunnel.ui import (
    SelectionAborted,
    console,
    print_error,
    print_kill_all_report,
    print_kill_outcome,
    print_sessions,
    prompt_database,
    prompt_instance,
    prompt_profile,
)

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="aws-ssm-tunnel",
        description="SSM port-forwarding to databases and caches behind EC2 instances",
    )
    parser.add_argument("--profile", help="AWS profile name to use")
    parser.add_argument("--filter", help="Keyword to match the instance Name tag (quick connect)")
    parser.add_argument("--port", type=int, default=0, help="Local port to listen on (default: remote port)")
    parser.add_argument("--foreground", action="store_true", help="Keep the tunnel attached; Ctrl+C closes it")
    parser.add_argument("--last", action="store_true", help="Reconnect using the last selection")
    parser.add_argument("--ssm", action="store_true", help="Open an interactive shell session instead of a tunnel")
    parser.add_argument("--list", action="store_true", help="List active port-forward sessions")
    parser.add_argument("--kill", type=int, metavar="PID", help="Kill a port-forward session by PID")
    parser.add_argument("--kill-all", action="store_true", help="Kill all active port-forward sessions")
    parser.add_argument("--debug", action="store_true", help="Verbose logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


# ---------------- session management ----------------
def cmd_list(registry: SessionRegistry) -> int:
    print_sessions(registry.list_alive())
    return 0


def cmd_kill(pid: int, registry: SessionRegistry) -> int:
    console.print(f"Attempting to kill PID {pid}...")
    print_kill_outcome(pid, kill_session(pid, registry))
    return 0


def cmd_kill_all(registry: SessionRegistry) -> int:
    console.print("Attempting to kill all active port-forward sessions...")
    print_kill_all_report(kill_all(registry))
    return 0


# ---------------- connecting ----------------
def connect(target: ForwardTarget, registry: SessionRegistry, foreground: bool = False) -> int:
    console.print(Panel(
        f"localhost:{target.local_port} -> {target.instance_label} ({target.instance_id}) -> {target.descriptor}",
        title="Starting port-forward",
    ))
    if foreground:
        handle = ForegroundHandle()
        install_signal_handlers(handle, on_close=lambda: console.print("\n[red]Closing port-forward session...[/red]"))
        return run_port_forward_foreground(target, handle)
    pid = start_port_forward(target, registry)
    console.print(f"[green]Port-forward started in background (PID {pid})[/green]")
    console.print(f"Stop it with: aws-ssm-tunnel --kill {pid}")
    return 0


def _target(profile: str, inst: discovery.Instance, db: discovery.Database, port: int) -> ForwardTarget:
    return ForwardTarget(
        profile=profile,
        instance_id=inst.id,
        instance_label=inst.name or inst.id,
        remote_host=db.endpoint,
        remote_port=db.port,
        local_port=port or db.port,
    )


def _remember(profile: str, inst: discovery.Instance, db: discovery.Database) -> None:
    try:
        write_last_selection(LastSelection(
            profile=profile,
            instance_name=inst.name,
            instance_id=inst.id,
            db_endpoint=db.endpoint,
            db_port=db.port,
        ))
    except OSError as e:
        logger.warning("failed to save last selection: %s", e)


def interactive(args, registry: SessionRegistry) -> int:
    profile = args.profile or prompt_profile(discovery.fetch_profiles())
    discovery.ensure_sso_login(profile)

    instances = discovery.with_sso_retry(profile, discovery.fetch_instances)
    if not instances:
        raise TunnelError(f"no SSM-managed EC2 instances found for profile {profile}")
    inst = prompt_instance(instances)

    dbs = discovery.filter_by_vpc(discovery.with_sso_retry(profile, discovery.fetch_databases), inst.vpc_id)
    if not dbs:
        console.print("No databases found in the same VPC.")
        return 0
    db = prompt_database(dbs)

    _remember(profile, inst, db)
    return connect(_target(profile, inst, db, args.port), registry, args.foreground)


def quick_connect(args, registry: SessionRegistry) -> int:
    instances = discovery.with_sso_retry(args.profile, discovery.fetch_instances)
    inst = discovery.find_instance(instances, args.filter)
    if inst is None:
        raise TunnelError(f"no instance matching filter '{args.filter}' found")

    dbs = discovery.filter_by_vpc(discovery.with_sso_retry(args.profile, discovery.fetch_databases), inst.vpc_id)
    db = discovery.pick_writer(dbs)
    if db is None:
        raise TunnelError("no writer database found for selected instance")

    console.print(f"[green]✔[/green] {inst.name} ({inst.id})")
    console.print(f"[green]✔[/green] {db.endpoint}:{db.port}")
    _remember(args.profile, inst, db)
    discovery.ensure_sso_login(args.profile)
    return connect(_target(args.profile, inst, db, args.port), registry, args.foreground)


def reconnect_last(args, registry: SessionRegistry) -> int:
    last = read_last_selection()
    if last is None:
        raise TunnelError("no previous selection saved yet; connect once interactively first")
    discovery.ensure_sso_login(last.profile)
    target = ForwardTarget(
        profile=last.profile,
        instance_id=last.instance_id,
        instance_label=last.instance_name or last.instance_id,
        remote_host=last.db_endpoint,
        remote_port=last.db_port,
        local_port=args.port or last.db_port,
    )
    return connect(target, registry, args.foreground)


def ssm_shell(args) -> int:
    profile = args.profile or prompt_profile(discovery.fetch_profiles())
    discovery.ensure_sso_login(profile)
    instances = discovery.with_sso_retry(profile, discovery.fetch_instances)
    if not instances:
        raise TunnelError(f"no SSM-managed instances found for profile {profile}")
    inst = prompt_instance(instances)
    console.print(f"[green]Starting SSM shell session to: {inst.name} ({inst.id})[/green]")
    return run_attached(build_shell_command(profile, inst.id))


def run(argv: Optional[List[str]] = None, registry: Optional[SessionRegistry] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.debug, console=Console(stderr=True))
    registry = registry or SessionRegistry()

    if args.filter and not args.profile:
        parser.error("--filter requires --profile")

    try:
        if args.list:
            return cmd_list(registry)
        if args.kill is not None:
            return cmd_kill(args.kill, registry)
        if args.kill_all:
            return cmd_kill_all(registry)
        if args.ssm:
            return ssm_shell(args)
        if args.last:
            return reconnect_last(args, registry)
        if args.filter:
            return quick_connect(args, registry)
        return interactive(args, registry)
    except TunnelError as e:
        print_error(str(e))
        return 1
    except SelectionAborted as e:
        print_error(str(e))
        return 1
    except (botocore.exceptions.BotoCoreError, botocore.exceptions.ClientError) as e:
        print_error(f"AWS error: {e}", hint="Check your profile credentials (aws sso login?)")
        return 1
    except (ValueError, OSError) as e:
        print_error(str(e))
        return 1
    except KeyboardInterrupt:
        console.print("Aborted by user")
        return 130


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()
