"""Command-line interface for ec2-env."""

from __future__ import annotations

import argparse
import logging
import signal
import sys
from dataclasses import dataclass
from typing import Optional

import yaml
from pydantic import ValidationError

from ec2_env.errors import Ec2EnvError


@dataclass
class ConfigArgs:
    """List the environments defined in the config file."""
    config: Optional[str] = None
    """Path to config file (defaults to $EC2_ENV_CONFIG, then ec2-env.yaml)"""


@dataclass
class EnvArgs:
    env: str
    """Environment name in the config file"""
    config: Optional[str] = None
    """Path to config file (defaults to $EC2_ENV_CONFIG, then ec2-env.yaml)"""


@dataclass
class HostsArgs(EnvArgs):
    """Print hosts for sshing, opening SSM tunnels if the environment uses them."""
    wait: bool = True
    """Keep SSM tunnels open until Enter or SIGINT/SIGTERM"""


@dataclass
class TunnelArgs:
    """Open a single SSM port forwarding session."""
    target: str = ""
    """Instance id to forward to"""
    remote_port: int = 22
    """Port on the instance"""
    local_port: Optional[int] = None
    """Local port to bind (default: let the plugin choose)"""
    reason: Optional[str] = None
    """Reason for the session (default: CI build or user@host)"""
    region: Optional[str] = None
    """AWS region"""
    timeout: float = 15
    """Seconds to wait for each session step"""


def _load(args: EnvArgs):
    from ec2_env.orchestrator import Ec2Environment
    return Ec2Environment.from_yaml_file(args.config, args.env)


def cmd_envs(args: ConfigArgs):
    """Execute envs command."""
    from ec2_env.config import list_environments

    for name in list_environments(args.config):
        print(name)


def cmd_ids(args: EnvArgs):
    """Execute ids command."""
    for instance_id in _load(args).instance_ids():
        print(instance_id)


def cmd_ips(args: EnvArgs):
    """Execute ips command."""
    for ip in _load(args).instance_ips():
        print(ip)


def cmd_proxy_command(args: EnvArgs):
    """Execute proxy-command command."""
    print(_load(args).build_ssh_bastion_proxy_command())


def cmd_hosts(args: HostsArgs):
    """Execute hosts command."""
    with _load(args) as environment:
        for host in environment.hosts_for_sshing():
            print(host, flush=True)

        if args.wait and len(environment.sessions):
            _wait_for_signal()


def cmd_tunnel(args: TunnelArgs):
    """Execute tunnel command."""
    from ec2_env.ci_service import build_justification
    from ec2_env.tunnel import TunnelSession

    reason = args.reason if args.reason is not None else build_justification()

    with TunnelSession(
        args.target,
        args.remote_port,
        local_port=args.local_port,
        timeout=args.timeout,
        reason=reason,
        region=args.region,
    ) as session:
        port = session.wait_for_local_port()
        print(f"localhost:{port} -> {args.target}:{args.remote_port} (session {session.session_id})", flush=True)
        _wait_for_signal()


def _wait_for_signal():
    """Block until Enter, SIGINT or SIGTERM."""
    signal.signal(signal.SIGTERM, signal.default_int_handler)
    try:
        input("\nPress Enter to close.\n")
    except (KeyboardInterrupt, EOFError):
        print("\nShutting down...")


def main(argv: Optional[list[str]] = None):
    """Main entry point for ec2-env CLI."""
    parser = argparse.ArgumentParser(
        description="Find the EC2 instances of an environment and tunnel to them over SSM",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # List the environments in the config file
  ec2-env envs --config environments.yml

  # List instance ids
  ec2-env ids production

  # Hosts for sshing (opens SSM tunnels when use_ssm is set)
  ec2-env hosts production --config environments.yml

  # ProxyCommand through the bastion
  ssh -o ProxyCommand="$(ec2-env proxy-command production)" ubuntu@10.0.1.12

  # Single tunnel to a database port
  ec2-env tunnel --target i-0d9c4bg3f26157a8e --remote-port 5432 --local-port 15432
""",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    envs_parser = subparsers.add_parser("envs", help="List environments in the config file")
    envs_parser.add_argument("--config", default=None, help="Config file path")

    for name, help_text in [
        ("ids", "List instance ids"),
        ("ips", "List instance ips"),
        ("proxy-command", "Print an ssh ProxyCommand through the bastion"),
        ("hosts", "Print hosts for sshing"),
    ]:
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("env", help="Environment name")
        sub.add_argument("--config", default=None, help="Config file path")
        if name == "hosts":
            sub.add_argument("--no-wait", action="store_true", help="Close tunnels right after printing")

    tunnel_parser = subparsers.add_parser("tunnel", help="Open a single SSM port forwarding session")
    tunnel_parser.add_argument("--target", required=True, help="Instance id")
    tunnel_parser.add_argument("--remote-port", type=int, default=22, help="Port on the instance")
    tunnel_parser.add_argument("--local-port", type=int, default=None, help="Local port to bind")
    tunnel_parser.add_argument("--reason", default=None, help="Reason for the session")
    tunnel_parser.add_argument("--region", default=None, help="AWS region")
    tunnel_parser.add_argument("--timeout", type=float, default=15, help="Seconds per session step")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[%(levelname)s] %(message)s",
        stream=sys.stderr,
    )

    try:
        if args.command == "envs":
            cmd_envs(ConfigArgs(config=args.config))
        elif args.command == "ids":
            cmd_ids(EnvArgs(env=args.env, config=args.config))
        elif args.command == "ips":
            cmd_ips(EnvArgs(env=args.env, config=args.config))
        elif args.command == "proxy-command":
            cmd_proxy_command(EnvArgs(env=args.env, config=args.config))
        elif args.command == "hosts":
            cmd_hosts(HostsArgs(env=args.env, config=args.config, wait=not args.no_wait))
        elif args.command == "tunnel":
            cmd_tunnel(TunnelArgs(
                target=args.target,
                remote_port=args.remote_port,
                local_port=args.local_port,
                reason=args.reason,
                region=args.region,
                timeout=args.timeout,
            ))
        else:
            parser.print_help()
            sys.exit(1)
    except (Ec2EnvError, FileNotFoundError, ValidationError, yaml.YAMLError, KeyError) as e:
        print(f"error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
