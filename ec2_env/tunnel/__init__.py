"""SSM port forwarding tunnel management."""

from ec2_env.tunnel.launcher import BrokerProcess, ProcessLauncher, build_start_session_cmd, format_cmd
from ec2_env.tunnel.scanner import PENDING, DeadlineLoop, LoopOutcome, LoopResult, OutputScanner, ProcessExited
from ec2_env.tunnel.session import SessionState, TunnelSession
from ec2_env.tunnel.registry import SessionRegistry

__all__ = [
    "BrokerProcess",
    "ProcessLauncher",
    "build_start_session_cmd",
    "format_cmd",
    "PENDING",
    "DeadlineLoop",
    "LoopOutcome",
    "LoopResult",
    "OutputScanner",
    "ProcessExited",
    "SessionState",
    "TunnelSession",
    "SessionRegistry",
]
