"""
ec2-env - find the EC2 instances of an environment and reach them.

This package provides:
- YAML configuration of named environments (region, filters, bastion, SSM)
- Instance id / ip lookup through EC2 filters
- SSM port forwarding sessions supervised through the session-manager-plugin
- SSH ProxyCommand construction for bastion hosts
"""

from ec2_env.config import load_environment, EnvironmentConfig
from ec2_env.orchestrator import Ec2Environment
from ec2_env.tunnel import TunnelSession, SessionRegistry

__version__ = "0.1.0"

__all__ = [
    "load_environment",
    "EnvironmentConfig",
    "Ec2Environment",
    "TunnelSession",
    "SessionRegistry",
    "__version__",
]
