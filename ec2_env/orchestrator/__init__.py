"""Environment orchestration."""

from ec2_env.orchestrator.environment import Ec2Environment

__all__ = [
    "Ec2Environment",
]
