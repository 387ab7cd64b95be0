"""Configuration system for ec2-env."""

from ec2_env.config.schema import (
    EnvironmentConfig,
    BastionConfig,
    Filter,
    filters_for_api,
)
from ec2_env.config.loader import load_environment, list_environments

__all__ = [
    "EnvironmentConfig",
    "BastionConfig",
    "Filter",
    "filters_for_api",
    "load_environment",
    "list_environments",
]
