"""YAML configuration loader."""

import os
from pathlib import Path
from typing import Optional, Union

import yaml

from ec2_env.config.schema import EnvironmentConfig
from ec2_env.errors import EnvironmentConfigNotFound

DEFAULT_CONFIG_PATH = "ec2-env.yaml"


def resolve_config_path(path: Optional[Union[str, Path]] = None) -> Path:
    """Resolve the config path, falling back to $EC2_ENV_CONFIG then ./ec2-env.yaml."""
    if path is None:
        path = os.environ.get("EC2_ENV_CONFIG", DEFAULT_CONFIG_PATH)
    return Path(path)


def load_environment(env_name: str, path: Optional[Union[str, Path]] = None) -> EnvironmentConfig:
    """Load one named environment from a YAML file of environments.

    The file maps environment names to their settings:

        production:
          aws_region: ap-southeast-2
          ssh_user: ubuntu
          filters:
            - name: tag:Name
              values: [ProductionAppServer]

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If config file is invalid YAML
        EnvironmentConfigNotFound: If the file has no such environment
        pydantic.ValidationError: If the environment doesn't match the schema
    """
    path = resolve_config_path(path)

    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path) as f:
        data = yaml.safe_load(f)

    if data is None:
        data = {}

    attrs = data.get(str(env_name)) if isinstance(data, dict) else None
    if attrs is None:
        raise EnvironmentConfigNotFound(f'{path} does not have an environment named "{env_name}"')

    return EnvironmentConfig.model_validate({**attrs, "env_name": str(env_name)})


def list_environments(path: Optional[Union[str, Path]] = None) -> list[str]:
    """Names of all environments defined in the config file."""
    path = resolve_config_path(path)

    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path) as f:
        data = yaml.safe_load(f) or {}

    return [str(name) for name in data] if isinstance(data, dict) else []
