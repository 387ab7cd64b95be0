"""Pydantic configuration schemas for ec2-env."""

from typing import Any, Optional, Union

from pydantic import BaseModel, Field


class Filter(BaseModel):
    """One EC2 describe-instances filter, e.g. `tag:Name` = `ProductionAppServer`."""
    name: str = Field(description="Filter name, e.g. 'instance-state-name' or 'tag:Name'")
    values: list[str] = Field(description="Values to match")


class BastionConfig(BaseModel):
    """Longhand bastion configuration with its own ssh user."""
    ssh_user: Optional[str] = Field(default=None, description="User for sshing into the bastion")
    filters: list[Filter] = Field(description="Filters matching exactly one bastion instance")


class EnvironmentConfig(BaseModel):
    """One application environment composed primarily of EC2 instances.

    Covers:
    - what region the instances are in
    - the user to use for sshing
    - how to identify those instances
    - how to identify the bastion instance to connect through (if any)
    - whether SSM should be used to connect to the instances
    """
    env_name: str = Field(description="Environment name, e.g. 'production'")
    aws_region: str = Field(description="AWS region of the instances")
    ssh_user: str = Field(description="User for sshing into the instances")
    filters: list[Filter] = Field(description="Filters matching the environment's instances")
    use_ssm: bool = Field(default=False, description="Connect through SSM port forwarding sessions")
    ssm_host: str = Field(
        default="127.0.0.1",
        description="Host to ssh to when using SSM; '#{id}' (or '{id}') is replaced with the instance id",
    )
    ssm_timeout: float = Field(default=15, gt=0, description="Seconds to wait for each SSM session step")
    bastion_instance: Optional[Union[list[Filter], BastionConfig]] = Field(
        default=None,
        description="Bastion filters, either as a filter list or as {ssh_user, filters}",
    )

    @property
    def instance_filters(self) -> list[Filter]:
        return self.filters

    @property
    def bastion_filters(self) -> Optional[list[Filter]]:
        if self.bastion_instance is None:
            return None
        if isinstance(self.bastion_instance, BastionConfig):
            return self.bastion_instance.filters
        return self.bastion_instance

    @property
    def bastion_ssh_user(self) -> str:
        if isinstance(self.bastion_instance, BastionConfig) and self.bastion_instance.ssh_user:
            return self.bastion_instance.ssh_user
        return self.ssh_user

    def ssm_host_for(self, instance_id: str) -> str:
        return self.ssm_host.replace("#{id}", instance_id).replace("{id}", instance_id)


def filters_for_api(filters: list[Filter]) -> list[dict[str, Any]]:
    """Render filters in the shape boto3's describe_instances expects."""
    return [{"Name": f.name, "Values": list(f.values)} for f in filters]
