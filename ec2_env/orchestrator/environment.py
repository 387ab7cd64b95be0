"""Resolving the instances of an environment and how to ssh into them."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Optional, Union

from ec2_env.aws import describe_instances, ec2_client
from ec2_env.ci_service import build_justification
from ec2_env.config import EnvironmentConfig, filters_for_api, load_environment
from ec2_env.config.schema import Filter
from ec2_env.errors import BastionNotExpectedError, BastionNotFoundError
from ec2_env.tunnel import SessionRegistry, TunnelSession

SSH_PORT = 22


class Ec2Environment:
    """Orchestrator for one environment's EC2 instances.

    Handles:
    - Listing the ids and ips of the instances matched by the filters
    - Opening SSM port forwarding sessions when instances aren't reachable
    - Finding the bastion and building an ssh ProxyCommand through it

    Sessions opened by `hosts_for_sshing` are tracked and closed together by
    `stop_ssh_port_forwarding_sessions` (or on leaving a `with` block).
    """

    def __init__(
        self,
        config: EnvironmentConfig,
        ec2=None,
        session_factory: Callable[..., TunnelSession] = TunnelSession,
        logger: Optional[logging.Logger] = None,
    ):
        """Initialize environment.

        Args:
            config: Environment configuration
            ec2: boto3 EC2 client (created lazily for the configured region if None)
            session_factory: Callable creating port forwarding sessions
            logger: Logger for progress messages
        """
        self.config = config
        self._ec2 = ec2
        self._session_factory = session_factory
        self._logger = logger or logging.getLogger(__name__)
        self.sessions = SessionRegistry()

    @classmethod
    def from_yaml_file(cls, path: Union[str, Path], env_name: str, **kwargs) -> "Ec2Environment":
        return cls(load_environment(env_name, path), **kwargs)

    @property
    def ec2(self):
        if self._ec2 is None:
            self._ec2 = ec2_client(self.config.aws_region)
        return self._ec2

    def _log(self, msg: str, *args):
        self._logger.info("[%s %s] : " + msg, self.config.env_name, self.config.aws_region, *args)

    def _describe_instances(self, filters: list[Filter]) -> list[dict]:
        return describe_instances(self.ec2, filters_for_api(filters))

    def instance_ids(self) -> list[str]:
        """IDs of the instances matched by the environment filters."""
        ids = [i["InstanceId"] for i in self._describe_instances(self.config.instance_filters)]

        self._log("found the following instances: %s", ", ".join(ids))

        return ids

    def instance_ips(self) -> list[str]:
        """IPs of the instances matched by the environment filters.

        Instances without a public ip are listed by their private ip.
        """
        ips = [
            i.get("PublicIpAddress") or i.get("PrivateIpAddress")
            for i in self._describe_instances(self.config.instance_filters)
        ]

        self._log("found the following instances: %s", ", ".join(ips))

        return ips

    def hosts_for_sshing(self) -> list[str]:
        """Hosts to use for sshing into the environment's instances.

        With SSM enabled, a port forwarding session to port 22 is opened per
        instance and the hosts are `<ssm_host>:<local port>`.
        """
        if not self.config.use_ssm:
            return self.instance_ips()

        self._log("using SSM to connect to instances")

        reason = build_justification()

        return [
            f"{self.config.ssm_host_for(instance_id)}:{self._start_ssh_port_forwarding_session(instance_id, reason)}"
            for instance_id in self.instance_ids()
        ]

    def _start_ssh_port_forwarding_session(self, instance_id: str, reason: str) -> int:
        session = self._session_factory(
            instance_id,
            SSH_PORT,
            timeout=self.config.ssm_timeout,
            reason=reason,
            region=self.config.aws_region,
            logger=self._logger,
        )
        self.sessions.add(session)

        return session.wait_for_local_port()

    def uses_bastion(self) -> bool:
        return self.config.bastion_filters is not None

    def bastion_public_ip(self) -> str:
        """Find the public ip of the environment's bastion instance.

        Raises if no bastion is configured, if the filters don't match exactly
        one instance, or if that instance has no public ip.
        """
        if self.config.bastion_filters is None:
            raise BastionNotExpectedError(f"The {self.config.env_name} environment is not configured with a bastion")

        instances = self._describe_instances(self.config.bastion_filters)

        if len(instances) != 1:
            raise BastionNotFoundError(
                f"{len(instances)} potential bastion instances were found - "
                "please ensure your filters are specific enough to only return a single instance"
            )

        ip_address = instances[0].get("PublicIpAddress")
        if ip_address is None:
            raise BastionNotFoundError("a potential bastion instance was found, but it does not have a public ip")

        self._log("using bastion with ip %s", ip_address)

        return ip_address

    def build_ssh_bastion_proxy_command(self) -> str:
        """Build a ProxyCommand for sshing through the bastion.

        Usable with `ssh -o ProxyCommand=...` or with paramiko's ProxyCommand.
        """
        return f"ssh -o StrictHostKeyChecking=no {self.config.bastion_ssh_user}@{self.bastion_public_ip()} -W %h:%p"

    def stop_ssh_port_forwarding_sessions(self):
        self.sessions.close_all()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.stop_ssh_port_forwarding_sessions()
