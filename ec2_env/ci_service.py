"""Detecting which CI service (if any) the current process is running on."""

from __future__ import annotations

import os
import socket
from dataclasses import dataclass
from typing import Callable, Mapping, Optional, Union

Environ = Mapping[str, str]


@dataclass(frozen=True)
class CiService:
    name: str
    detect: Union[str, Callable[[Environ], bool]]
    """Env var whose presence means we're on this service, or a predicate over the environment"""
    build_id_var: str

    def matches(self, environ: Environ) -> bool:
        if isinstance(self.detect, str):
            return self.detect in environ
        return self.detect(environ)


@dataclass(frozen=True)
class DetectedCiService:
    name: str
    build_id: str


CI_SERVICES: tuple[CiService, ...] = (
    CiService("AppVeyor", "APPVEYOR", "APPVEYOR_BUILD_NUMBER"),
    CiService("Azure Pipelines", "BUILD_BUILDURI", "BUILD_BUILDNUMBER"),
    CiService("Bamboo", "bamboo_agentId", "bamboo_buildNumber"),
    CiService("BitBucket Pipelines", "BITBUCKET_BUILD_NUMBER", "BITBUCKET_BUILD_NUMBER"),
    CiService("Buddy", "BUDDY_WORKSPACE_ID", "BUDDY_EXECUTION_ID"),
    CiService("Buildkite", "BUILDKITE", "BUILDKITE_BUILD_NUMBER"),
    CiService("CircleCI", "CIRCLECI", "CIRCLE_BUILD_NUM"),
    CiService("Cirrus", "CIRRUS_CI", "CIRRUS_BUILD_ID"),
    CiService("CodeBuild", "CODEBUILD_BUILD_ID", "CODEBUILD_BUILD_ID"),
    CiService("Codefresh", "CF_BUILD_ID", "CF_BUILD_ID"),
    CiService("CodeShip", lambda env: env.get("CI_NAME", "") == "codeship", "CI_BUILD_NUMBER"),
    CiService("Drone", "DRONE", "DRONE_BUILD_NUMBER"),
    CiService("GitHub Actions", "GITHUB_ACTIONS", "GITHUB_RUN_ID"),
    CiService("GitLab", "GITLAB_CI", "CI_PIPELINE_ID"),
    CiService("Jenkins", "JENKINS_URL", "BUILD_NUMBER"),
    CiService("JetBrains Spaces", "JB_SPACE_EXECUTION_NUMBER", "JB_SPACE_EXECUTION_NUMBER"),
    CiService("Puppet", "DISTELLI_APPNAME", "DISTELLI_BUILDNUM"),
    CiService("Scrutinizer", "SCRUTINIZER", "SCRUTINIZER_INSPECTION_UUID"),
    CiService("Semaphore", "SEMAPHORE", "SEMAPHORE_JOB_ID"),
    CiService("Shippable", "SHIPPABLE", "BUILD_NUMBER"),
    CiService("TeamCity", "TEAMCITY_VERSION", "BUILD_NUMBER"),
    CiService("Travis", "TRAVIS", "TRAVIS_BUILD_NUMBER"),
    CiService("Vela", "VELA", "VELA_BUILD_NUMBER"),
    CiService("Wercker", "WERCKER_MAIN_PIPELINE_STARTED", "WERCKER_MAIN_PIPELINE_STARTED"),
    CiService("Woodpecker", lambda env: env.get("CI", "") == "woodpecker", "CI_BUILD_NUMBER"),
)


def detect_ci_service(environ: Optional[Environ] = None) -> Optional[DetectedCiService]:
    """Return the first CI service whose detector matches, with its build id.

    The build id can generally be used to find the details and logs of the
    current build. Raises KeyError if a service is detected but its build id
    variable is missing.
    """
    if environ is None:
        environ = os.environ

    for service in CI_SERVICES:
        if service.matches(environ):
            return DetectedCiService(name=service.name, build_id=environ[service.build_id_var])
    return None


def build_justification(environ: Optional[Environ] = None, hostname: Optional[str] = None) -> str:
    """Reason to attach to SSM sessions so they can be traced back to their origin.

    On CI that's the service and build id; otherwise `user@host` of the
    machine the session was started from.
    """
    if environ is None:
        environ = os.environ

    service = detect_ci_service(environ)
    if service is not None:
        return f"{service.name}, build {service.build_id}"

    if hostname is None:
        hostname = socket.gethostname()

    # USERNAME is for Windows
    username = environ.get("USER", environ.get("USERNAME", "<unknown>"))

    return f"{username}@{hostname}"
