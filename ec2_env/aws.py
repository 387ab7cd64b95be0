"""Thin wrappers around the boto3 calls ec2-env makes."""

from __future__ import annotations

from typing import Any, Optional

import boto3


def ec2_client(region: Optional[str] = None):
    return boto3.client("ec2", region_name=region)


def ssm_client(region: Optional[str] = None):
    return boto3.client("ssm", region_name=region)


def describe_instances(client, filters: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Return every instance matched by `filters`, across all reservations and pages."""
    paginator = client.get_paginator("describe_instances")

    instances = []
    for page in paginator.paginate(Filters=filters):
        for reservation in page.get("Reservations", []):
            instances.extend(reservation.get("Instances", []))
    return instances


def terminate_ssm_session(session_id: str, region: Optional[str] = None) -> str:
    """Ask SSM to terminate a session, returning the id it acknowledged."""
    resp = ssm_client(region).terminate_session(SessionId=session_id)
    return resp["SessionId"]
