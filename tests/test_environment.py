import logging

import pytest
import yaml

from ec2_env.config import EnvironmentConfig
from ec2_env.errors import BastionNotExpectedError, BastionNotFoundError, SessionTimedOutError
from ec2_env.orchestrator import Ec2Environment

FILTERS = [
    {"name": "instance-state-name", "values": ["running"]},
    {"name": "tag:Name", "values": ["ProductionAppServer"]},
]
BASTION_FILTERS = [{"name": "tag:Name", "values": ["ProductionBastion"]}]


class FakePaginator:
    def __init__(self, client):
        self._client = client

    def paginate(self, Filters):
        self._client.filters.append(Filters)
        instances = self._client.responses.pop(0) if self._client.responses else []
        # split into two pages to make sure every page is read
        half = len(instances) // 2
        yield {"Reservations": [{"Instances": instances[:half]}]}
        yield {"Reservations": [{"Instances": instances[half:]}]}


class FakeEc2:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.filters = []

    def get_paginator(self, name):
        assert name == "describe_instances"
        return FakePaginator(self)


class FakeSession:
    def __init__(self, target_id, remote_port, port=None, error=None, **kwargs):
        self.target_id = target_id
        self.remote_port = remote_port
        self.kwargs = kwargs
        self._port = port
        self._error = error
        self.closed = False

    def wait_for_local_port(self):
        if self._error is not None:
            raise self._error
        return self._port

    def close(self):
        self.closed = True


class SessionFactory:
    def __init__(self, ports=(), error=None):
        self._ports = list(ports)
        self._error = error
        self.sessions = []

    def __call__(self, target_id, remote_port, **kwargs):
        port = self._ports.pop(0) if self._ports else None
        session = FakeSession(target_id, remote_port, port=port, error=self._error, **kwargs)
        self.sessions.append(session)
        return session


def make_config(**overrides):
    attrs = {
        "env_name": "production",
        "aws_region": "ap-southeast-2",
        "ssh_user": "ubuntu",
        "filters": FILTERS,
        **overrides,
    }
    return EnvironmentConfig.model_validate(attrs)


@pytest.fixture(autouse=True)
def fixed_justification(monkeypatch):
    monkeypatch.setattr("ec2_env.orchestrator.environment.build_justification", lambda: "tester@laptop")


class TestInstanceIps:
    def test_public_ips(self):
        ec2 = FakeEc2([
            {"PublicIpAddress": "31.1.2.3", "PrivateIpAddress": "192.1.2.3"},
            {"PublicIpAddress": "78.3.2.1", "PrivateIpAddress": "127.1.2.3"},
        ])

        assert Ec2Environment(make_config(), ec2=ec2).instance_ips() == ["31.1.2.3", "78.3.2.1"]

    def test_falls_back_to_private_ip(self):
        ec2 = FakeEc2([
            {"PrivateIpAddress": "192.1.2.3"},
            {"PublicIpAddress": "78.3.2.1", "PrivateIpAddress": "127.1.2.3"},
        ])

        assert Ec2Environment(make_config(), ec2=ec2).instance_ips() == ["192.1.2.3", "78.3.2.1"]

    def test_no_instances(self):
        assert Ec2Environment(make_config(), ec2=FakeEc2([])).instance_ips() == []


class TestInstanceIds:
    def test_ids(self, caplog):
        ec2 = FakeEc2([{"InstanceId": "i-0d9c4bg3f26157a8e"}, {"InstanceId": "i-8fd915abg740e63c2"}])

        with caplog.at_level(logging.INFO):
            ids = Ec2Environment(make_config(), ec2=ec2).instance_ids()

        assert ids == ["i-0d9c4bg3f26157a8e", "i-8fd915abg740e63c2"]
        assert "[production ap-southeast-2] : found the following instances: i-0d9c4bg3f26157a8e, i-8fd915abg740e63c2" in caplog.text

    def test_percent_in_the_environment_name_is_logged_verbatim(self, caplog):
        ec2 = FakeEc2([{"InstanceId": "i-1"}])

        with caplog.at_level(logging.INFO):
            Ec2Environment(make_config(env_name="canary-100%s"), ec2=ec2).instance_ids()

        assert "[canary-100%s ap-southeast-2] : found the following instances: i-1" in caplog.text

    def test_only_uses_the_instance_filters(self):
        ec2 = FakeEc2([])

        Ec2Environment(make_config(bastion_instance=BASTION_FILTERS), ec2=ec2).instance_ids()

        assert ec2.filters == [[
            {"Name": "instance-state-name", "Values": ["running"]},
            {"Name": "tag:Name", "Values": ["ProductionAppServer"]},
        ]]


class TestHostsForSshing:
    def test_without_ssm(self):
        factory = SessionFactory()
        ec2 = FakeEc2([{"PublicIpAddress": "31.1.2.3"}])

        hosts = Ec2Environment(make_config(), ec2=ec2, session_factory=factory).hosts_for_sshing()

        assert hosts == ["31.1.2.3"]
        assert factory.sessions == []

    def test_with_ssm(self):
        factory = SessionFactory(ports=[9876, 9877])
        ec2 = FakeEc2([{"InstanceId": "i-0d9c4"}, {"InstanceId": "i-8fd91"}])
        environment = Ec2Environment(make_config(use_ssm=True, ssm_timeout=30), ec2=ec2, session_factory=factory)

        hosts = environment.hosts_for_sshing()

        assert hosts == ["127.0.0.1:9876", "127.0.0.1:9877"]
        assert [(s.target_id, s.remote_port) for s in factory.sessions] == [("i-0d9c4", 22), ("i-8fd91", 22)]
        assert factory.sessions[0].kwargs["reason"] == "tester@laptop"
        assert factory.sessions[0].kwargs["timeout"] == 30
        assert factory.sessions[0].kwargs["region"] == "ap-southeast-2"
        assert len(environment.sessions) == 2

    def test_ssm_host_placeholder(self):
        factory = SessionFactory(ports=[9876])
        ec2 = FakeEc2([{"InstanceId": "i-0d9c4"}])
        config = make_config(use_ssm=True, ssm_host="{id}.localhost")

        hosts = Ec2Environment(config, ec2=ec2, session_factory=factory).hosts_for_sshing()

        assert hosts == ["i-0d9c4.localhost:9876"]

    def test_ssm_host_hash_placeholder(self):
        factory = SessionFactory(ports=[9876])
        ec2 = FakeEc2([{"InstanceId": "i-0d9c4"}])
        config = make_config(use_ssm=True, ssm_host="ec2.#{id}.local.ackama.app")

        hosts = Ec2Environment(config, ec2=ec2, session_factory=factory).hosts_for_sshing()

        assert hosts == ["ec2.i-0d9c4.local.ackama.app:9876"]

    def test_failed_session_is_still_tracked_for_closing(self):
        factory = SessionFactory(error=SessionTimedOutError("did not become ready"))
        ec2 = FakeEc2([{"InstanceId": "i-0d9c4"}])
        environment = Ec2Environment(make_config(use_ssm=True), ec2=ec2, session_factory=factory)

        with pytest.raises(SessionTimedOutError):
            environment.hosts_for_sshing()

        environment.stop_ssh_port_forwarding_sessions()
        assert factory.sessions[0].closed


class TestStopSessions:
    def test_closes_every_session(self):
        factory = SessionFactory(ports=[1, 2])
        ec2 = FakeEc2([{"InstanceId": "i-1"}, {"InstanceId": "i-2"}])
        environment = Ec2Environment(make_config(use_ssm=True), ec2=ec2, session_factory=factory)
        environment.hosts_for_sshing()

        environment.stop_ssh_port_forwarding_sessions()

        assert all(s.closed for s in factory.sessions)
        assert len(environment.sessions) == 0

    def test_context_manager(self):
        factory = SessionFactory(ports=[1])
        ec2 = FakeEc2([{"InstanceId": "i-1"}])

        with Ec2Environment(make_config(use_ssm=True), ec2=ec2, session_factory=factory) as environment:
            environment.hosts_for_sshing()

        assert factory.sessions[0].closed


class TestBastion:
    def test_uses_bastion(self):
        assert Ec2Environment(make_config(bastion_instance=BASTION_FILTERS), ec2=FakeEc2()).uses_bastion()
        assert not Ec2Environment(make_config(), ec2=FakeEc2()).uses_bastion()

    def test_public_ip(self):
        ec2 = FakeEc2([{"PublicIpAddress": "13.54.1.2"}])
        environment = Ec2Environment(make_config(bastion_instance=BASTION_FILTERS), ec2=ec2)

        assert environment.bastion_public_ip() == "13.54.1.2"
        assert ec2.filters == [[{"Name": "tag:Name", "Values": ["ProductionBastion"]}]]

    def test_not_configured(self):
        with pytest.raises(BastionNotExpectedError, match="The production environment is not configured with a bastion"):
            Ec2Environment(make_config(), ec2=FakeEc2()).bastion_public_ip()

    @pytest.mark.parametrize("instances", [[], [{"PublicIpAddress": "1.1.1.1"}, {"PublicIpAddress": "2.2.2.2"}]])
    def test_not_exactly_one(self, instances):
        environment = Ec2Environment(make_config(bastion_instance=BASTION_FILTERS), ec2=FakeEc2(instances))

        with pytest.raises(BastionNotFoundError, match=f"{len(instances)} potential bastion instances were found"):
            environment.bastion_public_ip()

    def test_without_public_ip(self):
        environment = Ec2Environment(
            make_config(bastion_instance=BASTION_FILTERS), ec2=FakeEc2([{"PrivateIpAddress": "10.0.0.5"}])
        )

        with pytest.raises(BastionNotFoundError, match="does not have a public ip"):
            environment.bastion_public_ip()

    def test_proxy_command(self):
        config = make_config(bastion_instance={"ssh_user": "bastion", "filters": BASTION_FILTERS})
        environment = Ec2Environment(config, ec2=FakeEc2([{"PublicIpAddress": "13.54.1.2"}]))

        assert environment.build_ssh_bastion_proxy_command() == (
            "ssh -o StrictHostKeyChecking=no bastion@13.54.1.2 -W %h:%p"
        )


def test_from_yaml_file(tmp_path):
    path = tmp_path / "environments.yml"
    path.write_text(yaml.safe_dump({
        "production": {"aws_region": "ap-southeast-2", "ssh_user": "ubuntu", "filters": FILTERS},
    }))

    environment = Ec2Environment.from_yaml_file(path, "production", ec2=FakeEc2())

    assert environment.config.env_name == "production"
    assert environment.config.aws_region == "ap-southeast-2"
