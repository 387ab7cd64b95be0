"""Exception hierarchy for ec2-env."""


class Ec2EnvError(Exception):
    """Base class for all ec2-env errors."""


class EnvironmentConfigNotFound(Ec2EnvError):
    """The config file has no entry for the requested environment."""


class BastionNotExpectedError(Ec2EnvError):
    """A bastion was requested for an environment configured without one."""


class BastionNotFoundError(Ec2EnvError):
    """The bastion filters did not resolve to exactly one usable instance."""


class TunnelError(Ec2EnvError):
    """Base class for SSM port forwarding session errors."""


class SpawnError(TunnelError):
    """The session broker could not be started at all (missing binary, permissions)."""


class SessionIdNotFoundError(TunnelError):
    """No session id was printed by the broker before the deadline."""


class SessionTimedOutError(TunnelError):
    """The session id is known but no local port was opened before the deadline."""


class SessionProcessError(TunnelError):
    """The broker exited before printing what we were waiting for."""


class SessionClosedError(TunnelError):
    """The session was used after close()."""
