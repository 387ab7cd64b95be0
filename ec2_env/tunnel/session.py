"""SSM port forwarding sessions driven through the session-manager-plugin."""

from __future__ import annotations

import enum
import functools
import logging
import os
import re
from typing import Callable, Optional

from ec2_env.aws import terminate_ssm_session
from ec2_env.errors import (
    SessionClosedError,
    SessionIdNotFoundError,
    SessionProcessError,
    SessionTimedOutError,
)
from ec2_env.tunnel.launcher import ProcessLauncher, build_start_session_cmd, format_cmd
from ec2_env.tunnel.scanner import DeadlineLoop, LoopOutcome, LoopResult, OutputScanner

SESSION_ID_PATTERN = re.compile(r"Starting session with SessionId: ([=,.@\w-]+)\r?\n")

NO_OUTPUT_MESSAGE = "<nothing was outputted by process>"


def local_port_pattern(session_id: str) -> re.Pattern:
    """Pattern for the "port opened" line of one specific session."""
    return re.compile(rf"Port (\d+) opened for sessionId {re.escape(session_id)}\.\r?\n")


class SessionState(enum.Enum):
    STARTING = "starting"
    OPENING = "opening"
    READY = "ready"
    CLOSED = "closed"


class TunnelSession:
    """An `aws ssm start-session` port forwarding session to one target.

    Starting the session blocks until the plugin reports a session id (or
    fails). The local port is discovered lazily by `wait_for_local_port`.
    The broker process is not killed on timeouts; always call `close()`.

    Usage:
        with TunnelSession("i-0d9c4bg3f26157a8e", 22, reason="deploy") as session:
            port = session.wait_for_local_port()
            ...
    """

    def __init__(
        self,
        target_id: str,
        remote_port: int,
        local_port: Optional[int] = None,
        timeout: float = 15,
        reason: Optional[str] = None,
        region: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
        launcher: Optional[ProcessLauncher] = None,
        terminate_session: Optional[Callable[[str], str]] = None,
        poll_interval: float = 0.01,
    ):
        self._logger = logger or logging.getLogger(__name__)
        self._target_id = target_id
        self._remote_port = remote_port
        self.requested_local_port = local_port
        self.timeout = timeout
        self.reason = reason
        self.poll_interval = poll_interval
        self._terminate = terminate_session or functools.partial(terminate_ssm_session, region=region)

        self._session_id: Optional[str] = None
        self._local_port: Optional[int] = None
        self._process = None
        self.state = SessionState.STARTING

        cmd = build_start_session_cmd(target_id, remote_port, local_port=local_port, reason=reason)
        env = {**os.environ, "AWS_DEFAULT_REGION": region} if region else None
        self._logger.debug("Starting SSM session: %s", format_cmd(cmd))

        self._process = (launcher or ProcessLauncher()).spawn(cmd, env=env)
        self._scanner = OutputScanner(self._process)

        try:
            self._session_id = self._wait_for_session_id()
        except BaseException:
            # nobody else holds a reference to us yet, so clean up here
            self.close()
            raise

        self.state = SessionState.OPENING
        self._logger.info(
            "SSM session %s opening, forwarding port %s on %s",
            self._session_id, remote_port, target_id,
        )

    @property
    def target_id(self) -> str:
        return self._target_id

    @property
    def remote_port(self) -> int:
        return self._remote_port

    @property
    def session_id(self) -> Optional[str]:
        return self._session_id

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process is not None else None

    @property
    def output(self) -> str:
        """Everything the plugin has printed so far."""
        return self._scanner.output

    def _expect(self, pattern: re.Pattern) -> LoopResult:
        loop = DeadlineLoop(self._scanner, self.timeout, poll_interval=self.poll_interval)
        return loop.run(pattern)

    def _process_error(self, result: LoopResult) -> SessionProcessError:
        return SessionProcessError(result.output.strip() or NO_OUTPUT_MESSAGE)

    def _wait_for_session_id(self) -> str:
        result = self._expect(SESSION_ID_PATTERN)

        if result.outcome is LoopOutcome.PROCESS_EXITED:
            raise self._process_error(result)
        if result.outcome is LoopOutcome.EXPIRED:
            raise SessionIdNotFoundError(
                f"could not find session id within {self.timeout} seconds "
                f"(waited {result.elapsed:.2f}s) - SSM plugin output: {result.output}"
            )

        return result.groups[0]

    def wait_for_local_port(self) -> int:
        """Block until the plugin reports which local port it bound, then cache it."""
        if self.state is SessionState.CLOSED:
            raise SessionClosedError(f"SSM session {self._session_id} is closed")
        if self._local_port is not None:
            return self._local_port

        result = self._expect(local_port_pattern(self._session_id))

        if result.outcome is LoopOutcome.PROCESS_EXITED:
            raise self._process_error(result)
        if result.outcome is LoopOutcome.EXPIRED:
            raise SessionTimedOutError(
                f"SSM session {self._session_id} did not become ready within "
                f"{self.timeout} seconds (maybe increase the timeout?)"
            )

        self._local_port = int(result.groups[0])
        self.state = SessionState.READY
        self._logger.info("SSM session %s listening on local port %s", self._session_id, self._local_port)

        return self._local_port

    def close(self):
        """Terminate the remote session (if one was started) and release the pty.

        The pty is released even when the terminate call fails; that error is
        re-raised afterwards.
        """
        if self.state is SessionState.CLOSED:
            return

        try:
            if self._session_id is None:
                self._logger.info("No SSM session id for %s, nothing to terminate", self._target_id)
            else:
                self._logger.info("Terminating SSM session %s...", self._session_id)
                try:
                    terminated = self._terminate(self._session_id)
                except Exception as e:
                    self._logger.error("Failed to terminate SSM session %s: %s", self._session_id, e)
                    raise
                self._logger.info("Terminated SSM session %s successfully", terminated)
        finally:
            self.state = SessionState.CLOSED
            if self._process is not None:
                self._process.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def __repr__(self):
        return (
            f"TunnelSession(target_id={self._target_id!r}, remote_port={self._remote_port}, "
            f"session_id={self._session_id!r}, state={self.state.value})"
        )
