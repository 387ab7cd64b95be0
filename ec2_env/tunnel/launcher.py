"""Starting the `aws ssm start-session` broker attached to a pseudo-terminal."""

from __future__ import annotations

import json
import logging
import os
import pty
import shlex
import subprocess
from dataclasses import dataclass, field
from typing import Optional

from ec2_env.errors import SpawnError

logger = logging.getLogger(__name__)

DOCUMENT_NAME = "AWS-StartPortForwardingSession"


def build_start_session_cmd(
    target_id: str,
    remote_port: int,
    local_port: Optional[int] = None,
    reason: Optional[str] = None,
    broker: str = "aws",
) -> list[str]:
    """Build the argv for an SSM port forwarding session.

    Flags are kept as separate tokens, nothing is ever joined into a shell
    string. Use `format_cmd` to render the result for logs.
    """
    parameters = {"portNumber": [str(remote_port)]}
    if local_port is not None:
        parameters["localPortNumber"] = [str(local_port)]

    flags = [
        ("--target", target_id),
        ("--document-name", DOCUMENT_NAME),
        ("--parameters", json.dumps(parameters)),
    ]
    if reason is not None:
        flags.append(("--reason", reason))

    cmd = [broker, "ssm", "start-session"]
    for flag, value in flags:
        cmd.extend([flag, value])
    return cmd


def format_cmd(cmd: list[str]) -> str:
    """Render an argv so it can be copied back into a shell."""
    return " ".join(shlex.quote(c) for c in cmd)


@dataclass
class BrokerProcess:
    """A running broker process and the master side of its pty.

    `reader` and `writer` are separate handles onto the pty master so each
    end can be released independently.
    """

    proc: subprocess.Popen
    reader: object
    writer: object
    closed: bool = field(default=False, init=False)

    @property
    def pid(self) -> int:
        return self.proc.pid

    def read(self, size: int) -> bytes:
        """Non-blocking read from the pty.

        Raises BlockingIOError when nothing is ready. End of stream shows up
        as b"" or as OSError(EIO), depending on the platform.
        """
        return os.read(self.reader.fileno(), size)

    def write(self, data: bytes) -> int:
        return self.writer.write(data)

    def close(self):
        """Release both ends of the pty."""
        if self.closed:
            return
        self.closed = True
        try:
            self.reader.close()
        finally:
            self.writer.close()
            # Reap the child if it is already gone; a live broker gets SIGHUP
            # from the pty going away and is left to exit on its own.
            self.proc.poll()


class ProcessLauncher:
    """Spawns commands with a pty as their stdin, stdout and stderr."""

    def spawn(self, cmd: list[str], env: Optional[dict[str, str]] = None) -> BrokerProcess:
        logger.debug("Spawning %s", format_cmd(cmd))

        master_fd, slave_fd = pty.openpty()
        try:
            proc = subprocess.Popen(
                cmd,
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                env=env,
                start_new_session=True,
                close_fds=True,
            )
        except OSError as e:
            os.close(master_fd)
            raise SpawnError(f"failed to start {cmd[0]!r}: {e}") from e
        finally:
            os.close(slave_fd)

        os.set_blocking(master_fd, False)
        reader = os.fdopen(master_fd, "rb", buffering=0)
        writer = os.fdopen(os.dup(master_fd), "wb", buffering=0)

        return BrokerProcess(proc=proc, reader=reader, writer=writer)
