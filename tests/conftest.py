import errno
import logging

import pytest

SESSION_ID = "botocore-session-1659667492-0f93356199500fb5f"
TARGET_ID = "i-0d9c4bg3f26157a8e"


class FakeBrokerStream:
    """Stands in for the pty master of a session-manager-plugin process.

    `pieces` are handed out one per burst: a read returns (part of) the
    current piece, then the next read raises BlockingIOError before moving
    on. Once everything is consumed, reads either block forever or, if
    `exited` is set, fail with EIO like a pty whose child has gone away.
    """

    def __init__(self, *pieces, exited=False, pid=1234):
        self._pieces = [p.encode() if isinstance(p, str) else p for p in pieces if p]
        self._blocked = False
        self.exited = exited
        self.pid = pid
        self.reads = 0
        self.reader_closed = False
        self.writer_closed = False

    def feed(self, text):
        self._pieces.append(text.encode())

    def read(self, size):
        self.reads += 1
        if self._blocked or not self._pieces:
            self._blocked = False
            if not self._pieces and self.exited:
                raise OSError(errno.EIO, "Input/output error")
            raise BlockingIOError

        piece = self._pieces[0]
        data, rest = piece[:size], piece[size:]
        if rest:
            self._pieces[0] = rest
        else:
            self._pieces.pop(0)
            self._blocked = True
        return data

    @property
    def closed(self):
        return self.reader_closed and self.writer_closed

    def close(self):
        self.reader_closed = True
        self.writer_closed = True


class FakeLauncher:
    def __init__(self, stream):
        self.stream = stream
        self.calls = []

    def spawn(self, cmd, env=None):
        self.calls.append((cmd, env))
        return self.stream


class RecordingTerminator:
    def __init__(self, error=None):
        self.calls = []
        self.error = error

    def __call__(self, session_id):
        self.calls.append(session_id)
        if self.error is not None:
            raise self.error
        return session_id


@pytest.fixture
def stream():
    return FakeBrokerStream(f"Starting session with SessionId: {SESSION_ID}\n")


@pytest.fixture
def launcher(stream):
    return FakeLauncher(stream)


@pytest.fixture
def terminator():
    return RecordingTerminator()


@pytest.fixture
def session_logger():
    return logging.getLogger("tests.tunnel")


@pytest.fixture
def make_session(launcher, terminator, session_logger):
    from ec2_env.tunnel import TunnelSession

    def _make(target_id=TARGET_ID, remote_port=22, **kwargs):
        kwargs.setdefault("timeout", 0)
        kwargs.setdefault("poll_interval", 0)
        kwargs.setdefault("launcher", launcher)
        kwargs.setdefault("terminate_session", terminator)
        kwargs.setdefault("logger", session_logger)
        return TunnelSession(target_id, remote_port, **kwargs)

    return _make
